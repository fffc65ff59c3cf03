"""Substring pre-filter over the whole vault.

Pass 1 matches query terms against file paths (no content I/O) and ranks
files by the number of distinct terms in their path. Pass 2 fills the
remaining slots by reading content in small concurrent batches.
"""

import asyncio
import logging
import re
from typing import Dict, Iterable, List, Optional

from vaultseek.core.interfaces import DocumentStore, NoteFile
from vaultseek.core.patterns import PathFilter

_CJK = re.compile(r"[\u4e00-\u9fff\u3040-\u309f\u30a0-\u30ff\uac00-\ud7af]")

DEFAULT_GREP_LIMIT = 200


def is_grep_worthy(term: str) -> bool:
    """Terms of 3+ characters, or 2+ when the term contains CJK script."""
    term = term.strip()
    if _CJK.search(term):
        return len(term) >= 2
    return len(term) >= 3


class GrepScanner:
    """Fast candidate scan by path and content substrings."""

    BATCH_SIZE = 30
    YIELD_INTERVAL = 100

    def __init__(self, store: DocumentStore, path_filter: Optional[PathFilter] = None):
        self.store = store
        self.path_filter = path_filter
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def _files(self) -> List[NoteFile]:
        files = self.store.list_markdown_files()
        if self.path_filter is None:
            return files
        return [f for f in files if self.path_filter.should_index(f)]

    async def grep(self, query: str, limit: int = DEFAULT_GREP_LIMIT) -> List[str]:
        """Scan for a single query string."""
        return await self.scan([query], limit)

    async def scan(self, queries: Iterable[str], limit: int) -> List[str]:
        """Return paths of files matching any grep-worthy query term.

        Args:
            queries: Query strings and terms to look for
            limit: Maximum number of paths returned

        Returns:
            Path matches (most matching terms first) followed by content matches
        """
        terms: List[str] = []
        for query in queries:
            term = (query or "").strip().lower()
            if term and is_grep_worthy(term) and term not in terms:
                terms.append(term)
        if not terms or limit <= 0:
            return []

        files = self._files()

        path_scores: Dict[str, int] = {}
        for file in files:
            lowered = file.path.lower()
            count = sum(1 for term in terms if term in lowered)
            if count:
                path_scores[file.path] = count
        path_hits = sorted(path_scores, key=lambda p: path_scores[p], reverse=True)[:limit]

        content_hits: List[str] = []
        remaining = [f for f in files if f.path not in path_scores]
        processed = 0
        next_yield = self.YIELD_INTERVAL
        for start in range(0, len(remaining), self.BATCH_SIZE):
            if len(path_hits) + len(content_hits) >= limit:
                break
            batch = remaining[start:start + self.BATCH_SIZE]
            contents = await asyncio.gather(
                *(self.store.read(f.path) for f in batch), return_exceptions=True
            )
            for file, content in zip(batch, contents):
                if isinstance(content, Exception):
                    self.logger.debug(f"Skipping unreadable file {file.path}: {content}")
                    continue
                lowered = content.lower()
                if any(term in lowered for term in terms):
                    content_hits.append(file.path)
            processed += len(batch)
            if processed >= next_yield:
                next_yield += self.YIELD_INTERVAL
                await asyncio.sleep(0)

        results = (path_hits + content_hits)[:limit]
        self.logger.info(
            f"Grep: {len(results)} files match "
            f"({len(path_hits)} path, {len(content_hits)} content)"
        )
        return results
