"""Deterministic "guaranteed inclusion" matches.

Two disjoint modes:

- Time range: daily notes named ``YYYY-MM-DD`` inside the range, plus notes
  modified inside the range scored by recency.
- Terms: notes referenced as ``[[Title]]`` in the query, plus notes carrying a
  searched tag or a tag nested below it (``#project`` matches
  ``#project/alpha`` but not ``#projectx``).

Every returned document is flagged ``include_in_context`` so downstream top-K
truncation never drops it.
"""

import logging
import re
import time
from datetime import date, timedelta
from typing import Callable, Iterable, List, Optional

from vaultseek.core.expansion import extract_tags
from vaultseek.core.interfaces import DocumentStore, MetadataReader, NoteFile
from vaultseek.core.models import NoteDocument, TimeRange
from vaultseek.core.patterns import PathFilter

logger = logging.getLogger(__name__)

DEFAULT_DAILY_NOTE_MAX_DAYS = 365
TIME_RANGE_RETURN_ALL_CAP = 200
SECONDS_PER_DAY = 86400

_WIKILINK = re.compile(r"\[\[([^\]]+)\]\]")


def extract_note_titles(text: str) -> List[str]:
    """Link targets of ``[[...]]`` mentions, alias and heading removed."""
    titles: List[str] = []
    for raw in _WIKILINK.findall(text or ""):
        target = raw.split("|", 1)[0].split("#", 1)[0].strip()
        if target and target not in titles:
            titles.append(target)
    return titles


def recency_score(mtime: float, now: float) -> float:
    """1.0 for notes touched today, decaying linearly to a 0.3 floor at 30 days."""
    days = (now - mtime) / SECONDS_PER_DAY
    return max(0.3, min(1.0, 1.0 - days / 30))


def generate_daily_note_titles(
    time_range: TimeRange, max_days: int = DEFAULT_DAILY_NOTE_MAX_DAYS
) -> List[str]:
    """``YYYY-MM-DD`` titles for each day of the range, most recent ``max_days`` kept."""
    start = time_range.start
    end = time_range.end
    if end - start > timedelta(days=max_days):
        logger.warning(f"Date range exceeds {max_days} days, limiting to the most recent {max_days}")
        start = end - timedelta(days=max_days)

    titles: List[str] = []
    current: date = start.date()
    last: date = end.date()
    while current <= last:
        titles.append(current.isoformat())
        current += timedelta(days=1)
    return titles


def tag_matches(note_tags: Iterable[str], search_tags: Iterable[str]) -> bool:
    search = [t.lower() for t in search_tags]
    for tag in note_tags:
        lowered = tag.lower()
        if any(lowered == s or lowered.startswith(s + "/") for s in search):
            return True
    return False


class FilterRetriever:
    """Resolves title, tag and time-range matches for one search call.

    Args:
        store: Document store to enumerate and read notes
        metadata: Tag/frontmatter reader
        salient_terms: Salient terms of the query; ``#`` terms are tag searches
        time_range: Switches to time-range mode when set
        max_k: Cap for time-filtered documents
        return_all: Raise the time-filtered cap
        path_filter: Inclusion/exclusion patterns
        daily_note_max_days: Longest synthesized daily-note calendar
        clock: Returns "now" as a unix timestamp
    """

    def __init__(
        self,
        store: DocumentStore,
        metadata: MetadataReader,
        salient_terms: Optional[List[str]] = None,
        time_range: Optional[TimeRange] = None,
        max_k: int = 30,
        return_all: bool = False,
        path_filter: Optional[PathFilter] = None,
        daily_note_max_days: int = DEFAULT_DAILY_NOTE_MAX_DAYS,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.metadata = metadata
        self.salient_terms = list(salient_terms or [])
        self.time_range = time_range
        self.max_k = max_k
        self.return_all = return_all
        self.path_filter = path_filter or PathFilter()
        self.daily_note_max_days = daily_note_max_days
        self.clock = clock
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def has_time_range(self) -> bool:
        """When True, filter results are the complete result set."""
        return self.time_range is not None

    async def get_relevant_documents(self, query: str) -> List[NoteDocument]:
        if self.time_range is not None:
            return await self._time_range_documents()

        title_files = self._resolve_titles(extract_note_titles(query))
        titles = await self._read_documents(title_files, score=1.0, source="title-match")
        tags = await self._tag_documents(self._resolve_tag_terms(query))
        return _dedupe_by_path(titles, tags)

    def _allowed(self, file: NoteFile) -> bool:
        return self.path_filter.should_index(file)

    def _resolve_titles(self, titles: Iterable[str]) -> List[NoteFile]:
        files: List[NoteFile] = []
        for title in titles:
            file = self.store.resolve_link(title)
            if file is not None and self._allowed(file) and file not in files:
                files.append(file)
        return files

    def _resolve_tag_terms(self, query: str) -> List[str]:
        tags = [t.lower() for t in self.salient_terms if t.startswith("#")]
        if not tags:
            tags = extract_tags(query)
        return list(dict.fromkeys(tags))

    async def _read_documents(
        self, files: Iterable[NoteFile], score: float, source: str
    ) -> List[NoteDocument]:
        documents: List[NoteDocument] = []
        for file in files:
            try:
                content = await self.store.read(file.path)
            except OSError as e:
                self.logger.warning(f"Failed to read {source} file {file.path}: {e}")
                continue
            documents.append(
                NoteDocument(
                    id=file.path,
                    path=file.path,
                    title=file.basename,
                    content=content,
                    mtime=file.mtime,
                    ctime=file.ctime,
                    tags=tuple(self.metadata.get_tags(file.path)),
                    score=score,
                    source=source,
                    include_in_context=True,
                )
            )
        return documents

    async def _tag_documents(self, tag_terms: List[str]) -> List[NoteDocument]:
        if not tag_terms:
            return []
        matched = [
            f for f in self.store.list_markdown_files()
            if self._allowed(f) and tag_matches(self.metadata.get_tags(f.path), tag_terms)
        ]
        return await self._read_documents(matched, score=1.0, source="tag-match")

    async def _time_range_documents(self) -> List[NoteDocument]:
        titles = generate_daily_note_titles(self.time_range, self.daily_note_max_days)
        daily_files = self._resolve_titles(titles)
        daily_docs = await self._read_documents(daily_files, score=1.0, source="daily-note")

        cap = max(self.max_k, TIME_RANGE_RETURN_ALL_CAP) if self.return_all else self.max_k
        daily_paths = {f.path for f in daily_files}
        now = self.clock()

        in_range = [
            f for f in self.store.list_markdown_files()
            if self._allowed(f) and f.path not in daily_paths and self.time_range.contains(f.mtime)
        ]
        timed_docs: List[NoteDocument] = []
        for file in in_range:
            if len(timed_docs) >= cap:
                break
            docs = await self._read_documents(
                [file], score=recency_score(file.mtime, now), source="time-filtered"
            )
            timed_docs.extend(docs)

        results = _dedupe_by_path(daily_docs, timed_docs)
        results.sort(key=lambda d: d.score, reverse=True)
        self.logger.info(
            f"Time range: {len(titles)} daily titles, {len(daily_docs)} daily notes, "
            f"{len(timed_docs)} modified in range"
        )
        return results


def _dedupe_by_path(*groups: List[NoteDocument]) -> List[NoteDocument]:
    """Earlier groups win."""
    seen = set()
    result: List[NoteDocument] = []
    for group in groups:
        for doc in group:
            if doc.path not in seen:
                seen.add(doc.path)
                result.append(doc)
    return result
