"""Chunk-embedding index lifecycle and semantic search over it."""

import asyncio
import logging
from typing import Dict, Iterable, List, Optional, Sequence, Set

import numpy as np

from vaultseek.core.chunker import Chunk, chunk_note
from vaultseek.core.interfaces import DocumentStore, EmbeddingProvider, NoteFile
from vaultseek.core.index.persistence import IndexPersistenceManager
from vaultseek.core.models import ChunkRecord, Engine, NoteIdRank
from vaultseek.core.patterns import PathFilter
from vaultseek.core.vector import normalize_rows

logger = logging.getLogger(__name__)


class ChunkIndexManager:
    """Owns one persisted chunk index and its in-memory search view.

    One instance per vault; it is constructed explicitly and passed to the
    retriever that consults it.

    Args:
        store: Document store of the vault
        persistence: Partition reader/writer
        embedder: Embedding provider used for chunks and queries
        path_filter: Inclusion/exclusion patterns
        chunk_size: Maximum characters per chunk body
        batch_size: Chunks per embedding request
    """

    def __init__(
        self,
        store: DocumentStore,
        persistence: IndexPersistenceManager,
        embedder: EmbeddingProvider,
        path_filter: Optional[PathFilter] = None,
        chunk_size: int = 6000,
        batch_size: int = 16,
    ):
        self.store = store
        self.persistence = persistence
        self.embedder = embedder
        self.path_filter = path_filter or PathFilter()
        self.chunk_size = chunk_size
        self.batch_size = max(batch_size, 1)
        self._records: Optional[List[ChunkRecord]] = None
        self._matrix: Optional[np.ndarray] = None

    # ------------------------------------------------------------------
    # In-memory view
    # ------------------------------------------------------------------

    def _set_records(self, records: List[ChunkRecord]) -> None:
        self._records = records
        self._matrix = None

    def _ensure_matrix(self) -> np.ndarray:
        if self._matrix is None:
            records = self._records or []
            dims = {len(r.embedding) for r in records if r.embedding}
            if not records or len(dims) != 1:
                if len(dims) > 1:
                    logger.warning(f"Index holds embeddings of mixed sizes {sorted(dims)}; rebuild it")
                self._matrix = np.zeros((len(records), 0), dtype=np.float32)
            else:
                dim = dims.pop()
                matrix = np.zeros((len(records), dim), dtype=np.float32)
                for i, record in enumerate(records):
                    if len(record.embedding) == dim:
                        matrix[i] = record.embedding
                self._matrix = normalize_rows(matrix)
        return self._matrix

    async def ensure_loaded(self) -> int:
        """Load persisted records once; returns the record count."""
        if self._records is None:
            self._set_records(await self.persistence.read_records())
        return len(self._records)

    async def is_available(self) -> bool:
        return await self.ensure_loaded() > 0

    def indexed_paths(self) -> Set[str]:
        return {r.path for r in self._records or []}

    # ------------------------------------------------------------------
    # Building
    # ------------------------------------------------------------------

    def _indexable_files(self) -> List[NoteFile]:
        return [f for f in self.store.list_markdown_files() if self.path_filter.should_index(f)]

    async def _chunk_file(self, file: NoteFile) -> List[Chunk]:
        try:
            text = await self.store.read(file.path, fresh=True)
        except OSError as e:
            logger.warning(f"Skipping unreadable note {file.path}: {e}")
            return []
        return chunk_note(file.path, file.basename, text, self.chunk_size)

    async def _embed_files(self, files: Sequence[NoteFile]) -> Dict[str, List[ChunkRecord]]:
        """Chunk and embed notes. Failed batches are logged and left out."""
        by_path = {f.path: f for f in files}
        chunks: List[Chunk] = []
        for file in files:
            chunks.extend(await self._chunk_file(file))

        records: Dict[str, List[ChunkRecord]] = {f.path: [] for f in files}
        for start in range(0, len(chunks), self.batch_size):
            batch = chunks[start:start + self.batch_size]
            try:
                vectors = await self.embedder.embed_documents([c.content for c in batch])
            except Exception as e:
                logger.warning(f"Embedding batch of {len(batch)} chunks failed: {e}")
                continue
            if len(vectors) != len(batch):
                logger.warning(f"Embedding batch returned {len(vectors)} vectors for {len(batch)} chunks")
                continue
            for chunk, vector in zip(batch, vectors):
                file = by_path[chunk.note_path]
                records[chunk.note_path].append(
                    ChunkRecord(
                        id=chunk.id,
                        path=chunk.note_path,
                        title=chunk.title,
                        mtime=file.mtime,
                        ctime=file.ctime,
                        embedding=[float(x) for x in vector],
                    )
                )
            await asyncio.sleep(0)
        return records

    async def index_vault(self) -> int:
        """Rebuild the whole index. Returns the number of notes indexed."""
        files = self._indexable_files()
        logger.info(f"Rebuilding chunk index for {len(files)} notes")
        by_path = await self._embed_files(files)
        records = [r for path_records in by_path.values() for r in path_records]
        await self.persistence.write_records(records)
        self._set_records(records)
        indexed = sum(1 for path_records in by_path.values() if path_records)
        logger.info(f"Indexed {indexed} notes ({len(records)} chunks)")
        return indexed

    async def index_vault_incremental(self) -> int:
        """Index new or modified notes and drop vanished ones.

        Returns:
            Number of notes added, updated or removed
        """
        indexed = await asyncio.to_thread(self.persistence.indexed_mtimes)
        files = self._indexable_files()
        current = {f.path for f in files}
        changed = [f for f in files if f.path not in indexed or f.mtime > indexed[f.path]]
        removed = [path for path in indexed if path not in current]
        if not changed and not removed:
            logger.info("Chunk index is up to date")
            await self.ensure_loaded()
            return 0

        replacements: Dict[str, List[ChunkRecord]] = {path: [] for path in removed}
        replacements.update(await self._embed_files(changed))
        await self.persistence.replace_paths(replacements)
        self._records = None
        await self.ensure_loaded()
        logger.info(f"Incremental index: {len(changed)} updated, {len(removed)} removed")
        return len(changed) + len(removed)

    async def _indexed_mtime(self, path: str) -> Optional[float]:
        if self._records is not None:
            mtimes = [r.mtime for r in self._records if r.path == path]
            return max(mtimes) if mtimes else None
        return await asyncio.to_thread(self.persistence.indexed_mtime, path)

    async def reindex_file(self, path: str, previous_mtime: Optional[float] = None) -> bool:
        """Re-embed one note if it changed since it was indexed.

        A note that no longer exists or is now excluded is removed instead.
        The whole index is never loaded here; an unloaded index is scanned
        for the note's mtime unless the caller passes ``previous_mtime``.

        Returns:
            True when the persisted index was modified
        """
        file = self.store.get_file(path)
        if file is None or not self.path_filter.should_index(file):
            return await self.remove_file(path)

        previous = previous_mtime if previous_mtime is not None else await self._indexed_mtime(path)
        if previous is not None and file.mtime <= previous:
            return False

        records = (await self._embed_files([file])).get(path, [])
        await self.persistence.update_file_records(path, records)
        self._apply(path, records)
        logger.info(f"Reindexed {path} ({len(records)} chunks)")
        return True

    async def remove_file(self, path: str) -> bool:
        if await self._indexed_mtime(path) is None:
            return False
        await self.persistence.remove_file_records(path)
        self._apply(path, [])
        return True

    def _apply(self, path: str, records: List[ChunkRecord]) -> None:
        """Patch the in-memory view; an unloaded view stays unloaded."""
        if self._records is None:
            return
        kept = [r for r in self._records if r.path != path]
        self._set_records(kept + list(records))

    async def clear_index(self) -> None:
        await self.persistence.clear_index()
        self._set_records([])

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def _embed_queries(self, queries: Iterable[str]) -> List[List[float]]:
        texts = [q for q in queries if q and q.strip()]
        results = await asyncio.gather(
            *(self.embedder.embed_query(q) for q in texts), return_exceptions=True
        )
        vectors = []
        for text, result in zip(texts, results):
            if isinstance(result, Exception):
                logger.warning(f"Query embedding failed for {text!r}: {result}")
                continue
            vectors.append(result)
        return vectors

    async def search(
        self,
        query_variants: Sequence[str],
        max_k: int,
        candidates: Optional[Iterable[str]] = None,
    ) -> List[NoteIdRank]:
        """Rank notes by their best chunk against any query variant.

        Args:
            query_variants: Original query and its phrasings
            max_k: Maximum number of notes returned
            candidates: Restrict results to these note paths

        Returns:
            Notes ranked best first with min-max normalized scores
        """
        if not await self.is_available():
            return []
        matrix = self._ensure_matrix()
        if matrix.shape[1] == 0:
            return []

        query_vectors = [v for v in await self._embed_queries(query_variants) if len(v) == matrix.shape[1]]
        if not query_vectors:
            return []

        allowed = set(candidates) if candidates is not None else None
        rows = [
            i for i, record in enumerate(self._records)
            if allowed is None or record.path in allowed
        ]
        if not rows:
            return []

        queries = normalize_rows(np.asarray(query_vectors, dtype=np.float32))
        similarities = (matrix[rows] @ queries.T).max(axis=1)

        k_per_query = max(max_k * 3, 100)
        top = np.argsort(-similarities, kind="stable")[:k_per_query]
        best: Dict[str, float] = {}
        for position in top:
            path = self._records[rows[position]].path
            score = float(similarities[position])
            if path not in best or score > best[path]:
                best[path] = score

        ranked = sorted(best.items(), key=lambda kv: kv[1], reverse=True)[:max_k]
        if not ranked:
            return []
        high = ranked[0][1]
        low = ranked[-1][1]
        spread = high - low
        return [
            NoteIdRank(
                id=path,
                score=(score - low) / spread if spread > 0 else 1.0,
                engine=Engine.SEMANTIC,
            )
            for path, score in ranked
        ]
