"""On-the-fly semantic reranking of a capped candidate set."""

import asyncio
import logging
from typing import List, Optional, Sequence

from vaultseek.core.cancellation import CancellationToken
from vaultseek.core.interfaces import DocumentStore, EmbeddingProvider
from vaultseek.core.models import Engine, NoteIdRank
from vaultseek.core.vector import max_similarity

SNIPPET_LENGTH = 2000


class SemanticReranker:
    """Scores candidates by max cosine similarity to any query variant.

    Args:
        store: Document store used to read candidate snippets
        embedder: Embedding provider
        concurrency: Maximum number of snippets embedded at once
    """

    def __init__(self, store: DocumentStore, embedder: EmbeddingProvider, concurrency: int = 8):
        self.store = store
        self.embedder = embedder
        self._semaphore = asyncio.Semaphore(max(concurrency, 1))
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    async def _embed(self, text: str, signal: Optional[CancellationToken]) -> List[float]:
        async with self._semaphore:
            if signal is not None:
                return await signal.guard(self.embedder.embed_query(text))
            return await self.embedder.embed_query(text)

    async def embed_queries(
        self, queries: Sequence[str], signal: Optional[CancellationToken] = None
    ) -> List[List[float]]:
        """Embed each query variant; failed variants are left out."""
        results = await asyncio.gather(
            *(self._embed(q, signal) for q in queries if q.strip()), return_exceptions=True
        )
        embeddings: List[List[float]] = []
        for result in results:
            if isinstance(result, Exception):
                self.logger.warning(f"Query embedding failed: {result}")
                continue
            embeddings.append(result)
        return embeddings

    async def _score(
        self,
        path: str,
        query_embeddings: Sequence[Sequence[float]],
        signal: Optional[CancellationToken],
    ) -> float:
        try:
            content = await self.store.read(path)
        except OSError as e:
            self.logger.warning(f"Failed to read {path} for reranking: {e}")
            return 0.0
        snippet = content[:SNIPPET_LENGTH]
        if not snippet.strip():
            return 0.0
        try:
            embedding = await self._embed(snippet, signal)
        except Exception as e:
            self.logger.warning(f"Failed to embed {path}: {e}")
            return 0.0
        return max_similarity(embedding, query_embeddings)

    async def re_rank_by_similarity(
        self,
        candidates: Sequence[str],
        query_embeddings: Sequence[Sequence[float]],
        signal: Optional[CancellationToken] = None,
    ) -> List[NoteIdRank]:
        """Rank candidate paths by similarity, best first.

        Read and embedding failures score 0 instead of failing the batch.
        """
        if not candidates:
            return []
        if not query_embeddings:
            return [NoteIdRank(id=path, score=0.0, engine=Engine.SEMANTIC) for path in candidates]

        scores = await asyncio.gather(
            *(self._score(path, query_embeddings, signal) for path in candidates)
        )
        ranked = [
            NoteIdRank(id=path, score=score, engine=Engine.SEMANTIC)
            for path, score in zip(candidates, scores)
        ]
        ranked.sort(key=lambda r: r.score, reverse=True)
        return ranked
