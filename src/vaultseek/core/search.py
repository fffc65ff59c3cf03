"""Search entry point: guaranteed filter matches merged with ranked results."""

import logging
import time
from typing import Callable, List, Optional

from vaultseek.config import Settings, get_settings
from vaultseek.core.expansion import QueryExpander
from vaultseek.core.index.manager import ChunkIndexManager
from vaultseek.core.interfaces import (
    ChatModel,
    DocumentStore,
    EmbeddingProvider,
    LinkGraph,
    MetadataReader,
)
from vaultseek.core.models import NoteDocument, SearchOptions, SearchRequest, SearchResult
from vaultseek.core.patterns import PathFilter
from vaultseek.core.retrievers.filter import FilterRetriever
from vaultseek.core.retrievers.semantic import SemanticReranker
from vaultseek.core.retrievers.tiered import TieredRetriever

logger = logging.getLogger(__name__)

MIN_CONTEXT_SCORE = 0.1


class VaultSearch:
    """Searches one vault.

    Filter matches (``[[Title]]`` mentions, tags, time range) always come
    first and are never truncated. Without a time range, ranked results from
    the tiered retriever follow, skipping notes already included.
    """

    def __init__(
        self,
        store: DocumentStore,
        graph: LinkGraph,
        metadata: MetadataReader,
        settings: Optional[Settings] = None,
        chat_model: Optional[ChatModel] = None,
        embedder: Optional[EmbeddingProvider] = None,
        index_manager: Optional[ChunkIndexManager] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings or get_settings()
        self.store = store
        self.metadata = metadata
        self.clock = clock
        self.path_filter = PathFilter.from_settings(self.settings, metadata)
        self.expander = QueryExpander(
            chat_model,
            max_variants=self.settings.expansion_max_variants,
            timeout=self.settings.llm_timeout_seconds,
            cache_size=self.settings.expansion_cache_size,
        )
        reranker = SemanticReranker(store, embedder) if embedder is not None else None
        self.retriever = TieredRetriever(
            store,
            graph,
            self.expander,
            metadata=metadata,
            path_filter=self.path_filter,
            reranker=reranker,
            index_manager=index_manager,
            co_citation_threshold=self.settings.co_citation_threshold,
        )

    async def search(
        self, request: SearchRequest, options: Optional[SearchOptions] = None
    ) -> List[SearchResult]:
        """Run a search.

        Args:
            request: Query, salient terms and optional time range
            options: Per-call options; built from settings when None

        Returns:
            Results, guaranteed matches first
        """
        options = options or SearchOptions.from_settings(self.settings)
        filter_retriever = FilterRetriever(
            self.store,
            self.metadata,
            salient_terms=request.salient_terms,
            time_range=request.time_range,
            max_k=options.effective_max_results,
            return_all=options.return_all,
            path_filter=self.path_filter,
            daily_note_max_days=self.settings.daily_note_max_days,
            clock=self.clock,
        )
        guaranteed = await filter_retriever.get_relevant_documents(request.query)
        if filter_retriever.has_time_range():
            logger.info(f"Time-range search returned {len(guaranteed)} notes")
            return [SearchResult.from_document(doc) for doc in guaranteed]

        retrieved = await self.retriever.retrieve(request.query, options, request.salient_terms)

        results = [SearchResult.from_document(doc) for doc in guaranteed]
        seen = {doc.path for doc in guaranteed}
        for rank in retrieved.results:
            if rank.id in seen:
                continue
            doc = await self._load(rank.id)
            if doc is None:
                continue
            seen.add(rank.id)
            doc = doc.with_metadata(
                score=rank.score,
                source=rank.engine.value,
                include_in_context=rank.score > MIN_CONTEXT_SCORE,
            )
            results.append(SearchResult.from_document(doc))

        logger.info(
            f"Search {request.query!r}: {len(guaranteed)} guaranteed, "
            f"{len(results) - len(guaranteed)} ranked"
            + (" (grep fallback)" if retrieved.fallback else "")
        )
        return results

    async def _load(self, path: str) -> Optional[NoteDocument]:
        file = self.store.get_file(path)
        if file is None:
            return None
        try:
            content = await self.store.read(path)
        except OSError as e:
            logger.warning(f"Failed to read ranked note {path}: {e}")
            return None
        return NoteDocument(
            id=path,
            path=path,
            title=file.basename,
            content=content,
            mtime=file.mtime,
            ctime=file.ctime,
            tags=tuple(self.metadata.get_tags(path)),
        )
