"""Tiered retrieval: expand, grep, graph, full-text, semantic, fuse.

Pipeline for one query:

1. Expand the query (phrasings, salient and expanded terms)
2. Grep the vault for every recall term
3. Grow the grep hits through the link graph and the active note
4. Cap the candidates, build a throwaway full-text index over them and search
5. Optionally rank the candidates semantically
6. Fuse lexical, semantic and a weak grep prior with weighted RRF
7. Boost folder clusters, normalize scores and take a note-diverse top-K

Any failure in the pipeline falls back to grep-only results.
"""

import asyncio
import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from vaultseek.core.expansion import QueryExpander, salient_terms_for
from vaultseek.core.index.manager import ChunkIndexManager
from vaultseek.core.interfaces import DocumentStore, LinkGraph, MetadataReader
from vaultseek.core.models import (
    RETURN_ALL_LIMIT,
    Engine,
    ExpandedQuery,
    NoteDocument,
    NoteIdRank,
    RetrieveResult,
    SearchOptions,
)
from vaultseek.core.patterns import PathFilter
from vaultseek.core.retrievers.fulltext import FullTextEngine
from vaultseek.core.retrievers.fusion import weighted_rrf
from vaultseek.core.retrievers.graph import DEFAULT_CO_CITATION_THRESHOLD, GraphExpander
from vaultseek.core.retrievers.grep import GrepScanner
from vaultseek.core.retrievers.scoring import rescore
from vaultseek.core.retrievers.semantic import SemanticReranker

GREP_PRIOR_SIZE = 50
GREP_PRIOR_WEIGHT = 0.3
LEXICAL_WEIGHT = 1.0
FULLTEXT_RESULT_MULTIPLIER = 3
LOW_RECALL_THRESHOLD = 5
MAX_GRAPH_HOPS = 3
READ_BATCH_SIZE = 30
GREP_RECALL_LIMIT = 500


def tag_recall_terms(salient_terms: Iterable[str]) -> List[str]:
    """Recall terms for tags: ``#a/b`` gives ``a/b``, ``a``, ``b``."""
    terms: List[str] = []

    def add(term: str) -> None:
        if term and term not in terms:
            terms.append(term)

    for term in salient_terms:
        if not term.startswith("#"):
            continue
        body = term[1:].lower().strip("/")
        if not body:
            continue
        add(body)
        segments = [s for s in body.split("/") if s]
        for i in range(1, len(segments)):
            add("/".join(segments[:i]))
        for segment in segments:
            add(segment)
    return terms


def build_recall_queries(expanded: ExpandedQuery, salient_terms: Sequence[str]) -> List[str]:
    """Queries, expanded terms, salient terms and tag recall terms, de-duplicated."""
    recall: List[str] = []
    for value in (
        list(expanded.queries)
        + list(expanded.expanded_terms)
        + list(salient_terms)
        + tag_recall_terms(salient_terms)
    ):
        normalized = value.strip().lower()
        if normalized and normalized not in recall:
            recall.append(normalized)
    return recall


class TieredRetriever:
    """Runs the retrieval pipeline for one vault.

    Args:
        store: Document store
        graph: Link graph
        expander: Shared query expander (its cache outlives a single call)
        metadata: Tag reader, used to index tags in the full-text stage
        path_filter: Inclusion/exclusion patterns
        reranker: On-the-fly semantic reranker
        index_manager: Persisted chunk index, preferred over the reranker
        co_citation_threshold: See GraphExpander
    """

    def __init__(
        self,
        store: DocumentStore,
        graph: LinkGraph,
        expander: QueryExpander,
        metadata: Optional[MetadataReader] = None,
        path_filter: Optional[PathFilter] = None,
        reranker: Optional[SemanticReranker] = None,
        index_manager: Optional[ChunkIndexManager] = None,
        co_citation_threshold: int = DEFAULT_CO_CITATION_THRESHOLD,
    ):
        self.store = store
        self.metadata = metadata
        self.expander = expander
        self.path_filter = path_filter
        self.grep_scanner = GrepScanner(store, path_filter)
        self.graph_expander = GraphExpander(graph, co_citation_threshold)
        self.reranker = reranker
        self.index_manager = index_manager
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    async def retrieve(
        self,
        query: str,
        options: Optional[SearchOptions] = None,
        salient_terms: Optional[Sequence[str]] = None,
    ) -> RetrieveResult:
        """Rank notes for ``query``.

        Args:
            query: Free-text query
            options: Per-call options (defaults when None)
            salient_terms: Caller-supplied scoring terms, merged with the
                terms extracted from the query

        Returns:
            RetrieveResult with fused NoteIdRanks, best first
        """
        options = options or SearchOptions()
        limit = options.effective_max_results
        expanded: Optional[ExpandedQuery] = None
        try:
            expanded = await self.expander.expand(query)
            salient = list(dict.fromkeys(list(expanded.salient_terms) + list(salient_terms or [])))
            recall = build_recall_queries(expanded, salient)
            self.logger.info(
                f"Retrieving {query!r}: {len(expanded.queries)} queries, "
                f"salient={salient}, recall-only={list(expanded.expanded_terms)}"
            )

            hops = options.graph_hops
            results = await self._rank(expanded, salient, recall, options, hops)
            if options.progressive:
                results, hops = await self.progressive_expansion(
                    results, hops, lambda h: self._rank(expanded, salient, recall, options, h)
                )
            return RetrieveResult(results=results[:limit], query_expansion=expanded, graph_hops=hops)
        except Exception as e:
            self.logger.error(f"Tiered retrieval failed, falling back to grep: {e}", exc_info=True)
            fallback_terms = salient_terms_for(query) + list(salient_terms or [])
            results = await self.fallback_search(query, limit, fallback_terms)
            return RetrieveResult(results=results, query_expansion=expanded, fallback=True)

    async def progressive_expansion(self, results, hops, rerun) -> Tuple[List[NoteIdRank], int]:
        """Retry once with one more hop when recall is low; keep the larger result."""
        if len(results) >= LOW_RECALL_THRESHOLD or hops >= MAX_GRAPH_HOPS:
            return results, hops
        self.logger.info(f"Low recall ({len(results)}), expanding to {hops + 1} hops")
        expanded_results = await rerun(hops + 1)
        if len(expanded_results) > len(results):
            return expanded_results, hops + 1
        return results, hops

    async def _rank(
        self,
        expanded: ExpandedQuery,
        salient: List[str],
        recall: List[str],
        options: SearchOptions,
        hops: int,
    ) -> List[NoteIdRank]:
        grep_limit = RETURN_ALL_LIMIT if options.return_all else max(options.candidate_limit, GREP_RECALL_LIMIT)
        grep_hits = await self.grep_scanner.scan(recall, grep_limit)

        active = self.store.get_active_file()
        candidates = self.graph_expander.expand_candidates(
            grep_hits, active.path if active else None, hops
        )
        candidates = [p for p in candidates if self._allowed(p)][:options.candidate_limit]

        lexical = await self._lexical(candidates, expanded, salient, options)

        semantic: List[NoteIdRank] = []
        if options.enable_semantic and options.semantic_weight > 0:
            semantic = await self._semantic(candidates, expanded, options)

        grep_prior = [
            NoteIdRank(id=path, score=1.0 / (i + 1), engine=Engine.GREP)
            for i, path in enumerate(grep_hits[:GREP_PRIOR_SIZE])
        ]
        rankings: Dict[str, List[NoteIdRank]] = {"lexical": lexical, "grep_prior": grep_prior}
        weights = {"lexical": LEXICAL_WEIGHT, "grep_prior": GREP_PRIOR_WEIGHT}
        if semantic:
            rankings["semantic"] = semantic
            weights["semantic"] = options.semantic_weight

        fused = weighted_rrf(rankings, weights, k=options.rrf_k, scale=True)
        self.logger.info(
            f"Fusion: {len(lexical)} lexical, {len(semantic)} semantic, "
            f"{len(grep_prior)} grep prior -> {len(fused)} results"
        )
        return rescore(fused, options.effective_max_results, folder_boost=options.enable_lexical_boosts)

    def _allowed(self, path: str) -> bool:
        file = self.store.get_file(path)
        if file is None:
            return False
        return self.path_filter is None or self.path_filter.should_index(file)

    async def _load_documents(self, paths: Sequence[str]) -> List[NoteDocument]:
        documents: List[NoteDocument] = []
        for start in range(0, len(paths), READ_BATCH_SIZE):
            batch = paths[start:start + READ_BATCH_SIZE]
            contents = await asyncio.gather(
                *(self.store.read(path) for path in batch), return_exceptions=True
            )
            for path, content in zip(batch, contents):
                file = self.store.get_file(path)
                if isinstance(content, Exception) or file is None:
                    self.logger.debug(f"Skipping candidate {path}: {content}")
                    continue
                tags = tuple(self.metadata.get_tags(path)) if self.metadata else ()
                documents.append(
                    NoteDocument(
                        id=path,
                        path=path,
                        title=file.basename,
                        content=content,
                        mtime=file.mtime,
                        ctime=file.ctime,
                        tags=tags,
                    )
                )
        return documents

    async def _lexical(
        self,
        candidates: List[str],
        expanded: ExpandedQuery,
        salient: List[str],
        options: SearchOptions,
    ) -> List[NoteIdRank]:
        if not candidates:
            return []
        docs = await self._load_documents(candidates)
        if options.return_all:
            limit = RETURN_ALL_LIMIT * FULLTEXT_RESULT_MULTIPLIER
        else:
            limit = max(options.effective_max_results * FULLTEXT_RESULT_MULTIPLIER, FULLTEXT_RESULT_MULTIPLIER)
        engine = FullTextEngine()
        try:
            engine.build_from_candidates(docs)
            return engine.search(
                list(expanded.queries),
                salient + tag_recall_terms(salient),
                list(expanded.expanded_terms),
                limit=limit,
            )
        finally:
            engine.clear()

    async def _semantic(
        self, candidates: List[str], expanded: ExpandedQuery, options: SearchOptions
    ) -> List[NoteIdRank]:
        queries = list(expanded.queries)
        limit = max(options.effective_max_results * FULLTEXT_RESULT_MULTIPLIER, FULLTEXT_RESULT_MULTIPLIER)
        if self.index_manager is not None and await self.index_manager.is_available():
            return await self.index_manager.search(queries, limit, candidates)
        if self.reranker is None or not candidates:
            return []
        query_embeddings = await self.reranker.embed_queries(queries)
        ranked = await self.reranker.re_rank_by_similarity(candidates, query_embeddings)
        return ranked[:limit]

    async def fallback_search(
        self, query: str, limit: int, salient_terms: Optional[Sequence[str]] = None
    ) -> List[NoteIdRank]:
        """Grep-only ranking, scored 1/rank."""
        try:
            hits = await self.grep_scanner.scan([query] + list(salient_terms or []), limit)
        except Exception as e:
            self.logger.error(f"Fallback grep failed: {e}", exc_info=True)
            return []
        return [
            NoteIdRank(id=path, score=1.0 / (i + 1), engine=Engine.GREP)
            for i, path in enumerate(hits)
        ]
