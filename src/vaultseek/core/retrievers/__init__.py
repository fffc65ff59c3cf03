"""Retrieval stages of the tiered search pipeline."""

from vaultseek.core.retrievers.filter import FilterRetriever
from vaultseek.core.retrievers.fulltext import FullTextEngine
from vaultseek.core.retrievers.fusion import apply_tie_breakers, simple_rrf, weighted_rrf
from vaultseek.core.retrievers.graph import GraphExpander
from vaultseek.core.retrievers.grep import GrepScanner, is_grep_worthy
from vaultseek.core.retrievers.semantic import SemanticReranker
from vaultseek.core.retrievers.tiered import TieredRetriever

__all__ = [
    "FilterRetriever",
    "FullTextEngine",
    "GraphExpander",
    "GrepScanner",
    "SemanticReranker",
    "TieredRetriever",
    "apply_tie_breakers",
    "is_grep_worthy",
    "simple_rrf",
    "weighted_rrf",
]
