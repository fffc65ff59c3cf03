"""Data model shared by the retrieval stages and the chunk index."""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

MAX_QUERY_LENGTH = 1000
RETURN_ALL_LIMIT = 100

_SALIENT_TERM_PATTERN = re.compile(r"^#?[\w/-]+$", re.UNICODE)


class Engine(str, Enum):
    """Ranking stage that produced a NoteIdRank."""

    GREP = "grep"
    LEXICAL = "lexical"
    SEMANTIC = "semantic"


class ExpansionSource(str, Enum):
    """Where an ExpandedQuery came from."""

    MODEL = "model"
    LOCAL = "local"  # degraded: timeout, error, unparseable or no model


@dataclass(frozen=True)
class NoteIdRank:
    """A scored reference to a note, consumed by rank fusion."""

    id: str
    score: float
    engine: Engine


@dataclass(frozen=True)
class NoteDocument:
    """A note as seen by one retrieval call.

    Instances are immutable; use ``with_metadata`` to derive an enriched copy.
    """

    id: str
    path: str
    title: str
    content: str
    mtime: float
    ctime: float
    tags: Tuple[str, ...] = ()
    score: float = 0.0
    source: str = ""
    include_in_context: bool = False

    def with_metadata(self, **changes: Any) -> "NoteDocument":
        return replace(self, **changes)


@dataclass(frozen=True)
class ExpandedQuery:
    """Result of query expansion.

    Attributes:
        original_query: The query as supplied by the caller
        queries: Original query first, then at most ``max_variants`` phrasings
        salient_terms: Terms taken from the original query text only (scoring)
        expanded_terms: Model-suggested terms (recall only, never scoring)
        source: MODEL when the model produced the variants, LOCAL otherwise
    """

    original_query: str
    queries: Tuple[str, ...] = ()
    salient_terms: Tuple[str, ...] = ()
    expanded_terms: Tuple[str, ...] = ()
    source: ExpansionSource = ExpansionSource.LOCAL

    @property
    def expanded_queries(self) -> Tuple[str, ...]:
        return self.queries[1:]

    @property
    def degraded(self) -> bool:
        return self.source is ExpansionSource.LOCAL

    @classmethod
    def empty(cls) -> "ExpandedQuery":
        return cls(original_query="")


class ChunkRecord(BaseModel):
    """One persisted chunk embedding (a single JSON line in a partition)."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., min_length=1, description="<note path>#<chunk index>")
    path: str = Field(..., min_length=1)
    title: str = ""
    mtime: float = 0.0
    ctime: float = 0.0
    embedding: List[float] = Field(default_factory=list)

    @model_validator(mode="after")
    def _id_belongs_to_path(self) -> "ChunkRecord":
        if not self.id.startswith(f"{self.path}#"):
            raise ValueError(f"Chunk id {self.id!r} does not belong to path {self.path!r}")
        return self


class TimeRange(BaseModel):
    """Inclusive time window used by the filter retriever."""

    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def _naive_local(cls, value: datetime) -> datetime:
        # Naive values are local time; aware ones are converted to match.
        if value.tzinfo is not None:
            return value.astimezone().replace(tzinfo=None)
        return value

    @model_validator(mode="after")
    def _ordered(self) -> "TimeRange":
        if self.start > self.end:
            raise ValueError("time range start must not be after end")
        return self

    def contains(self, timestamp: float) -> bool:
        return self.start.timestamp() <= timestamp <= self.end.timestamp()


class SearchOptions(BaseModel):
    """Per-call configuration for the tiered retriever."""

    max_results: int = Field(default=30, ge=1, le=RETURN_ALL_LIMIT)
    enable_semantic: bool = False
    semantic_weight: float = Field(default=2.0, ge=0)
    candidate_limit: int = Field(default=500, ge=10, le=1000)
    graph_hops: int = Field(default=1, ge=0, le=3)
    rrf_k: int = Field(default=60, ge=1)
    return_all: bool = False
    progressive: bool = True
    enable_lexical_boosts: bool = True

    @classmethod
    def from_settings(cls, settings: Any, **overrides: Any) -> "SearchOptions":
        values: Dict[str, Any] = {
            "max_results": settings.max_results,
            "enable_semantic": settings.enable_semantic,
            "semantic_weight": settings.semantic_weight,
            "candidate_limit": settings.candidate_limit,
            "graph_hops": settings.graph_hops,
            "rrf_k": settings.rrf_k,
            "enable_lexical_boosts": settings.enable_lexical_boosts,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    @property
    def effective_max_results(self) -> int:
        return RETURN_ALL_LIMIT if self.return_all else self.max_results


class SearchRequest(BaseModel):
    """Input of the search entry point."""

    query: str = Field(..., min_length=1)
    salient_terms: List[str] = Field(default_factory=list)
    time_range: Optional[TimeRange] = None

    @field_validator("query")
    @classmethod
    def _clean_query(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("query must not be blank")
        return cleaned[:MAX_QUERY_LENGTH]

    @field_validator("salient_terms")
    @classmethod
    def _validate_terms(cls, value: List[str]) -> List[str]:
        terms: List[str] = []
        for raw in value:
            term = raw.strip().lower()
            if len(term) < 2 or not _SALIENT_TERM_PATTERN.match(term):
                raise ValueError(f"Invalid salient term: {raw!r}")
            if term not in terms:
                terms.append(term)
        return terms


class SearchResult(BaseModel):
    """One ranked hit returned to the caller."""

    title: str
    content: str
    path: str
    score: float
    source: str
    mtime: datetime
    include_in_context: bool = False

    @classmethod
    def from_document(cls, doc: NoteDocument) -> "SearchResult":
        return cls(
            title=doc.title,
            content=doc.content,
            path=doc.path,
            score=doc.score,
            source=doc.source,
            mtime=datetime.fromtimestamp(doc.mtime),
            include_in_context=doc.include_in_context,
        )


@dataclass
class RetrieveResult:
    """Output of one TieredRetriever.retrieve call."""

    results: List[NoteIdRank] = field(default_factory=list)
    query_expansion: Optional[ExpandedQuery] = None
    graph_hops: int = 0
    fallback: bool = False
