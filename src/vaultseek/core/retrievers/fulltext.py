"""
Ephemeral full-text engine over one query's candidate set.

A fresh in-memory SQLite FTS5 table is built from the candidate notes, searched
with BM25 ranking, and torn down with ``clear()``. Nothing survives between
queries.
"""

import logging
import re
import time
from typing import Dict, Iterable, List, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine as SAEngine
from sqlalchemy.pool import StaticPool

from vaultseek.core.models import Engine, NoteDocument, NoteIdRank

_TOKEN = re.compile(r"[\w]+", re.UNICODE)
MAX_MATCH_TOKENS = 64

# bm25() column weights: note_id, title, path_terms, tags, body
BM25_WEIGHTS = (0.0, 3.0, 2.0, 2.0, 1.0)


def tokenize(values: Iterable[str]) -> List[str]:
    tokens: List[str] = []
    for value in values:
        for token in _TOKEN.findall((value or "").lower()):
            if len(token) >= 2 and token not in tokens:
                tokens.append(token)
    return tokens[:MAX_MATCH_TOKENS]


def build_match_expression(tokens: List[str]) -> str:
    """OR-combined quoted tokens, safe for FTS5 MATCH."""
    quoted = ['"' + token.replace('"', '""') + '"' for token in tokens]
    return " OR ".join(quoted)


class FullTextEngine:
    """In-memory BM25 index built per query.

    Usage:
        with FullTextEngine() as engine:
            engine.build_from_candidates(docs)
            ranked = engine.search(queries, salient_terms, expanded_terms)
    """

    def __init__(self):
        self._engine: Optional[SAEngine] = None
        self._order: List[str] = []
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.clear()

    @property
    def is_built(self) -> bool:
        return self._engine is not None

    def build_from_candidates(self, docs: List[NoteDocument]) -> int:
        """Index the given notes, replacing any previous build.

        Returns:
            Number of indexed notes
        """
        self.clear()
        start = time.perf_counter()
        self._engine = create_engine(
            "sqlite://",
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
        rows = [
            {
                "note_id": doc.id,
                "title": doc.title,
                "path_terms": doc.path.replace("/", " ").replace("-", " ").replace("_", " "),
                "tags": " ".join(t.lstrip("#").replace("/", " ") for t in doc.tags),
                "body": doc.content,
            }
            for doc in docs
        ]
        with self._engine.begin() as conn:
            conn.execute(text("""
                CREATE VIRTUAL TABLE note_fts USING fts5(
                    note_id UNINDEXED, title, path_terms, tags, body,
                    tokenize = 'porter unicode61 remove_diacritics 2'
                )
            """))
            if rows:
                conn.execute(
                    text("""
                        INSERT INTO note_fts(note_id, title, path_terms, tags, body)
                        VALUES (:note_id, :title, :path_terms, :tags, :body)
                    """),
                    rows,
                )
        self._order = [doc.id for doc in docs]
        elapsed = (time.perf_counter() - start) * 1000
        self.logger.info(f"Full-text build: {len(rows)} notes in {elapsed:.0f}ms")
        return len(rows)

    def _match(self, expression: str, limit: int) -> Dict[str, float]:
        weights = ", ".join(str(w) for w in BM25_WEIGHTS)
        query = text(f"""
            SELECT note_id, bm25(note_fts, {weights}) AS score
            FROM note_fts
            WHERE note_fts MATCH :query
            ORDER BY score
            LIMIT :limit
        """)
        with self._engine.connect() as conn:
            result = conn.execute(query, {"query": expression, "limit": limit})
            # bm25() is negative, lower is better
            return {row[0]: -float(row[1]) for row in result}

    def search(
        self,
        queries: List[str],
        salient_terms: Optional[List[str]] = None,
        expanded_terms: Optional[List[str]] = None,
        limit: int = 100,
    ) -> List[NoteIdRank]:
        """Rank indexed notes.

        Queries and salient terms decide the score. Expanded terms only widen
        the match set: notes matched through them alone come last with score 0,
        in candidate order.
        """
        if self._engine is None:
            return []

        start = time.perf_counter()
        scoring_tokens = tokenize(list(queries) + list(salient_terms or []))
        scored: Dict[str, float] = {}
        if scoring_tokens:
            scored = self._match(build_match_expression(scoring_tokens), limit)

        results = [
            NoteIdRank(id=note_id, score=score, engine=Engine.LEXICAL)
            for note_id, score in sorted(scored.items(), key=lambda kv: kv[1], reverse=True)
        ]

        recall_tokens = [t for t in tokenize(expanded_terms or []) if t not in scoring_tokens]
        if recall_tokens and len(results) < limit:
            recalled = self._match(build_match_expression(recall_tokens), limit)
            for note_id in self._order:
                if len(results) >= limit:
                    break
                if note_id in recalled and note_id not in scored:
                    results.append(NoteIdRank(id=note_id, score=0.0, engine=Engine.LEXICAL))

        elapsed = (time.perf_counter() - start) * 1000
        self.logger.info(f"Full-text search: {len(results)} results in {elapsed:.0f}ms")
        return results

    def get_stats(self) -> dict:
        if self._engine is None:
            return {"built": False, "documents": 0}
        with self._engine.connect() as conn:
            count = conn.execute(text("SELECT COUNT(*) FROM note_fts")).scalar() or 0
        return {"built": True, "documents": int(count)}

    def clear(self) -> None:
        """Drop the index and release its connection."""
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
        self._order = []
