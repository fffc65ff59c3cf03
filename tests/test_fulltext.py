"""Tests for the per-query full-text engine."""

from tests.conftest import NOW
from vaultseek.core.models import Engine, NoteDocument
from vaultseek.core.retrievers.fulltext import FullTextEngine, build_match_expression, tokenize


def doc(path, content, title=None, tags=()):
    name = title or path.rsplit("/", 1)[-1][:-3]
    return NoteDocument(
        id=path, path=path, title=name, content=content, mtime=NOW, ctime=NOW, tags=tuple(tags)
    )


CANDIDATES = [
    doc("cooking/bread.md", "Sourdough bread needs a starter and patience."),
    doc("music/piano.md", "Piano practice with scales. Piano piano.", tags=("#music",)),
    doc("music/theory.md", "Harmony and counterpoint, some piano mentions."),
    doc("music/keys.md", "Keyboard exercises for beginners."),
]


def test_tokenize_dedupes_and_drops_single_chars():
    assert tokenize(["Piano, a piano!", "x scales"]) == ["piano", "scales"]


def test_match_expression_quotes_tokens():
    assert build_match_expression(["a\"b", "c"]) == '"a""b" OR "c"'


def test_search_ranks_by_relevance():
    with FullTextEngine() as engine:
        assert engine.build_from_candidates(CANDIDATES) == 4
        results = engine.search(["piano practice"])

    ids = [r.id for r in results]
    assert ids[0] == "music/piano.md"
    assert "music/theory.md" in ids
    assert "cooking/bread.md" not in ids
    assert all(r.engine is Engine.LEXICAL for r in results)
    assert all(r.score > 0 for r in results)


def test_title_and_tags_are_searchable():
    with FullTextEngine() as engine:
        engine.build_from_candidates(CANDIDATES)
        assert engine.search(["music"])
        assert "music/keys.md" in [r.id for r in engine.search(["keys"])]


def test_expanded_terms_only_widen_recall():
    with FullTextEngine() as engine:
        engine.build_from_candidates(CANDIDATES)
        results = engine.search(["piano"], expanded_terms=["keyboard"])

    by_id = {r.id: r for r in results}
    assert "music/keys.md" in by_id
    assert by_id["music/keys.md"].score == 0.0
    assert results[-1].id == "music/keys.md"
    assert by_id["music/piano.md"].score > 0


def test_limit_is_respected():
    with FullTextEngine() as engine:
        engine.build_from_candidates(CANDIDATES)
        assert len(engine.search(["piano"], expanded_terms=["keyboard"], limit=1)) == 1


def test_clear_drops_everything():
    engine = FullTextEngine()
    engine.build_from_candidates(CANDIDATES)
    assert engine.get_stats() == {"built": True, "documents": 4}

    engine.clear()

    assert not engine.is_built
    assert engine.get_stats() == {"built": False, "documents": 0}
    assert engine.search(["piano"]) == []


def test_rebuild_replaces_previous_candidates():
    with FullTextEngine() as engine:
        engine.build_from_candidates(CANDIDATES)
        engine.build_from_candidates(CANDIDATES[:1])
        assert engine.search(["piano"]) == []
        assert [r.id for r in engine.search(["sourdough"])] == ["cooking/bread.md"]


def test_empty_candidate_set():
    with FullTextEngine() as engine:
        assert engine.build_from_candidates([]) == 0
        assert engine.search(["anything"]) == []
