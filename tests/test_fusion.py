"""Tests for reciprocal rank fusion."""

import pytest

from vaultseek.core.models import Engine, NoteIdRank
from vaultseek.core.retrievers.fusion import apply_tie_breakers, simple_rrf, weighted_rrf


def ranked(ids, engine=Engine.LEXICAL):
    return [NoteIdRank(id=i, score=1.0 / (n + 1), engine=engine) for n, i in enumerate(ids)]


def test_shared_top_ids_beat_single_list_id():
    fused = weighted_rrf({"l1": ranked("ABC"), "l2": ranked("BAC")}, k=60)

    order = [r.id for r in fused]
    assert set(order[:2]) == {"A", "B"}
    assert order[2] == "C"
    assert fused[0].score == pytest.approx(fused[1].score)


def test_score_formula():
    fused = weighted_rrf({"l1": ranked("AB")}, weights={"l1": 2.0}, k=10)
    assert fused[0].score == pytest.approx(2.0 / 11)
    assert fused[1].score == pytest.approx(2.0 / 12)


def test_raising_a_weight_never_lowers_its_items():
    rankings = {"lex": ranked("ABC"), "sem": ranked("CBA", Engine.SEMANTIC)}
    low = {r.id: r.score for r in weighted_rrf(rankings, {"lex": 1.0, "sem": 1.0})}
    high = {r.id: r.score for r in weighted_rrf(rankings, {"lex": 1.0, "sem": 3.0})}
    for note_id in "ABC":
        assert high[note_id] >= low[note_id]


def test_heavier_list_lifts_its_unique_ids():
    rankings = {"l1": ranked(["A", "C"]), "l2": ranked(["B", "C"])}

    equal = {r.id: r.score for r in weighted_rrf(rankings, {"l1": 1.0, "l2": 1.0})}
    heavier = [r.id for r in weighted_rrf(rankings, {"l1": 2.0, "l2": 1.0})]

    assert equal["A"] == pytest.approx(equal["B"])
    assert heavier.index("A") < heavier.index("B")


def test_engine_comes_from_best_rank():
    fused = weighted_rrf({
        "lex": ranked(["A", "B"]),
        "sem": ranked(["B", "A"], Engine.SEMANTIC),
    })
    engines = {r.id: r.engine for r in fused}
    assert engines["A"] is Engine.LEXICAL
    assert engines["B"] is Engine.SEMANTIC


def test_duplicate_ids_in_one_list_count_once():
    fused = weighted_rrf({"l1": ranked(["A", "A", "B"])}, k=60)
    scores = {r.id: r.score for r in fused}
    assert scores["A"] == pytest.approx(1 / 61)
    assert scores["B"] == pytest.approx(1 / 63)


def test_scaled_scores_are_capped():
    fused = weighted_rrf({"a": ranked("X"), "b": ranked("X"), "c": ranked("X")}, k=60, scale=True)
    assert fused[0].score == 1.0

    single = weighted_rrf({"a": ranked(["X", "Y"])}, k=60, scale=True)
    assert single[1].score == pytest.approx(30 / 62)


def test_empty_and_invalid_k():
    assert weighted_rrf({}) == []
    with pytest.raises(ValueError):
        weighted_rrf({"l1": ranked("A")}, k=0)


def test_simple_rrf_matches_equal_weights():
    lists = [ranked("ABC"), ranked("CAB")]
    simple = [(r.id, r.score) for r in simple_rrf(lists)]
    weighted = [(r.id, r.score) for r in weighted_rrf({"x": lists[0], "y": lists[1]})]
    assert simple == weighted


def test_tie_breakers_order_equal_scores():
    items = [
        NoteIdRank(id="old", score=0.5, engine=Engine.LEXICAL),
        NoteIdRank(id="new", score=0.5, engine=Engine.LEXICAL),
        NoteIdRank(id="top", score=0.9, engine=Engine.LEXICAL),
    ]
    mtimes = {"old": 1.0, "new": 2.0, "top": 0.0}

    result = apply_tie_breakers(items, [mtimes.get])

    assert [r.id for r in result] == ["top", "new", "old"]
