"""Weighted Reciprocal Rank Fusion.

Each ranked list contributes ``weight / (k + rank)`` to every id it contains,
with rank starting at 1. Ids near the top of several lists beat ids that top
only one.
"""

from typing import Callable, Dict, List, Mapping, Optional, Sequence

from vaultseek.core.models import NoteIdRank

DEFAULT_RRF_K = 60


def weighted_rrf(
    rankings: Mapping[str, Sequence[NoteIdRank]],
    weights: Optional[Mapping[str, float]] = None,
    k: int = DEFAULT_RRF_K,
    scale: bool = False,
) -> List[NoteIdRank]:
    """Fuse named ranked lists into one list.

    Args:
        rankings: List name -> ranked NoteIdRanks (best first)
        weights: List name -> weight; missing names weigh 1.0
        k: Smoothing constant, must be positive
        scale: Multiply fused scores by k/2 and cap at 1.0 for display

    Returns:
        Fused ranking, best first. Each entry keeps the engine of the list
        in which it ranked best. Equal scores keep first-seen order.
    """
    if k <= 0:
        raise ValueError("k must be positive")
    weights = weights or {}

    scores: Dict[str, float] = {}
    best: Dict[str, tuple] = {}
    for name, ranking in rankings.items():
        weight = float(weights.get(name, 1.0))
        seen = set()
        for position, item in enumerate(ranking):
            if item.id in seen:
                continue
            seen.add(item.id)
            rank = position + 1
            scores[item.id] = scores.get(item.id, 0.0) + weight / (k + rank)
            if item.id not in best or rank < best[item.id][0]:
                best[item.id] = (rank, item.engine)

    ordered = sorted(scores, key=lambda note_id: scores[note_id], reverse=True)
    factor = k / 2 if scale else 1.0
    return [
        NoteIdRank(
            id=note_id,
            score=min(1.0, scores[note_id] * factor) if scale else scores[note_id],
            engine=best[note_id][1],
        )
        for note_id in ordered
    ]


def simple_rrf(rankings: Sequence[Sequence[NoteIdRank]], k: int = DEFAULT_RRF_K) -> List[NoteIdRank]:
    """Equal-weight RRF over unnamed lists."""
    return weighted_rrf({str(i): ranking for i, ranking in enumerate(rankings)}, k=k)


def apply_tie_breakers(
    rankings: Sequence[NoteIdRank], tie_breakers: Sequence[Callable[[str], float]]
) -> List[NoteIdRank]:
    """Re-order equal scores by tie-breaker values, higher first, in order given."""
    return sorted(
        rankings,
        key=lambda r: (-r.score, *(-breaker(r.id) for breaker in tie_breakers)),
    )
