"""Post-fusion scoring: folder cohesion boost, normalization, diverse top-K.

Run in that order on a fused ranking. Fused RRF scores cluster near the
display cap, so normalization spreads them back out before the cut.
"""

import logging
import math
from dataclasses import replace
from typing import Dict, List, Sequence

from vaultseek.core.models import NoteIdRank

logger = logging.getLogger(__name__)

MIN_DOCS_FOR_FOLDER_BOOST = 2
MAX_FOLDER_BOOST = 1.5
TANH_SCALE = 2.5
CLIP_MIN = 0.02
CLIP_MAX = 0.98
UNIFORM_SCORE = 0.5


def folder_of(note_id: str) -> str:
    """Parent folder of a note or chunk id; "" for the vault root."""
    path = note_path_of(note_id)
    return path.rsplit("/", 1)[0] if "/" in path else ""


def note_path_of(note_id: str) -> str:
    """Strip a ``#<index>`` chunk suffix, leaving the note path."""
    base, sep, suffix = note_id.rpartition("#")
    if sep and base and suffix.isdigit():
        return base
    return note_id


def folder_boosts(
    results: Sequence[NoteIdRank],
    min_docs: int = MIN_DOCS_FOR_FOLDER_BOOST,
    max_boost: float = MAX_FOLDER_BOOST,
) -> Dict[str, float]:
    """Folder -> multiplier for folders holding at least ``min_docs`` results.

    The multiplier is ``1 + log2(count + 1)`` capped at ``max_boost``.
    """
    counts: Dict[str, int] = {}
    for result in results:
        folder = folder_of(result.id)
        counts[folder] = counts.get(folder, 0) + 1
    return {
        folder: min(1.0 + math.log2(count + 1), max_boost)
        for folder, count in counts.items()
        if count >= min_docs
    }


def apply_folder_boost(
    results: Sequence[NoteIdRank],
    min_docs: int = MIN_DOCS_FOR_FOLDER_BOOST,
    max_boost: float = MAX_FOLDER_BOOST,
) -> List[NoteIdRank]:
    """Multiply scores of results sharing a folder with other results.

    Boosted scores are not capped; ``normalize_scores`` runs afterwards.
    Order is preserved.
    """
    boosts = folder_boosts(results, min_docs, max_boost)
    if boosts:
        top = sorted(boosts.items(), key=lambda kv: kv[1], reverse=True)[:5]
        logger.info(
            f"Folder boost: {len(boosts)} folders, "
            + ", ".join(f"{folder or '(root)'} x{factor:.2f}" for folder, factor in top)
        )
    boosted = []
    for result in results:
        factor = boosts.get(folder_of(result.id))
        boosted.append(replace(result, score=result.score * factor) if factor else result)
    return boosted


def normalize_scores(
    results: Sequence[NoteIdRank],
    scale: float = TANH_SCALE,
    clip_min: float = CLIP_MIN,
    clip_max: float = CLIP_MAX,
) -> List[NoteIdRank]:
    """Z-score then tanh squash into ``[clip_min, clip_max]``.

    Order-preserving. Identical scores all map to 0.5, so no result ever
    reports a perfect 1.0.
    """
    if not results:
        return []
    scores = [r.score for r in results]
    mean = sum(scores) / len(scores)
    std = math.sqrt(sum((s - mean) ** 2 for s in scores) / len(scores))
    if std == 0:
        return [replace(r, score=UNIFORM_SCORE) for r in results]

    normalized = []
    for result in results:
        squashed = 0.5 + 0.5 * math.tanh(((result.score - mean) / std) / scale)
        normalized.append(replace(result, score=max(clip_min, min(clip_max, squashed))))
    return normalized


def select_diverse_top_k(results: Sequence[NoteIdRank], limit: int) -> List[NoteIdRank]:
    """Best ``limit`` results, taking one per note before any note repeats.

    Results are ranked best first; the selection comes back best first too.
    """
    if len(results) <= limit:
        return list(results)

    ranked = sorted(results, key=lambda r: r.score, reverse=True)
    selected: List[NoteIdRank] = []
    repeats: List[NoteIdRank] = []
    seen = set()
    for result in ranked:
        note = note_path_of(result.id)
        if note in seen:
            repeats.append(result)
            continue
        seen.add(note)
        selected.append(result)
        if len(selected) >= limit:
            break
    selected.extend(repeats[:limit - len(selected)])
    selected.sort(key=lambda r: r.score, reverse=True)
    logger.debug(f"Diverse top-K: {len(selected)}/{len(ranked)} kept, {len(seen)} notes")
    return selected


def rescore(results: Sequence[NoteIdRank], limit: int, folder_boost: bool = True) -> List[NoteIdRank]:
    """Folder boost, normalize, re-sort and cut to a note-diverse top ``limit``."""
    boosted = apply_folder_boost(results) if folder_boost else list(results)
    normalized = normalize_scores(boosted)
    normalized.sort(key=lambda r: r.score, reverse=True)
    return select_diverse_top_k(normalized, limit)


__all__ = [
    "apply_folder_boost",
    "folder_boosts",
    "folder_of",
    "normalize_scores",
    "note_path_of",
    "rescore",
    "select_diverse_top_k",
]
