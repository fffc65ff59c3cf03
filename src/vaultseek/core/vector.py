from typing import Iterable, Optional, Sequence

import numpy as np


def cosine_similarity(v1: Sequence[float], v2: Sequence[float]) -> float:
    """Cosine similarity; 0.0 for zero vectors or mismatched dimensions."""
    a = np.asarray(v1, dtype=np.float32)
    b = np.asarray(v2, dtype=np.float32)
    if a.size == 0 or a.shape != b.shape:
        return 0.0
    norm1 = np.linalg.norm(a)
    norm2 = np.linalg.norm(b)
    if norm1 == 0 or norm2 == 0:
        return 0.0
    return float(np.dot(a, b) / (norm1 * norm2))


def max_similarity(vector: Optional[Sequence[float]], others: Iterable[Sequence[float]]) -> float:
    """Best cosine similarity of ``vector`` against any of ``others``."""
    if vector is None:
        return 0.0
    return max((cosine_similarity(vector, other) for other in others), default=0.0)


def normalize_rows(matrix: np.ndarray) -> np.ndarray:
    """Unit-normalize each row; zero rows stay zero."""
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return matrix / norms
