"""Cosine similarity between dense embedding vectors."""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two equal-length vectors.

    Defined as 0.0 when either vector is empty, the lengths differ, or either
    vector has zero magnitude. Negative similarities are floored at 0.0 so the
    result is a valid [0, 1] sub-score.

    Args:
        a: First vector.
        b: Second vector.

    Returns:
        Similarity in [0, 1].
    """
    if len(a) == 0 or len(a) != len(b):
        return 0.0

    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    magnitude = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if magnitude == 0.0:
        return 0.0

    similarity = float(np.dot(va, vb)) / magnitude
    return min(max(similarity, 0.0), 1.0)
