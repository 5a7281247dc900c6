"""
Cosine similarity kernel for the exhaustive vector scan.
"""

from typing import List, Optional, Sequence

import numpy as np


def cosine_similarity(a, b) -> float:
    """
    Cosine similarity between two vectors.

    Returns 0.0 when either vector is missing, when the dimensions differ, or
    when either norm is zero. The result is clamped to [-1, 1].
    """
    if a is None or b is None:
        return 0.0

    vec_a = np.asarray(a, dtype=np.float32)
    vec_b = np.asarray(b, dtype=np.float32)
    if vec_a.ndim != 1 or vec_a.shape != vec_b.shape:
        return 0.0

    # Accumulate in float64 so self-similarity lands on 1.0
    vec_a = vec_a.astype(np.float64)
    vec_b = vec_b.astype(np.float64)
    denominator = np.linalg.norm(vec_a) * np.linalg.norm(vec_b)
    if denominator == 0:
        return 0.0

    score = float(np.dot(vec_a, vec_b) / denominator)
    return max(-1.0, min(1.0, score))


def cosine_scores(query, candidates: Sequence[Optional[np.ndarray]]) -> List[float]:
    """
    Score every candidate against the query in one pass.

    Candidates with the query's dimension are stacked into a matrix and scored
    with a single product; anything else (None, other dimensions) scores 0.0.
    """
    scores = [0.0] * len(candidates)
    if query is None or not len(candidates):
        return scores

    q = np.asarray(query, dtype=np.float64)
    if q.ndim != 1:
        return scores
    q_norm = np.linalg.norm(q)
    if q_norm == 0:
        return scores

    positions = [i for i, c in enumerate(candidates) if c is not None and c.shape == q.shape]
    if not positions:
        return scores

    matrix = np.vstack([candidates[i] for i in positions]).astype(np.float64)
    norms = np.linalg.norm(matrix, axis=1)
    dots = matrix @ q

    for row, i in enumerate(positions):
        denominator = norms[row] * q_norm
        if denominator == 0:
            continue
        scores[i] = float(np.clip(dots[row] / denominator, -1.0, 1.0))

    return scores
