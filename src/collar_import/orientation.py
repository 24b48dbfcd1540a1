"""Axis auto-orientation: lay the imported ring flat on the knob plane."""

from __future__ import annotations

import logging
from itertools import permutations
from typing import Tuple

import numpy as np

from collar_import.contracts import OrientationResult

logger = logging.getLogger(__name__)

AXIS_PERMUTATIONS = tuple(permutations(range(3)))


def permutation_parity(perm) -> int:
    """+1 for even permutations, -1 for odd."""
    inversions = sum(
        1 for i in range(len(perm)) for j in range(i + 1, len(perm)) if perm[i] > perm[j]
    )
    return 1 if inversions % 2 == 0 else -1


def flatness_score(points: np.ndarray, perm) -> float:
    """Out-of-plane span over the smaller in-plane span for an axis mapping."""
    spans = np.maximum(1e-6, points.max(axis=0) - points.min(axis=0))
    span_x, span_y, span_z = spans[perm[0]], spans[perm[1]], spans[perm[2]]
    return float(span_z / max(1e-6, min(span_x, span_y)))


def auto_orient(points: np.ndarray) -> Tuple[np.ndarray, OrientationResult]:
    """Remap axes so the thinnest extent becomes Z and the basis stays right-handed.

    Most of the mass ends up at z < 0 when the split is uneven.
    """
    points = np.asarray(points, dtype=np.float64)
    if not len(points):
        return points.copy(), OrientationResult((0, 1, 2), False, False)

    best_perm = AXIS_PERMUTATIONS[0]
    best_score = float("inf")
    for perm in AXIS_PERMUTATIONS:
        score = flatness_score(points, perm)
        if score < best_score:
            best_score = score
            best_perm = perm

    out = points[:, list(best_perm)].copy()
    above = int(np.count_nonzero(out[:, 2] >= 0.0))
    below = len(out) - above
    flipped = above > below
    if flipped:
        out[:, 2] = -out[:, 2]

    handedness = permutation_parity(best_perm) * (-1 if flipped else 1)
    negated = handedness < 0
    if negated:
        out[:, 0] = -out[:, 0]

    logger.debug(
        "Auto-orient: permutation=%s score=%.4f flipped_z=%s negated_x=%s",
        best_perm, best_score, flipped, negated,
    )
    return out, OrientationResult(tuple(best_perm), flipped, negated)
