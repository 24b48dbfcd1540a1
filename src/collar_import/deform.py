"""
Head/body reshaping of an imported collar ring.

The head is located as the innermost, lowest-Y vertex; an angular mask around
it splits the ring into head and body so each can be thickened and stretched
independently, after which both regions are re-centred on where they were.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from collar_import.contracts import RadialBands
from geometry_primitives import clamp, smoothstep, wrap_signed_radians

logger = logging.getLogger(__name__)

HEAD_REGION_INNER = 0.18
HEAD_REGION_OUTER = 0.70
HEAD_WEIGHT_POWER = 2.2
VERTICAL_THICKNESS_FACTOR = 0.85
BAND_LOW_PERCENTILE = 0.22
BAND_HIGH_PERCENTILE = 0.78


def planar_radius(points: np.ndarray) -> np.ndarray:
    return np.hypot(points[:, 0], points[:, 1])


def find_head_anchor(points: np.ndarray) -> int:
    """Index of the head vertex: minimal Y among the near-innermost vertices."""
    r = planar_radius(points)
    min_r = float(r.min())
    epsilon = max(1e-4, (float(r.max()) - min_r) * 0.10)
    candidates = np.flatnonzero(r <= min_r + epsilon)
    if len(candidates):
        # Lowest Y first, ties broken by radius.
        order = np.lexsort((r[candidates], points[candidates, 1]))
        return int(candidates[order[0]])
    return int(np.argmin(points[:, 1] - 0.25 * r))


def head_mask(points: np.ndarray, head_angle: float) -> np.ndarray:
    angle = np.arctan2(points[:, 1], points[:, 0])
    delta = np.abs(wrap_signed_radians(angle - head_angle))
    return np.clip(1.0 - smoothstep(HEAD_REGION_INNER, HEAD_REGION_OUTER, delta), 0.0, 1.0)


def weighted_body_center(
    points: np.ndarray,
    head_angle: float,
    inner: float = HEAD_REGION_INNER,
    outer: float = HEAD_REGION_OUTER,
) -> np.ndarray:
    """XY centroid weighted towards vertices far from the head."""
    angle = np.arctan2(points[:, 1], points[:, 0])
    delta = np.abs(wrap_signed_radians(angle - head_angle))
    body = np.clip(smoothstep(inner, outer, delta), 0.0, 1.0)
    weight = body * body
    total = float(weight.sum())
    if total <= 1e-6:
        return np.zeros(2)
    return (points[:, :2] * weight[:, None]).sum(axis=0) / total


def robust_radial_bands(points: np.ndarray) -> RadialBands:
    """Inner/outer planar radius at the 22nd/78th percentile, centre halfway."""
    r = planar_radius(points)
    if not len(r):
        return RadialBands(0.0, 0.0, 0.0)
    inner, outer = np.quantile(r, [BAND_LOW_PERCENTILE, BAND_HIGH_PERCENTILE])
    if outer <= inner + 1e-5:
        inner, outer = r.min(), r.max()
    return RadialBands(float(inner), float(0.5 * (inner + outer)), float(outer))


@dataclass
class BodyHeadDeformer:
    """Independent length/thickness scaling for the head and body regions."""

    body_length_scale: float = 1.0
    body_thickness_scale: float = 1.0
    head_length_scale: float = 1.0
    head_thickness_scale: float = 1.0
    head_angle_offset_radians: float = 0.0

    def __post_init__(self):
        self.body_length_scale = clamp(self.body_length_scale, 0.6, 2.4)
        self.body_thickness_scale = clamp(self.body_thickness_scale, 0.5, 2.5)
        self.head_length_scale = clamp(self.head_length_scale, 0.5, 2.5)
        self.head_thickness_scale = clamp(self.head_thickness_scale, 0.5, 2.8)

    @property
    def is_identity(self) -> bool:
        return all(
            abs(scale - 1.0) <= 1e-5
            for scale in (
                self.body_length_scale,
                self.body_thickness_scale,
                self.head_length_scale,
                self.head_thickness_scale,
            )
        )

    def apply(self, points: np.ndarray, center_radius: float) -> np.ndarray:
        points = np.asarray(points, dtype=np.float64)
        if not len(points) or self.is_identity:
            return points.copy()

        anchor = points[find_head_anchor(points)]
        head_angle = float(wrap_signed_radians(
            np.arctan2(anchor[1], anchor[0]) + self.head_angle_offset_radians
        ))

        mask = head_mask(points, head_angle)
        weights = mask ** HEAD_WEIGHT_POWER
        head_before = _weighted_mean(points, weights)

        r = planar_radius(points)
        body = 1.0 - mask
        thickness = (
            1.0
            + (self.body_thickness_scale - 1.0) * body
            + (self.head_thickness_scale - 1.0) * mask
        )
        length = (
            1.0
            + (self.body_length_scale - 1.0) * body
            + (self.head_length_scale - 1.0) * mask
        )
        radial = center_radius + (r - center_radius) * thickness
        xy_scale = radial * length / np.maximum(1e-6, r)
        z_scale = 1.0 + (thickness - 1.0) * VERTICAL_THICKNESS_FACTOR

        movable = r > 1e-8
        out = points.copy()
        out[movable, 0] *= xy_scale[movable]
        out[movable, 1] *= xy_scale[movable]
        out[movable, 2] *= z_scale[movable]

        head_after = _weighted_mean(out[movable], weights[movable])
        out -= head_after - head_before

        body_delta = weighted_body_center(out, head_angle) - weighted_body_center(points, head_angle)
        if float(body_delta @ body_delta) > 1e-10:
            out[:, :2] -= body_delta

        logger.debug(
            "Deformed imported collar: head angle %.3f rad, body %.2fx%.2f, head %.2fx%.2f",
            head_angle, self.body_length_scale, self.body_thickness_scale,
            self.head_length_scale, self.head_thickness_scale,
        )
        return out


def _weighted_mean(points: np.ndarray, weights: np.ndarray) -> np.ndarray:
    total = float(weights.sum())
    if total <= 1e-6:
        return np.zeros(3)
    return (points * weights[:, None]).sum(axis=0) / total
