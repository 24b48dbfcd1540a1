"""
Authored head patch for the swept collar.

The head is a short tube-like grid of rings evaluated from a hand-shaped
analytic form (skull, jaw, eye sockets, brow, snout, mouth) in a local frame:
x runs forward along the collar path, y across the body, z up. The collar
builder maps each ring into its own path frame and blends it into the body.
"""
from dataclasses import dataclass

import numpy as np

from geometry_primitives import (
    TWO_PI,
    UNIT_X,
    UNIT_Y,
    UNIT_Z,
    clamp,
    dot,
    gaussian_mask,
    lerp,
    project_onto_plane,
    safe_normalize,
    smoothstep,
    tangent_with_sign,
)

HEAD_KNOTS = np.array([0.00, 0.18, 0.42, 0.68, 0.86, 1.00])
FORWARD_KNOTS = np.array([0.0, 0.32, 1.25, 1.05, 0.42, 0.0])
WIDTH_KNOTS = np.array([0.95, 1.05, 1.55, 1.45, 1.18, 0.92])
HEIGHT_KNOTS = np.array([0.86, 0.88, 1.05, 0.95, 0.76, 0.84])
JAW_DROP_KNOTS = np.array([0.05, 0.08, 0.30, 0.42, 0.28, 0.08])


@dataclass(frozen=True)
class HeadPatch:
    """Head rings in the local head frame, indexed ``[ring, slice]``."""
    positions: np.ndarray   # (R, C, 3)
    normals: np.ndarray     # (R, C, 3)
    tangents: np.ndarray    # (R, C, 4)
    uvs: np.ndarray         # (R, C, 2)

    @property
    def ring_count(self) -> int:
        return int(self.positions.shape[0])

    @property
    def cross_segments(self) -> int:
        return int(self.positions.shape[1])


def eval_piecewise(u, knots_u: np.ndarray, knots_v: np.ndarray):
    """Smoothstep-eased piecewise curve through (knots_u, knots_v)."""
    u = np.asarray(u, dtype=float)
    seg = np.clip(np.searchsorted(knots_u, u, side="left") - 1, 0, len(knots_u) - 2)
    u0 = knots_u[seg]
    u1 = knots_u[seg + 1]
    t = np.clip((u - u0) / (u1 - u0), 0.0, 1.0)
    eased = t * t * (3.0 - 2.0 * t)
    return lerp(knots_v[seg], knots_v[seg + 1], eased)


def evaluate_head_local_point(u, phi, head_scale: float, jaw_bulge: float, ellipse_scale: float) -> np.ndarray:
    """Local head position for ring parameter *u* in [0, 1] and slice angle *phi*.

    Broadcasts over *u* and *phi*; returns an array of shape ``(..., 3)``.
    """
    u = np.asarray(u, dtype=float)
    phi = np.asarray(phi, dtype=float)
    hs = head_scale
    jb = jaw_bulge

    cs = np.cos(phi)
    sn = np.sin(phi)
    abs_cs = np.abs(cs)
    top_mask = np.maximum(0.0, sn)
    jaw_mask = np.maximum(0.0, -sn)
    side_mask = abs_cs ** 0.72
    center_mask = np.maximum(0.0, 1.0 - abs_cs) ** 1.45

    forward = eval_piecewise(u, HEAD_KNOTS, FORWARD_KNOTS)
    width = eval_piecewise(u, HEAD_KNOTS, WIDTH_KNOTS)
    height = eval_piecewise(u, HEAD_KNOTS, HEIGHT_KNOTS)
    jaw_drop = eval_piecewise(u, HEAD_KNOTS, JAW_DROP_KNOTS)

    neck_pinch = (1.0 - 0.18 * (1.0 - smoothstep(0.0, 0.20, u))) * (1.0 - 0.10 * smoothstep(0.82, 1.0, u))

    x = forward * (0.78 + 0.55 * hs)
    y = np.sign(cs) * abs_cs ** 0.72 * width * neck_pinch
    z_upper = top_mask * np.maximum(1e-5, top_mask) ** 0.86 * height
    z_lower = -jaw_mask * np.maximum(1e-5, jaw_mask) ** 0.96 * (height * 0.82 + jaw_drop * 0.35)
    z = z_upper + z_lower

    # Skull flattening and temple widening.
    z = z * (1.0 - 0.34 * smoothstep(0.20, 0.85, u) * top_mask)
    y = y * (1.0 + 0.22 * smoothstep(0.18, 0.78, u) * side_mask)

    eye_band = gaussian_mask(u, 0.56, 0.17)
    eye_height = gaussian_mask(sn, 0.34, 0.20)
    eyes = eye_band * (gaussian_mask(cs, 0.72, 0.19) + gaussian_mask(cs, -0.72, 0.19)) * eye_height
    z = z - eyes * (0.16 + 0.10 * hs)
    y = y * (1.0 - eyes * 0.08)

    brow_height = gaussian_mask(sn, 0.58, 0.17)
    brows = (gaussian_mask(cs, 0.65, 0.22) + gaussian_mask(cs, -0.65, 0.22)) * brow_height
    z = z + eye_band * brows * (0.10 + 0.07 * jb)

    snout = smoothstep(0.45, 0.90, u) * center_mask * top_mask
    z = z + snout * (0.08 + 0.05 * hs)

    mouth = smoothstep(0.55, 0.98, u) * jaw_mask * center_mask
    z = z - mouth * (0.16 + 0.12 * jb)
    y = y * (1.0 - 0.10 * mouth)

    x, y, z = np.broadcast_arrays(x, y, z * ellipse_scale)
    return np.stack([x, y, z], axis=-1)


def build_head_patch(
    cross_segments: int,
    ring_count: int,
    head_scale: float,
    jaw_bulge: float,
    ellipse_scale: float,
) -> HeadPatch:
    """Sample the head form on a ring grid and derive its shading basis."""
    hs = clamp(head_scale, 0.0, 2.0)
    jb = clamp(jaw_bulge, 0.0, 1.0)
    e = max(0.45, ellipse_scale)

    u = np.arange(ring_count) / (ring_count - 1) if ring_count > 1 else np.zeros(1)
    v = np.arange(cross_segments) / cross_segments
    positions = evaluate_head_local_point(u[:, None], (v * TWO_PI)[None, :], hs, jb, e)

    rows = np.arange(ring_count)
    prev_rows = np.maximum(rows - 1, 0)
    next_rows = np.minimum(rows + 1, ring_count - 1)
    dpdu = positions[next_rows] - positions[prev_rows]
    dpdv = np.roll(positions, -1, axis=1) - np.roll(positions, 1, axis=1)
    dpdu = np.where((dot(dpdu, dpdu) <= 1e-8)[..., None], UNIT_X, dpdu)
    dpdv = np.where((dot(dpdv, dpdv) <= 1e-8)[..., None], UNIT_Y, dpdv)

    normals = safe_normalize(np.cross(dpdu, dpdv), UNIT_Z)
    hint = positions.copy()
    hint[..., 0] = 0.0
    flip = (dot(hint, hint) > 1e-8) & (dot(normals, hint) < 0.0)
    normals[flip] = -normals[flip]

    t_u = safe_normalize(project_onto_plane(dpdu, normals), UNIT_X)
    tangents = tangent_with_sign(normals, t_u, dpdv)

    uu, vv = np.meshgrid(u, v, indexing="ij")
    uvs = np.stack([uu, vv], axis=-1)
    return HeadPatch(positions=positions, normals=normals, tangents=tangents, uvs=uvs)
