"""
Revolved knob body builder.

Sweeps a 2D silhouette (radius, z) around +Z to form the side wall, closes
the front with a ring-sampled cap that carries crown, spiral ridges and the
indicator, closes the back with a flat disc, and optionally adds vertical
hard walls around a straight-profile indicator.

Vertex layout (in order): side rings, front cap rings, front centre, back
ring, back centre, hard-wall quads.
"""
import logging
from typing import NamedTuple, Tuple

import numpy as np

from geometry_primitives import (
    TWO_PI,
    UNIT_X,
    UNIT_Z,
    Mesh,
    clamp,
    default_tangents,
    dot,
    safe_normalize,
)
from knob_parameters import IndicatorProfile, IndicatorRelief, KnobParameters
from knob_relief import (
    build_indicator_contour,
    compute_body_radius,
    compute_crown_offset,
    compute_grip_offset,
    compute_indicator_offset,
    compute_spiral_ridge_offset,
    ensure_counter_clockwise,
    quantize_grip_density,
)

logger = logging.getLogger(__name__)

MIN_RADIAL_SEGMENTS = 12
MAX_RADIAL_SEGMENTS = 180
MIN_RADIUS = 20.0
MIN_HEIGHT = 20.0
BEVEL_SEGMENTS = 6
MIN_SIDE_DETAIL = 24
MAX_SIDE_DETAIL = 160
MIN_CAP_RINGS = 36
MAX_CAP_RINGS = 360


class KnobDimensions(NamedTuple):
    """Defensively clamped primary dimensions."""
    radial_segments: int
    radius: float
    height: float
    bevel: float
    top_radius: float

    @property
    def z_back(self) -> float:
        return -self.height * 0.5

    @property
    def z_front(self) -> float:
        return self.height * 0.5


def resolve_dimensions(params: KnobParameters) -> KnobDimensions:
    radial_segments = int(clamp(params.radial_segments, MIN_RADIAL_SEGMENTS, MAX_RADIAL_SEGMENTS))
    radius = max(MIN_RADIUS, params.radius)
    height = max(MIN_HEIGHT, params.height)
    bevel = clamp(params.bevel, 0.0, min(radius * 0.45, height * 0.45))
    top_scale = clamp(params.top_radius_scale, 0.30, 1.30)
    return KnobDimensions(radial_segments, radius, height, bevel, radius * top_scale)


def _side_detail_count(radial_segments: int) -> int:
    return int(clamp(round(radial_segments * 0.75), MIN_SIDE_DETAIL, MAX_SIDE_DETAIL))


def _cap_ring_count(radial_segments: int) -> int:
    return int(clamp(radial_segments * 3, MIN_CAP_RINGS, MAX_CAP_RINGS))


def _profile_with_side_span(params: KnobParameters) -> Tuple[np.ndarray, float, float]:
    dims = resolve_dimensions(params)
    side_start = (dims.radius, dims.z_back + dims.bevel * 0.35)
    side_top_radius = max(dims.top_radius, dims.radius * (1.0 - params.body_taper))
    side_end = (side_top_radius, dims.z_front - dims.bevel)
    top = (dims.top_radius, dims.z_front)

    side_detail = _side_detail_count(dims.radial_segments)
    t = np.arange(1, side_detail) / side_detail
    side_r = compute_body_radius(t, side_start[0], side_end[0], params.body_bulge)
    side_z = side_start[1] + (side_end[1] - side_start[1]) * t

    tb = np.arange(1, BEVEL_SEGMENTS) / BEVEL_SEGMENTS
    shaped = tb ** max(0.4, params.bevel_curve)
    bevel_r = side_end[0] + (top[0] - side_end[0]) * shaped
    bevel_z = side_end[1] + (top[1] - side_end[1]) * tb

    profile = np.vstack([
        [[dims.radius * 0.97, dims.z_back]],
        [side_start],
        np.column_stack([side_r, side_z]),
        [side_end],
        np.column_stack([bevel_r, bevel_z]),
        [top],
    ])
    return profile, side_start[1], side_end[1]


def build_profile_curve(params: KnobParameters) -> np.ndarray:
    """(radius, z) silhouette from the back edge up to the front cap edge."""
    profile, _, _ = _profile_with_side_span(params)
    return profile


# ─── Side wall ───────────────────────────────────────────────────────────────

def _strip_indices(row_a: int, row_b: int, segments: int) -> np.ndarray:
    """Two triangles per quad between ring starts *row_a* (lower) and *row_b*."""
    s = np.arange(segments)
    sn = (s + 1) % segments
    i00 = row_a + s
    i01 = row_a + sn
    i10 = row_b + s
    i11 = row_b + sn
    first = np.stack([i00, i01, i10], axis=1)
    second = np.stack([i01, i11, i10], axis=1)
    return np.stack([first, second], axis=1).reshape(-1, 3)


def _side_normals(grid: np.ndarray) -> np.ndarray:
    ring_count = grid.shape[0]
    rows = np.arange(ring_count)
    prev_rows = np.maximum(rows - 1, 0)
    next_rows = np.minimum(rows + 1, ring_count - 1)
    d_tan = np.roll(grid, -1, axis=1) - np.roll(grid, 1, axis=1)
    d_ring = grid[next_rows] - grid[prev_rows]

    outward = grid.copy()
    outward[..., 2] = 0.0
    radial_fallback = safe_normalize(outward, UNIT_X)
    normals = safe_normalize(np.cross(d_tan, d_ring), radial_fallback)

    has_outward = dot(outward, outward) > 1e-8
    flip = has_outward & (dot(normals, outward) < 0.0)
    normals[flip] = -normals[flip]
    return normals


# ─── Front cap ───────────────────────────────────────────────────────────────

def _cap_normals(center: np.ndarray, grid: np.ndarray) -> np.ndarray:
    prev_ring = np.concatenate([np.broadcast_to(center, (1,) + grid.shape[1:]), grid[:-1]])
    next_ring = np.concatenate([grid[1:], grid[-1:]])
    d_rad = next_ring - prev_ring
    d_tan = np.roll(grid, -1, axis=1) - np.roll(grid, 1, axis=1)
    normals = safe_normalize(np.cross(d_rad, d_tan), UNIT_Z)
    normals[normals[..., 2] < 0.0] *= -1.0
    return normals


def _hard_wall_geometry(params: KnobParameters, dims: KnobDimensions):
    indicator = params.indicator
    if (
        not indicator.enabled
        or not indicator.cad_walls_enabled
        or indicator.profile is not IndicatorProfile.STRAIGHT
        or indicator.thickness_ratio <= 1e-6
    ):
        return None

    contour = ensure_counter_clockwise(build_indicator_contour(indicator)) * dims.top_radius
    if len(contour) < 3:
        return None
    a = contour
    b = np.roll(contour, -1, axis=0)
    edges = b - a
    keep = dot(edges, edges) > 1e-10
    a, b, edges = a[keep], b[keep], edges[keep]
    if not len(a):
        return None

    spiral = params.spiral

    def surface_z(points):
        r = np.hypot(points[:, 0], points[:, 1])
        r_norm = np.clip(r / max(dims.top_radius, 1e-6), 0.0, 1.0)
        crown = compute_crown_offset(r_norm, params.crown_profile, dims.radius, dims.height)
        ridges = compute_spiral_ridge_offset(
            points[:, 0], points[:, 1], r, dims.top_radius,
            spiral.height, spiral.width, spiral.turns,
        )
        return dims.z_front + crown + ridges

    sign = -1.0 if indicator.relief is IndicatorRelief.INSET else 1.0
    amplitude = sign * indicator.thickness_ratio * dims.top_radius
    za = surface_z(a)
    zb = surface_z(b)
    v0 = np.column_stack([a, za])
    v1 = np.column_stack([b, zb])
    v2 = np.column_stack([b, zb + amplitude])
    v3 = np.column_stack([a, za + amplitude])
    quads = np.stack([v0, v1, v2, v3], axis=1)                   # (E, 4, 3)

    outward = safe_normalize(
        np.column_stack([edges[:, 1], -edges[:, 0], np.zeros(len(edges))]), UNIT_X
    )
    face = np.cross(v1 - v0, v2 - v0)
    aligned = dot(face, outward) >= 0.0
    normals = np.repeat(outward[:, None, :], 4, axis=1)
    return quads, normals, aligned


def build_knob_mesh(params: KnobParameters) -> Mesh:
    """Build the full revolved knob body."""
    dims = resolve_dimensions(params)
    segments = dims.radial_segments
    profile, side_start_z, side_end_z = _profile_with_side_span(params)
    ring_count = len(profile)

    angles = np.arange(segments) * (TWO_PI / segments)
    cos_a = np.cos(angles)
    sin_a = np.sin(angles)

    # Side wall.
    density = quantize_grip_density(params.grip.density, segments)
    grip = compute_grip_offset(
        params.grip, density, angles[None, :], profile[:, 1][:, None], side_start_z, side_end_z
    )
    side_r = profile[:, 0][:, None] + grip
    side = np.stack([
        side_r * cos_a[None, :],
        side_r * sin_a[None, :],
        np.broadcast_to(profile[:, 1][:, None], side_r.shape),
    ], axis=-1)
    side_normals = _side_normals(side)
    side_tris = [
        _strip_indices(ring * segments, (ring + 1) * segments, segments)
        for ring in range(ring_count - 1)
    ]

    # Front cap.
    cap_rings = _cap_ring_count(segments)
    r_norm = np.arange(1, cap_rings + 1) / cap_rings
    ring_radius = dims.top_radius * r_norm
    cx = ring_radius[:, None] * cos_a[None, :]
    cy = ring_radius[:, None] * sin_a[None, :]
    crown = compute_crown_offset(r_norm, params.crown_profile, dims.radius, dims.height)
    spiral = params.spiral
    ridges = compute_spiral_ridge_offset(
        cx, cy, ring_radius[:, None], dims.top_radius, spiral.height, spiral.width, spiral.turns
    )
    mark = compute_indicator_offset(cx, cy, dims.top_radius, params.indicator)
    cap = np.stack([cx, cy, dims.z_front + crown[:, None] + ridges + mark], axis=-1)
    center_z = (
        dims.z_front
        + float(compute_crown_offset(0.0, params.crown_profile, dims.radius, dims.height))
        + float(compute_indicator_offset(0.0, 0.0, dims.top_radius, params.indicator))
    )
    cap_center = np.array([0.0, 0.0, center_z])
    cap_normals = _cap_normals(cap_center, cap)

    cap_start = ring_count * segments
    cap_center_index = cap_start + cap_rings * segments
    s = np.arange(segments)
    sn = (s + 1) % segments
    cap_tris = [np.stack([np.full(segments, cap_center_index), cap_start + s, cap_start + sn], axis=1)]
    for ring in range(cap_rings - 1):
        inner = cap_start + ring * segments
        outer = inner + segments
        i0, i1, i2, i3 = inner + s, outer + s, outer + sn, inner + sn
        cap_tris.append(np.stack([
            np.stack([i0, i1, i2], axis=1),
            np.stack([i0, i2, i3], axis=1),
        ], axis=1).reshape(-1, 3))

    # Back disc.
    back_start = cap_center_index + 1
    back_center_index = back_start + segments
    back_radius = profile[0, 0]
    back = np.column_stack([
        back_radius * cos_a, back_radius * sin_a, np.full(segments, dims.z_back)
    ])
    back_tris = np.stack(
        [np.full(segments, back_center_index), back_start + sn, back_start + s], axis=1
    )

    positions = [
        side.reshape(-1, 3), cap.reshape(-1, 3), cap_center[None, :],
        back, [[0.0, 0.0, dims.z_back]],
    ]
    normals = [
        side_normals.reshape(-1, 3), cap_normals.reshape(-1, 3), UNIT_Z[None, :],
        np.tile(-UNIT_Z, (segments + 1, 1)),
    ]
    triangles = side_tris + cap_tris + [back_tris]

    walls = _hard_wall_geometry(params, dims)
    if walls is not None:
        quads, wall_normals, aligned = walls
        base = back_center_index + 1 + 4 * np.arange(len(quads))
        forward = np.array([[0, 1, 2], [0, 2, 3]])
        reverse = np.array([[0, 2, 1], [0, 3, 2]])
        local = np.where(aligned[:, None, None], forward, reverse)   # (E, 2, 3)
        triangles.append((base[:, None, None] + local).reshape(-1, 3))
        positions.append(quads.reshape(-1, 3))
        normals.append(wall_normals.reshape(-1, 3))

    all_positions = np.vstack(positions)
    all_normals = np.vstack(normals)
    indices = np.vstack(triangles).reshape(-1)
    mesh = Mesh(
        positions=all_positions,
        normals=all_normals,
        tangents=default_tangents(all_positions, all_normals),
        indices=indices,
        reference_radius=dims.radius,
    )
    logger.debug(
        "Built knob mesh: %d vertices, %d triangles (%d profile rings, %d cap rings)",
        mesh.vertex_count, mesh.triangle_count, ring_count, cap_rings,
    )
    return mesh
