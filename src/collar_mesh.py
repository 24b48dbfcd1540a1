"""
Swept collar tube with a blended authored head.

The body is an elliptical tube swept along a horizontal circle around the
knob. Its cross-section radius is modulated by neck, tail and mass terms
keyed to the bite angle, and carries a scale-cell relief that fades out near
the head. A window of rings around the bite is then replaced by the
authored head patch: neck-in rings blend into the head, core rings take the
head verbatim, neck-out rings blend back. The two weld rings at the ends of
the core carry the body basis exactly so the head never shows a shading
seam.
"""
import logging
from dataclasses import dataclass
from typing import List, NamedTuple, Tuple

import numpy as np

from collar_head import HeadPatch, build_head_patch
from geometry_primitives import (
    TWO_PI,
    UNIT_X,
    UNIT_Z,
    Mesh,
    clamp,
    dot,
    fract,
    gaussian,
    lerp,
    min_wrapped_distance,
    project_onto_plane,
    safe_normalize,
    smootherstep01,
    smoothstep,
    tangent_with_sign,
    wrap01,
    wrap_signed_radians,
)
from knob_parameters import CollarParameters, KnobParameters

logger = logging.getLogger(__name__)

NECK_IN_RINGS = 6
HEAD_CORE_RINGS = 8
NECK_OUT_RINGS = 6
TOTAL_REPLACED_RINGS = NECK_IN_RINGS + HEAD_CORE_RINGS + NECK_OUT_RINGS

MIN_PATH_SEGMENTS = max(64, TOTAL_REPLACED_RINGS * 4)
MAX_PATH_SEGMENTS = 2048
MIN_CROSS_SEGMENTS = 8
MAX_CROSS_SEGMENTS = 256

# Ring offsets (into the replaced window) of the basis blends just inside
# each weld ring, with the head weight applied there.
WELD_RING_A = NECK_IN_RINGS
WELD_RING_B = NECK_IN_RINGS + HEAD_CORE_RINGS - 1
INNER_SEAM_BLENDS = (
    (WELD_RING_A + 1, 0.35),
    (WELD_RING_A + 2, 0.70),
    (WELD_RING_B - 1, 0.70),
    (WELD_RING_B - 2, 0.35),
)


@dataclass(frozen=True)
class CollarLayout:
    """Resolved, clamped dimensions of one collar build."""
    path_segments: int
    cross_segments: int
    knob_radius: float
    knob_half_height: float
    body_radius: float
    centerline_radius: float
    z_center: float
    rotation: float
    bite_angle: float
    seam_offset: float
    bite_index: int

    @property
    def reference_radius(self) -> float:
        return max(self.knob_radius, self.centerline_radius + self.body_radius * 1.2)


class CircularFrames(NamedTuple):
    """Per-ring (tangent, normal, bitangent) of the circular centreline."""
    tangents: np.ndarray     # (P, 3)
    normals: np.ndarray      # (P, 3)
    bitangents: np.ndarray   # (P, 3)


@dataclass
class CollarBody:
    """Swept body before the head is blended in; arrays are ``[ring, slice]``."""
    layout: CollarLayout
    centers: np.ndarray        # (P, 3)
    frames: CircularFrames
    local_radius: np.ndarray   # (P,)
    positions: np.ndarray      # (P, C, 3)
    normals: np.ndarray        # (P, C, 3)
    tangents: np.ndarray       # (P, C, 4)
    uvs: np.ndarray            # (P, C, 2)


def resolve_collar_layout(knob: KnobParameters, collar: CollarParameters) -> CollarLayout:
    path_segments = int(clamp(collar.path_segments, MIN_PATH_SEGMENTS, MAX_PATH_SEGMENTS))
    cross_segments = int(clamp(collar.cross_segments, MIN_CROSS_SEGMENTS, MAX_CROSS_SEGMENTS))
    knob_radius = max(10.0, knob.radius)
    knob_half_height = max(10.0, knob.height * 0.5)
    centerline_base = max(1.0, knob_radius * (collar.inner_radius_ratio + collar.gap_to_knob_ratio))
    # Body thickness stays below 48% of the centreline radius.
    max_body = centerline_base * (0.48 / (1.0 - 0.48))
    body_radius = max(0.5, min(knob_radius * collar.body_radius_ratio, max_body))
    rotation = collar.overall_rotation_radians
    bite_angle = collar.bite_angle_radians + rotation
    bite_turn = float(wrap01(bite_angle / TWO_PI))
    seam_offset = bite_turn if collar.uv_seam_follow_bite else collar.uv_seam_offset
    bite_index = int(round(bite_turn * path_segments)) % path_segments
    return CollarLayout(
        path_segments=path_segments,
        cross_segments=cross_segments,
        knob_radius=knob_radius,
        knob_half_height=knob_half_height,
        body_radius=body_radius,
        centerline_radius=centerline_base + body_radius,
        z_center=knob_half_height * collar.elevation_ratio,
        rotation=rotation,
        bite_angle=bite_angle,
        seam_offset=seam_offset,
        bite_index=bite_index,
    )


def circular_frames(path_segments: int, rotation: float) -> CircularFrames:
    """Analytic rotation-minimizing frames of a horizontal circle."""
    count = max(3, path_segments)
    theta = np.arange(count) * (TWO_PI / count) + rotation
    cos_t = np.cos(theta)
    sin_t = np.sin(theta)
    zeros = np.zeros(count)
    tangents = np.column_stack([-sin_t, cos_t, zeros])
    normals = np.column_stack([cos_t, sin_t, zeros])
    bitangents = np.tile(UNIT_Z, (count, 1))
    return CircularFrames(tangents, normals, bitangents)


def compute_ring_radii(layout: CollarLayout, collar: CollarParameters) -> np.ndarray:
    """Cross-section radius per ring from neck, tail and mass terms."""
    angle = np.arange(layout.path_segments) * (TWO_PI / layout.path_segments) + layout.rotation
    phase = wrap_signed_radians(angle - layout.bite_angle)
    neck = 1.0 - collar.neck_taper * gaussian(phase, 0.22)
    tail_phase = phase + np.pi * 0.18 * (1.0 + collar.tail_underlap)
    tail = 1.0 - collar.tail_taper * gaussian(tail_phase, 0.28)
    mass = 1.0 + 0.20 * collar.mass_bias * np.cos(phase + np.pi)
    return np.maximum(layout.body_radius * 0.15, layout.body_radius * neck * tail * mass)


def compute_body_scale_relief(layout: CollarLayout, local_radius: np.ndarray) -> np.ndarray:
    """Scale-cell bumps and grooves on the body, faded out near the head."""
    path_segments = layout.path_segments
    cross_segments = layout.cross_segments
    rings = np.arange(path_segments)[:, None]
    slices = np.arange(cross_segments)[None, :]

    u = rings / path_segments * max(24.0, path_segments * 0.42)
    parity_shift = np.where(np.floor(u).astype(np.int64) & 1, 0.5, 0.0)
    v = slices / cross_segments * max(10.0, cross_segments * 0.95) + parity_shift

    fu = fract(u) - 0.5
    fv = fract(v) - 0.5
    d = np.hypot(fu / 0.55, fv / 0.42)
    cell = np.clip(1.0 - d, 0.0, 1.0)
    cell = cell * cell * (3.0 - 2.0 * cell)
    seam = np.maximum(
        1.0 - smoothstep(0.42, 0.50, np.abs(fu)),
        1.0 - smoothstep(0.36, 0.50, np.abs(fv)),
    )

    ring_delta = min_wrapped_distance(rings, layout.bite_index, path_segments)
    body_mask = smoothstep(0.0, TOTAL_REPLACED_RINGS * 1.2, ring_delta)
    phi = slices / cross_segments * TWO_PI
    belly = 0.68 + 0.32 * np.abs(np.sin(phi))
    return local_radius[:, None] * body_mask * belly * (cell * 0.055 - seam * 0.022)


def ring_basis_from_geometry(
    positions: np.ndarray,
    centers: np.ndarray,
    normals: np.ndarray,
    tangents: np.ndarray,
    rings,
) -> None:
    """Recompute normal/tangent of *rings* in place from neighbouring vertices.

    Vertices whose ring or slice differences are degenerate keep their
    current basis.
    """
    rings = np.atleast_1d(np.asarray(rings, dtype=np.int64))
    if not len(rings):
        return
    path_segments = positions.shape[0]
    p = positions[rings]
    du = positions[(rings + 1) % path_segments] - positions[(rings - 1) % path_segments]
    dv = np.roll(p, -1, axis=1) - np.roll(p, 1, axis=1)
    valid = (dot(du, du) > 1e-8) & (dot(dv, dv) > 1e-8)

    n = safe_normalize(np.cross(du, dv), UNIT_Z)
    radial = p - centers[rings][:, None, :]
    n = np.where((dot(n, radial) < 0.0)[..., None], -n, n)
    t = safe_normalize(project_onto_plane(du, n), UNIT_X)
    basis = tangent_with_sign(n, t, dv)

    normals[rings] = np.where(valid[..., None], n, normals[rings])
    tangents[rings] = np.where(valid[..., None], basis, tangents[rings])


def sweep_collar_body(knob: KnobParameters, collar: CollarParameters) -> CollarBody:
    """Sweep the relief-carrying body tube and derive its basis from geometry."""
    layout = resolve_collar_layout(knob, collar)
    path_segments = layout.path_segments
    cross_segments = layout.cross_segments

    angle = np.arange(path_segments) * (TWO_PI / path_segments) + layout.rotation
    centers = np.column_stack([
        layout.centerline_radius * np.cos(angle),
        layout.centerline_radius * np.sin(angle),
        np.full(path_segments, layout.z_center),
    ])
    local_radius = compute_ring_radii(layout, collar)
    rx = local_radius
    ry = local_radius * max(0.45, collar.body_ellipse_y_scale)
    frames = circular_frames(path_segments, layout.rotation)

    v = np.arange(cross_segments) / cross_segments
    phi = v * TWO_PI
    cs = np.cos(phi)[None, :, None]
    sn = np.sin(phi)[None, :, None]
    n = frames.normals[:, None, :]
    b = frames.bitangents[:, None, :]
    t = frames.tangents[:, None, :]
    rx3 = rx[:, None, None]
    ry3 = ry[:, None, None]

    offset = n * (cs * rx3) + b * (sn * ry3)
    tube_normal = n * (cs / np.maximum(rx3, 1e-5)) + b * (sn / np.maximum(ry3, 1e-5))
    tube_normal = safe_normalize(tube_normal, np.broadcast_to(n, tube_normal.shape))
    relief = compute_body_scale_relief(layout, local_radius)
    positions = centers[:, None, :] + offset + tube_normal * relief[..., None]

    tangent_u = safe_normalize(
        project_onto_plane(np.broadcast_to(t, tube_normal.shape), tube_normal),
        np.broadcast_to(n, tube_normal.shape),
    )
    dpdv = -n * (sn * rx3) + b * (cs * ry3)
    normals = tube_normal.copy()
    tangents = tangent_with_sign(tube_normal, tangent_u, dpdv)

    # Relief must read in lighting, so the analytic basis is only a fallback.
    ring_basis_from_geometry(positions, centers, normals, tangents, np.arange(path_segments))

    ring_u = wrap01(np.arange(path_segments) / path_segments - layout.seam_offset)
    uu, vv = np.meshgrid(ring_u, v, indexing="ij")
    uvs = np.stack([uu, vv], axis=-1)
    return CollarBody(
        layout=layout,
        centers=centers,
        frames=frames,
        local_radius=local_radius,
        positions=positions,
        normals=normals,
        tangents=tangents,
        uvs=uvs,
    )


def replaced_rings(layout: CollarLayout) -> np.ndarray:
    """Body rings covered by the head window, neck-in first."""
    start = layout.bite_index - (NECK_IN_RINGS + HEAD_CORE_RINGS // 2)
    return (start + np.arange(TOTAL_REPLACED_RINGS)) % layout.path_segments


def weld_rings(layout: CollarLayout) -> Tuple[int, int]:
    """The two body rings whose basis must match the body exactly."""
    window = replaced_rings(layout)
    return int(window[WELD_RING_A]), int(window[WELD_RING_B])


def _target_patch_ring(k: int, patch_ring_count: int) -> int:
    if k < NECK_IN_RINGS:
        return min(1, patch_ring_count - 1)
    if k >= NECK_IN_RINGS + HEAD_CORE_RINGS:
        return max(0, patch_ring_count - 2)
    return k - NECK_IN_RINGS


def _neck_blend(k: int) -> Tuple[float, float]:
    """(head weight, cross-section pinch) for window ring *k*."""
    if k < NECK_IN_RINGS:
        alpha = float(smootherstep01((k + 1.0) / (NECK_IN_RINGS + 1.0)))
        return alpha, 1.0 - 0.28 * alpha
    if k >= NECK_IN_RINGS + HEAD_CORE_RINGS:
        out_step = k - (NECK_IN_RINGS + HEAD_CORE_RINGS)
        return 1.0 - float(smootherstep01((out_step + 1.0) / (NECK_OUT_RINGS + 1.0))), 1.0
    return 1.0, 1.0


def _align_shortest_arc(base: np.ndarray, target: np.ndarray) -> np.ndarray:
    return np.where((dot(base, target) < 0.0)[..., None], -target, target)


class _CollarBlend:
    """Mutable working state while the head is merged into a swept body."""

    def __init__(self, body: CollarBody):
        self.body = body
        self.positions = body.positions.copy()
        self.normals = body.normals.copy()
        self.tangents = body.tangents.copy()
        self.head_normals = body.normals.copy()
        self.head_tangents = body.tangents.copy()
        self.affected: List[int] = []

    def frame(self, ring: int) -> np.ndarray:
        frames = self.body.frames
        return np.stack([frames.tangents[ring], frames.normals[ring], frames.bitangents[ring]])

    def blend_head(self, window: np.ndarray, patch: HeadPatch) -> None:
        body = self.body
        for k, ring in enumerate(window):
            patch_ring = _target_patch_ring(k, patch.ring_count)
            alpha, pinch = _neck_blend(k)
            center = body.centers[ring]
            frame = self.frame(ring)
            pinched = frame * np.array([[1.0], [pinch], [pinch]])
            local_radius = body.local_radius[ring]
            body_n = body.normals[ring]
            body_t = body.tangents[ring, :, :3]

            local = patch.positions[patch_ring]
            target_pos = center + (local * local_radius) @ pinched
            target_n = safe_normalize(patch.normals[patch_ring] @ frame, body_n)
            target_t = safe_normalize(patch.tangents[patch_ring, :, :3] @ frame, body_t)
            target_t = safe_normalize(project_onto_plane(target_t, target_n), body_t)
            dv_local = np.roll(local, -1, axis=0) - np.roll(local, 1, axis=0)
            dpdv = (dv_local * local_radius) @ pinched
            target_basis = tangent_with_sign(target_n, target_t, dpdv)
            self.head_normals[ring] = target_n
            self.head_tangents[ring] = target_basis

            if NECK_IN_RINGS <= k < NECK_IN_RINGS + HEAD_CORE_RINGS:
                self.positions[ring] = target_pos
                self.normals[ring] = target_n
                self.tangents[ring] = target_basis
                continue

            comps = (body.positions[ring] - center) @ frame.T
            neck_body = center + comps @ pinched
            aligned_t = _align_shortest_arc(body_t, target_t)
            blended_n = safe_normalize(lerp(body_n, target_n, alpha), body_n)
            blended_t = safe_normalize(lerp(body_t, aligned_t, alpha), body_t)
            blended_t = safe_normalize(project_onto_plane(blended_t, blended_n), body_t)
            self.positions[ring] = lerp(neck_body, target_pos, alpha)
            self.normals[ring] = blended_n
            self.tangents[ring] = tangent_with_sign(blended_n, blended_t, dpdv)

    def compress_bite_zone(self) -> None:
        """Tuck the body under the jaw and widen it slightly behind."""
        body = self.body
        layout = body.layout
        phi = np.arange(layout.cross_segments) / layout.cross_segments * TWO_PI
        lower = np.maximum(0.0, -np.sin(phi))
        rear = np.maximum(0.0, -np.cos(phi))
        side = np.abs(np.cos(phi)) ** 0.7
        active = (lower > 1e-4) | (rear > 1e-4)
        if not np.any(active):
            return

        for d in range(-3, 4):
            ring = (layout.bite_index + d) % layout.path_segments
            envelope = float(smootherstep01(clamp(1.0 - abs(d) / 4.0, 0.0, 1.0)))
            if envelope <= 1e-4:
                continue
            center = body.centers[ring]
            frame = self.frame(ring)
            comps = (self.positions[ring] - center) @ frame.T
            radial = 1.0 - 0.16 * envelope * lower
            vertical = 1.0 - 0.10 * envelope * lower
            widen = 1.0 + 0.08 * envelope * rear * (0.45 + 0.55 * side)
            comps[:, 1] = comps[:, 1] * radial * widen - 0.05 * body.local_radius[ring] * envelope * lower
            comps[:, 2] = comps[:, 2] * vertical
            moved = center + comps @ frame
            self.positions[ring] = np.where(active[:, None], moved, self.positions[ring])
            self.affected.append(ring)

    def tuck_tail(self, tail_underlap: float) -> None:
        """Drop the tail slightly where it enters under the jaw."""
        body = self.body
        layout = body.layout
        phi = np.arange(layout.cross_segments) / layout.cross_segments * TWO_PI
        jaw = np.maximum(0.0, -np.sin(phi))
        active = jaw > 1e-4
        if not np.any(active):
            return

        tail_entry = layout.bite_index + int(round(3.0 + (10.0 - 3.0) * tail_underlap))
        for d in range(-2, 3):
            ring = (tail_entry + d) % layout.path_segments
            envelope = float(smootherstep01(clamp(1.0 - abs(d) / 3.0, 0.0, 1.0)))
            if envelope <= 1e-4:
                continue
            amount = body.local_radius[ring] * jaw * envelope
            shift = (
                -body.frames.bitangents[ring] * (0.08 * amount)[:, None]
                - body.frames.normals[ring] * (0.03 * amount)[:, None]
            )
            self.positions[ring] = np.where(active[:, None], self.positions[ring] + shift, self.positions[ring])
            self.affected.append(ring)

    def restore_weld_basis(self, rings) -> None:
        for ring in rings:
            self.normals[ring] = self.body.normals[ring]
            self.tangents[ring] = self.body.tangents[ring]

    def blend_inner_seam(self, ring: int, alpha: float) -> None:
        """Partial body-to-head basis transition next to a weld ring."""
        body_n = self.body.normals[ring]
        body_t = self.body.tangents[ring, :, :3]
        head_t = _align_shortest_arc(body_t, self.head_tangents[ring, :, :3])
        p = self.positions[ring]
        dpdv = np.roll(p, -1, axis=0) - np.roll(p, 1, axis=0)
        n = safe_normalize(lerp(body_n, self.head_normals[ring], alpha), body_n)
        t = safe_normalize(lerp(body_t, head_t, alpha), body_t)
        t = safe_normalize(project_onto_plane(t, n), body_t)
        self.normals[ring] = n
        self.tangents[ring] = tangent_with_sign(n, t, dpdv)

    def rebuild_affected(self) -> None:
        rings = sorted(set(self.affected))
        ring_basis_from_geometry(self.positions, self.body.centers, self.normals, self.tangents, rings)


def tube_indices(path_segments: int, cross_segments: int) -> np.ndarray:
    """Closed-torus quads, wound so face normals point away from the centreline."""
    i = np.arange(path_segments)[:, None]
    j = np.arange(cross_segments)[None, :]
    row0 = i * cross_segments
    row1 = ((i + 1) % path_segments) * cross_segments
    j_next = (j + 1) % cross_segments
    a0 = row0 + j
    a1 = row0 + j_next
    b0 = row1 + j
    b1 = row1 + j_next
    first = np.stack(np.broadcast_arrays(a0, b0, a1), axis=-1)
    second = np.stack(np.broadcast_arrays(a1, b0, b1), axis=-1)
    return np.stack([first, second], axis=2).reshape(-1)


def build_collar_mesh(knob: KnobParameters, collar: CollarParameters) -> Mesh:
    """Build the procedural collar ring with its blended head."""
    body = sweep_collar_body(knob, collar)
    layout = body.layout
    window = replaced_rings(layout)
    welds = weld_rings(layout)

    patch = build_head_patch(
        layout.cross_segments,
        HEAD_CORE_RINGS,
        max(0.0, collar.head_scale),
        max(0.0, collar.jaw_bulge),
        max(0.45, collar.body_ellipse_y_scale),
    )

    blend = _CollarBlend(body)
    blend.blend_head(window, patch)
    blend.compress_bite_zone()
    blend.restore_weld_basis(welds)
    for k, alpha in INNER_SEAM_BLENDS:
        blend.blend_inner_seam(int(window[k]), alpha)
    blend.tuck_tail(collar.tail_underlap)
    blend.rebuild_affected()
    # Post-deformation rebuilds may have touched a weld ring.
    blend.restore_weld_basis(welds)

    vertex_count = layout.path_segments * layout.cross_segments
    mesh = Mesh(
        positions=blend.positions.reshape(vertex_count, 3),
        normals=blend.normals.reshape(vertex_count, 3),
        tangents=blend.tangents.reshape(vertex_count, 4),
        indices=tube_indices(layout.path_segments, layout.cross_segments),
        reference_radius=layout.reference_radius,
        uvs=body.uvs.reshape(vertex_count, 2),
    )
    logger.debug(
        "Built collar mesh: %d vertices, %d triangles, bite ring %d, welds %s",
        mesh.vertex_count, mesh.triangle_count, layout.bite_index, welds,
    )
    return mesh
