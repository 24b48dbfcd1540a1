"""
Imported collar adapter.

Turns an STL/GLB collar asset into a Mesh placed around the knob: decode,
repair winding, isolate the ring component (cached per file), then orient,
reshape, scale, rotate, offset and shade it. ``build`` never raises.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

import numpy as np

from collar_import.cache import ImportedMeshCache
from collar_import.components import extract_collar_component
from collar_import.contracts import (
    ImportedMeshData,
    MeshImportError,
    UnsupportedMeshFormatError,
)
from collar_import.deform import (
    BodyHeadDeformer,
    find_head_anchor,
    robust_radial_bands,
    weighted_body_center,
)
from collar_import.glb_reader import read_glb
from collar_import.orientation import auto_orient
from collar_import.stl_reader import read_binary_stl
from collar_import.winding import repair_winding
from geometry_primitives import (
    TWO_PI,
    UNIT_X,
    UNIT_Z,
    Mesh,
    dot,
    vertex_normals,
    wrap01,
)
from knob_parameters import CollarParameters, KnobParameters

logger = logging.getLogger(__name__)

READERS = {
    ".stl": read_binary_stl,
    ".glb": read_glb,
}

# Pre-deform recentring uses a wider head window than the deformer itself.
RECENTER_HEAD_INNER = 0.20
RECENTER_HEAD_OUTER = 0.85


def read_mesh_file(path) -> ImportedMeshData:
    suffix = Path(path).suffix.lower()
    reader = READERS.get(suffix)
    if reader is None:
        raise UnsupportedMeshFormatError(f"Unsupported collar mesh format {suffix!r}: {path}")
    return reader(path)


def decode_collar_asset(path) -> ImportedMeshData:
    """Read, repair winding and keep only the ring-like component."""
    mesh = repair_winding(read_mesh_file(path))
    extracted = extract_collar_component(mesh)
    return extracted if extracted is not None else mesh


def imported_tangents(normals: np.ndarray) -> np.ndarray:
    """Z x N tangents, falling back to X x N then +X; handedness always +1."""
    t = np.cross(UNIT_Z, normals)
    weak = dot(t, t) <= 1e-8
    t[weak] = np.cross(UNIT_X, normals[weak])
    weak = dot(t, t) <= 1e-8
    t[weak] = UNIT_X
    t /= np.linalg.norm(t, axis=1)[:, None]
    return np.concatenate([t, np.ones((len(t), 1))], axis=1)


def imported_uvs(positions: np.ndarray) -> np.ndarray:
    angle = np.arctan2(positions[:, 1], positions[:, 0])
    u = wrap01(angle / TWO_PI + 0.5)
    z_min = positions[:, 2].min()
    z_span = max(1e-6, float(positions[:, 2].max() - z_min))
    return np.column_stack([u, (positions[:, 2] - z_min) / z_span])


def place_imported_collar(
    source: ImportedMeshData,
    knob: KnobParameters,
    collar: CollarParameters,
) -> Optional[Mesh]:
    """Fit a decoded collar asset around the knob.

    Returns None when the asset has no usable radial extent.
    """
    if source.vertex_count == 0 or source.triangle_count == 0:
        return None

    points = source.positions.astype(np.float64)
    points -= (points.min(axis=0) + points.max(axis=0)) * 0.5
    points, _ = auto_orient(points)

    # Recentre on the body loop so the head does not pull the ring off-axis.
    anchor = points[find_head_anchor(points)]
    head_angle = float(np.arctan2(anchor[1], anchor[0]))
    points[:, :2] -= weighted_body_center(points, head_angle, RECENTER_HEAD_INNER, RECENTER_HEAD_OUTER)

    deformer = BodyHeadDeformer(
        body_length_scale=collar.body_length_scale,
        body_thickness_scale=collar.body_thickness_scale,
        head_length_scale=collar.head_length_scale,
        head_thickness_scale=collar.head_thickness_scale,
        head_angle_offset_radians=collar.head_angle_offset_radians,
    )
    points = deformer.apply(points, robust_radial_bands(points).center)
    bands = robust_radial_bands(points)
    if bands.outer <= 1e-6 or bands.center <= 1e-6:
        logger.warning("Imported collar has no radial extent; skipping")
        return None

    knob_radius = max(10.0, knob.radius)
    knob_half_height = max(10.0, knob.height * 0.5)
    target_inner = knob_radius * max(0.4, collar.inner_radius_ratio + collar.gap_to_knob_ratio)
    target_body = knob_radius * max(0.03, collar.body_radius_ratio)
    scale = (target_inner + target_body) / bands.center * collar.scale

    rotation = collar.overall_rotation_radians + collar.rotation_radians
    cos_a = np.cos(rotation)
    sin_a = np.sin(rotation)
    mirror = np.array([
        -1.0 if collar.mirror_x else 1.0,
        -1.0 if collar.mirror_y else 1.0,
        -1.0 if collar.mirror_z else 1.0,
    ])
    p = points * scale * mirror
    positions = np.column_stack([
        p[:, 0] * cos_a - p[:, 1] * sin_a + collar.offset_x_ratio * knob_radius,
        p[:, 0] * sin_a + p[:, 1] * cos_a + collar.offset_y_ratio * knob_radius,
        p[:, 2] + knob_half_height * collar.elevation_ratio,
    ])

    triangles = source.indices.copy()
    if np.prod(mirror) < 0.0:
        # Odd mirror count turns the repaired winding inside out.
        triangles[:, [1, 2]] = triangles[:, [2, 1]]

    normals = vertex_normals(positions, triangles)
    inflate = collar.inflate_ratio * knob_radius
    if abs(inflate) > 1e-6:
        positions = positions + normals * inflate
        normals = vertex_normals(positions, triangles)

    reference_radius = max(knob_radius, float(np.linalg.norm(positions, axis=1).max()))
    return Mesh(
        positions=positions,
        normals=normals,
        tangents=imported_tangents(normals),
        indices=triangles.reshape(-1),
        reference_radius=reference_radius,
        uvs=imported_uvs(positions),
    )


class ImportedMeshAdapter:
    """Builds the imported collar mesh; failures are logged and yield None."""

    def __init__(self, cache: Optional[ImportedMeshCache] = None):
        self.cache = cache if cache is not None else ImportedMeshCache()

    def load(self, path) -> ImportedMeshData:
        return self.cache.get_or_load(path, decode_collar_asset)

    def build(self, knob: KnobParameters, collar: CollarParameters) -> Optional[Mesh]:
        path = (collar.mesh_path or "").strip()
        if not path:
            return None
        if not os.path.isfile(path):
            logger.warning("Collar mesh not found: %s", path)
            return None

        try:
            source = self.load(path)
            mesh = place_imported_collar(source, knob, collar)
        except (MeshImportError, OSError) as exc:
            logger.warning("Failed to import collar mesh %s: %s", path, exc)
            return None
        except Exception:
            logger.exception("Unexpected error importing collar mesh %s", path)
            return None

        if mesh is not None:
            logger.info(
                "Imported collar %s: %d vertices, %d triangles",
                path, mesh.vertex_count, mesh.triangle_count,
            )
        return mesh
