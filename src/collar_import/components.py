"""Connected-component isolation for imported collar assets."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from collar_import.contracts import ImportedMeshData
from geometry_primitives import DisjointSet

logger = logging.getLogger(__name__)

MIN_COMPONENT_TRIANGLES = 128
MIN_COMPONENT_VERTICES = 128
TRIANGLE_THRESHOLD_DIVISOR = 200
VERTEX_THRESHOLD_DIVISOR = 300
HOLE_RATIO_WEIGHT = 12.0
TRIANGLE_FRACTION_WEIGHT = 2.0


@dataclass(frozen=True)
class ComponentScore:
    """Ring-likeness of one vertex-connected component."""

    root: int
    vertex_count: int
    triangle_count: int
    hole_ratio: float
    median_radius: float
    triangle_fraction: float

    @property
    def score(self) -> float:
        return (
            self.hole_ratio * HOLE_RATIO_WEIGHT
            + self.median_radius
            + self.triangle_fraction * TRIANGLE_FRACTION_WEIGHT
        )


def _valid_triangles(triangles: np.ndarray, vertex_count: int) -> np.ndarray:
    return (
        np.all((triangles >= 0) & (triangles < vertex_count), axis=1)
        & (triangles[:, 0] != triangles[:, 1])
        & (triangles[:, 1] != triangles[:, 2])
        & (triangles[:, 2] != triangles[:, 0])
    )


def vertex_roots(mesh: ImportedMeshData) -> np.ndarray:
    """Union-find root of every vertex, joined through valid triangles."""
    dsu = DisjointSet(mesh.vertex_count)
    tris = mesh.indices[_valid_triangles(mesh.indices, mesh.vertex_count)]
    for i0, i1, i2 in tris.tolist():
        dsu.union(i0, i1)
        dsu.union(i1, i2)
        dsu.union(i2, i0)
    return dsu.roots()


def score_components(mesh: ImportedMeshData, roots: np.ndarray) -> List[ComponentScore]:
    """Score every component large enough to be a collar candidate."""
    tri_count = mesh.triangle_count
    valid = _valid_triangles(mesh.indices, mesh.vertex_count)
    tri_roots = roots[mesh.indices[valid]]
    whole = (tri_roots[:, 0] == tri_roots[:, 1]) & (tri_roots[:, 1] == tri_roots[:, 2])
    tri_root = tri_roots[whole, 0]

    min_triangles = max(MIN_COMPONENT_TRIANGLES, tri_count // TRIANGLE_THRESHOLD_DIVISOR)
    min_vertices = max(MIN_COMPONENT_VERTICES, mesh.vertex_count // VERTEX_THRESHOLD_DIVISOR)
    planar = np.hypot(mesh.positions[:, 0].astype(np.float64), mesh.positions[:, 1])

    scores = []
    unique_roots, tri_counts = np.unique(tri_root, return_counts=True)
    for root, count in zip(unique_roots.tolist(), tri_counts.tolist()):
        if count < min_triangles:
            continue
        radii = planar[roots == root]
        if len(radii) < min_vertices:
            continue
        r05, r50, r95 = np.quantile(radii, [0.05, 0.50, 0.95])
        if r95 <= 1e-6:
            continue
        scores.append(ComponentScore(
            root=root,
            vertex_count=len(radii),
            triangle_count=count,
            hole_ratio=float(r05 / r95),
            median_radius=float(r50),
            triangle_fraction=count / float(tri_count),
        ))
    return scores


def extract_collar_component(mesh: ImportedMeshData) -> Optional[ImportedMeshData]:
    """Pick the most ring-like component, or None when the mesh should stay whole.

    Declines when there is a single component, no component passes the size
    thresholds, or the winner would be the entire mesh.
    """
    if mesh.vertex_count == 0 or mesh.triangle_count < 3:
        return None

    roots = vertex_roots(mesh)
    component_count = len(np.unique(roots))
    if component_count <= 1:
        return None

    scores = score_components(mesh, roots)
    if not scores:
        return None
    best = max(scores, key=lambda s: s.score)
    if best.triangle_count <= 0 or best.triangle_count >= mesh.triangle_count:
        return None

    selected_vertices = np.flatnonzero(roots == best.root)
    remap = np.full(mesh.vertex_count, -1, dtype=np.int64)
    remap[selected_vertices] = np.arange(len(selected_vertices))

    valid = _valid_triangles(mesh.indices, mesh.vertex_count)
    tris = mesh.indices[valid]
    in_component = np.all(roots[tris] == best.root, axis=1)
    new_tris = remap[tris[in_component]]
    if not len(selected_vertices) or not len(new_tris):
        return None

    logger.info(
        "Extracted collar component: components=%d, triangles=%d/%d, vertices=%d/%d",
        component_count, len(new_tris), mesh.triangle_count,
        len(selected_vertices), mesh.vertex_count,
    )
    return ImportedMeshData(mesh.positions[selected_vertices], new_tris)
