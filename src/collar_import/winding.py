"""
Triangle winding repair for imported meshes.

Two passes: first make winding consistent across every shared edge by
flood-filling flips over the edge adjacency, then flip whole components so
their faces point away from the component centroid.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Tuple

import numpy as np

from collar_import.contracts import ImportedMeshData

logger = logging.getLogger(__name__)

OUTWARD_SCORE_EPS = 1e-6


def _edge_pairs(triangles: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """(tri_a, tri_b, same_direction) for every pair of uses of an undirected edge."""
    tri_count = len(triangles)
    start = triangles.reshape(-1)
    end = triangles[:, [1, 2, 0]].reshape(-1)
    owner = np.repeat(np.arange(tri_count), 3)
    lo = np.minimum(start, end)
    hi = np.maximum(start, end)
    forward = start < end

    order = np.lexsort((hi, lo))
    lo, hi, forward, owner = lo[order], hi[order], forward[order], owner[order]
    new_key = np.ones(len(lo), dtype=bool)
    new_key[1:] = (lo[1:] != lo[:-1]) | (hi[1:] != hi[:-1])
    group_start = np.flatnonzero(new_key)
    group_size = np.diff(np.append(group_start, len(lo)))

    # Manifold edges: exactly two uses.
    pair_start = group_start[group_size == 2]
    tri_a = [owner[pair_start]]
    tri_b = [owner[pair_start + 1]]
    same = [forward[pair_start] == forward[pair_start + 1]]

    # Non-manifold edges: every pair of uses.
    for first, size in zip(group_start[group_size > 2], group_size[group_size > 2]):
        for i in range(first, first + size - 1):
            for j in range(i + 1, first + size):
                tri_a.append(owner[i:i + 1])
                tri_b.append(owner[j:j + 1])
                same.append(np.array([forward[i] == forward[j]]))

    return np.concatenate(tri_a), np.concatenate(tri_b), np.concatenate(same)


def consistency_components(triangles: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Label edge-connected triangle components and the flips that make them consistent.

    Returns ``(component, flip)`` per triangle.
    """
    tri_count = len(triangles)
    component = np.full(tri_count, -1, dtype=np.int64)
    flip = np.zeros(tri_count, dtype=bool)
    if tri_count == 0:
        return component, flip

    tri_a, tri_b, same = _edge_pairs(triangles)
    src = np.concatenate([tri_a, tri_b])
    dst = np.concatenate([tri_b, tri_a])
    rel = np.concatenate([same, same])
    order = np.argsort(src, kind="stable")
    dst, rel = dst[order].tolist(), rel[order].tolist()
    indptr = np.concatenate([[0], np.cumsum(np.bincount(src, minlength=tri_count))]).tolist()

    label = 0
    queue = deque()
    for seed in range(tri_count):
        if component[seed] >= 0:
            continue
        component[seed] = label
        queue.append(seed)
        while queue:
            tri = queue.popleft()
            tri_flip = bool(flip[tri])
            for k in range(indptr[tri], indptr[tri + 1]):
                neighbor = dst[k]
                if component[neighbor] < 0:
                    component[neighbor] = label
                    flip[neighbor] = tri_flip ^ rel[k]
                    queue.append(neighbor)
        label += 1
    return component, flip


def _swap_winding(triangles: np.ndarray, mask: np.ndarray) -> None:
    triangles[mask, 1], triangles[mask, 2] = triangles[mask, 2].copy(), triangles[mask, 1].copy()


def outward_component_flips(positions: np.ndarray, triangles: np.ndarray, component: np.ndarray) -> np.ndarray:
    """Per-component flag: True when the component currently faces inward."""
    count = int(component.max()) + 1 if len(component) else 0
    p = np.asarray(positions, dtype=np.float64)
    p0 = p[triangles[:, 0]]
    p1 = p[triangles[:, 1]]
    p2 = p[triangles[:, 2]]
    fn = np.cross(p1 - p0, p2 - p0)
    area = np.linalg.norm(fn, axis=1)
    centers = (p0 + p1 + p2) / 3.0

    area_sum = np.bincount(component, weights=area, minlength=count)
    accum = np.stack(
        [np.bincount(component, weights=centers[:, k] * area, minlength=count) for k in range(3)],
        axis=1,
    )
    inv_area = np.where(area_sum > 1e-8, 1.0 / np.where(area_sum > 1e-8, area_sum, 1.0), 0.0)
    comp_center = accum * inv_area[:, None]

    score = np.bincount(
        component,
        weights=np.einsum("ij,ij->i", fn, centers - comp_center[component]),
        minlength=count,
    )
    volume = np.bincount(
        component,
        weights=np.einsum("ij,ij->i", p0, np.cross(p1, p2)),
        minlength=count,
    )
    # Near-symmetric or open components fall back to the signed volume.
    return np.where(np.abs(score) > OUTWARD_SCORE_EPS, score < 0.0, volume < 0.0)


def repair_winding(mesh: ImportedMeshData) -> ImportedMeshData:
    """Return a copy of *mesh* with consistent, outward-facing winding."""
    triangles = mesh.indices.copy()
    if not len(triangles):
        return ImportedMeshData(mesh.positions.copy(), triangles)

    component, flip = consistency_components(triangles)
    _swap_winding(triangles, flip)
    flip_component = outward_component_flips(mesh.positions, triangles, component)
    _swap_winding(triangles, flip_component[component])

    logger.debug(
        "Winding repair: %d components, %d triangles made consistent, %d components turned outward",
        int(component.max()) + 1, int(flip.sum()), int(flip_component.sum()),
    )
    return ImportedMeshData(mesh.positions.copy(), triangles)
