"""
Core geometry types and numeric helpers shared by every mesh builder.

Provides the Mesh/Vertex records handed to the renderer, small vector helpers
that work on whole numpy arrays (the builders never loop per vertex where a
vectorised form exists), the shaping functions (smoothstep, gaussian, value
noise) used by the procedural surfaces, and a union-find for topology work.
"""
from dataclasses import dataclass, field
from typing import Iterator, List, NamedTuple, Optional

import numpy as np
import trimesh

UNIT_X = np.array([1.0, 0.0, 0.0])
UNIT_Y = np.array([0.0, 1.0, 0.0])
UNIT_Z = np.array([0.0, 0.0, 1.0])

TWO_PI = 2.0 * np.pi
_LENGTH_SQ_EPS = 1e-8


class Vertex(NamedTuple):
    """One renderable vertex: position, unit normal, tangent + handedness."""
    position: np.ndarray   # (3,)
    normal: np.ndarray     # (3,)
    tangent: np.ndarray    # (4,) xyz unit, w = +/-1


@dataclass(frozen=True)
class Mesh:
    """Triangle mesh consumed by the rendering backend.

    Arrays are copied on construction and marked read-only, so a returned
    mesh can be shared between threads without defensive copies.
    """
    positions: np.ndarray             # (N, 3) float32
    normals: np.ndarray               # (N, 3) float32
    tangents: np.ndarray              # (N, 4) float32
    indices: np.ndarray               # (3T,) uint32, outward CCW winding
    reference_radius: float           # bounding scale for camera framing
    uvs: Optional[np.ndarray] = field(default=None)  # (N, 2) float32

    def __post_init__(self):
        positions = _frozen(self.positions, np.float32, (-1, 3))
        normals = _frozen(self.normals, np.float32, (-1, 3))
        tangents = _frozen(self.tangents, np.float32, (-1, 4))
        indices = _frozen(self.indices, np.uint32, (-1,))
        n = len(positions)
        if len(normals) != n or len(tangents) != n:
            raise ValueError(
                f"Vertex attribute length mismatch: positions={n}, "
                f"normals={len(normals)}, tangents={len(tangents)}"
            )
        if len(indices) % 3 != 0:
            raise ValueError(f"Index count {len(indices)} is not a multiple of 3")
        if len(indices) and int(indices.max()) >= n:
            raise ValueError("Index buffer references a missing vertex")
        object.__setattr__(self, "positions", positions)
        object.__setattr__(self, "normals", normals)
        object.__setattr__(self, "tangents", tangents)
        object.__setattr__(self, "indices", indices)
        object.__setattr__(self, "reference_radius", float(self.reference_radius))
        if self.uvs is not None:
            uvs = _frozen(self.uvs, np.float32, (-1, 2))
            if len(uvs) != n:
                raise ValueError(f"UV count {len(uvs)} does not match vertex count {n}")
            object.__setattr__(self, "uvs", uvs)

    @property
    def vertex_count(self) -> int:
        return int(len(self.positions))

    @property
    def triangle_count(self) -> int:
        return int(len(self.indices) // 3)

    @property
    def triangles(self) -> np.ndarray:
        """(T, 3) view of the index buffer."""
        return self.indices.reshape(-1, 3)

    def vertex(self, index: int) -> Vertex:
        return Vertex(self.positions[index], self.normals[index], self.tangents[index])

    @property
    def vertices(self) -> Iterator[Vertex]:
        for i in range(self.vertex_count):
            yield self.vertex(i)

    def to_trimesh(self) -> trimesh.Trimesh:
        """Wrap the mesh for export/inspection without merging vertices."""
        return trimesh.Trimesh(
            vertices=np.asarray(self.positions, dtype=float),
            faces=np.asarray(self.triangles, dtype=np.int64),
            vertex_normals=np.asarray(self.normals, dtype=float),
            process=False,
        )


def _frozen(values, dtype, shape) -> np.ndarray:
    arr = np.array(values, dtype=dtype, copy=True).reshape(shape)
    arr.setflags(write=False)
    return arr


# ─── Vector helpers ──────────────────────────────────────────────────────────

def dot(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Row-wise dot product over the last axis."""
    return np.einsum("...i,...i->...", a, b)


def safe_normalize(vectors, fallback) -> np.ndarray:
    """Normalize along the last axis, substituting *fallback* for ~zero rows."""
    v = np.asarray(vectors, dtype=float)
    fb = np.broadcast_to(np.asarray(fallback, dtype=float), v.shape)
    sq = np.asarray(dot(v, v))
    ok = sq > _LENGTH_SQ_EPS
    length = np.sqrt(np.where(ok, sq, 1.0))
    return np.where(ok[..., None], v / length[..., None], fb)


def project_onto_plane(vectors, normals) -> np.ndarray:
    v = np.asarray(vectors, dtype=float)
    n = np.asarray(normals, dtype=float)
    return v - n * dot(v, n)[..., None]


def tangent_with_sign(normals, tangent_guess, dpdv) -> np.ndarray:
    """Orthonormalize a tangent against its normal and attach the sign.

    The sign is +1 when ``normal x tangent`` runs along the V derivative.
    """
    n = safe_normalize(normals, UNIT_Z)
    t = safe_normalize(project_onto_plane(tangent_guess, n), UNIT_X)
    s = dot(np.cross(n, t), np.asarray(dpdv, dtype=float))
    sign = np.where(s >= 0.0, 1.0, -1.0)
    return np.concatenate([t, sign[..., None]], axis=-1)


def default_tangents(positions: np.ndarray, normals: np.ndarray) -> np.ndarray:
    """Circumferential tangents for surfaces of revolution around +Z.

    Falls back to Z x N, then to +X, when the swirl direction is degenerate.
    """
    p = np.asarray(positions, dtype=float)
    n = np.asarray(normals, dtype=float)
    radial = np.stack([-p[:, 1], p[:, 0], np.zeros(len(p))], axis=1)
    flat = dot(radial, radial) <= _LENGTH_SQ_EPS
    radial[flat] = UNIT_X

    tangent = radial - n * dot(radial, n)[:, None]
    bad = dot(tangent, tangent) <= _LENGTH_SQ_EPS
    if np.any(bad):
        tangent[bad] = np.cross(UNIT_Z, n[bad])
        still_bad = dot(tangent, tangent) <= _LENGTH_SQ_EPS
        tangent[still_bad] = UNIT_X
    tangent /= np.linalg.norm(tangent, axis=1)[:, None]
    return np.concatenate([tangent, np.ones((len(p), 1))], axis=1)


def vertex_normals(positions: np.ndarray, indices: np.ndarray) -> np.ndarray:
    """Area-weighted vertex normals with a planar-radial fallback."""
    p = np.asarray(positions, dtype=float)
    tris = np.asarray(indices, dtype=np.int64).reshape(-1, 3)
    normals = np.zeros_like(p)
    if len(tris):
        fn = np.cross(p[tris[:, 1]] - p[tris[:, 0]], p[tris[:, 2]] - p[tris[:, 0]])
        keep = dot(fn, fn) > 1e-10
        for corner in range(3):
            np.add.at(normals, tris[keep, corner], fn[keep])

    radial = np.column_stack([p[:, 0], p[:, 1], np.zeros(len(p))])
    fallback = np.where(
        (dot(radial, radial) > 1e-10)[:, None], radial, UNIT_Z
    )
    empty = dot(normals, normals) <= 1e-10
    normals[empty] = fallback[empty]
    return normals / np.linalg.norm(normals, axis=1)[:, None]


# ─── Scalar shaping (all accept numpy arrays) ────────────────────────────────

def clamp(value: float, lo: float, hi: float) -> float:
    return min(max(value, lo), hi)


def lerp(a, b, t):
    return a + (b - a) * t


def fract(x):
    return x - np.floor(x)


def smoothstep(edge0: float, edge1: float, x):
    if edge1 <= edge0:
        return np.where(np.asarray(x) < edge0, 0.0, 1.0)
    t = np.clip((np.asarray(x, dtype=float) - edge0) / (edge1 - edge0), 0.0, 1.0)
    return t * t * (3.0 - 2.0 * t)


def smootherstep01(t):
    x = np.clip(np.asarray(t, dtype=float), 0.0, 1.0)
    return x * x * x * (x * (x * 6.0 - 15.0) + 10.0)


def gaussian(x, sigma: float):
    s = max(1e-4, sigma)
    a = np.asarray(x, dtype=float) / s
    return np.exp(-(a * a))


def gaussian_mask(value, mean: float, sigma: float):
    s = max(1e-4, sigma)
    d = (np.asarray(value, dtype=float) - mean) / s
    return np.exp(-(d * d))


def wrap01(x):
    return x - np.floor(x)


def wrap_signed_radians(radians):
    """Wrap angles into [-pi, pi]."""
    r = np.asarray(radians, dtype=float)
    return r - TWO_PI * np.round(r / TWO_PI)


def wrap_index(index, count: int):
    return np.mod(index, count)


def min_wrapped_distance(a, b, count: int):
    d = np.abs(np.asarray(a) - b)
    return np.minimum(d, np.maximum(0, count - d))


def hash2(x, y) -> np.ndarray:
    """Integer lattice hash in [0, 1], 32-bit wraparound arithmetic."""
    mask = 0xFFFFFFFF
    xi = np.asarray(x, dtype=np.int64)
    yi = np.asarray(y, dtype=np.int64)
    h = ((xi * 374761393) + (yi * 668265263)) & mask
    h = ((h ^ (h >> 13)) * 1274126177) & mask
    h ^= h >> 16
    return (h & 0x00FFFFFF) / 16777215.0


def value_noise_2d(x, y) -> np.ndarray:
    """Bilinear value noise over the hash lattice with smoothstep weights."""
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    x0 = np.floor(x)
    y0 = np.floor(y)
    tx = x - x0
    ty = y - y0
    sx = tx * tx * (3.0 - 2.0 * tx)
    sy = ty * ty * (3.0 - 2.0 * ty)
    x0 = x0.astype(np.int64)
    y0 = y0.astype(np.int64)

    n00 = hash2(x0, y0)
    n10 = hash2(x0 + 1, y0)
    n01 = hash2(x0, y0 + 1)
    n11 = hash2(x0 + 1, y0 + 1)
    nx0 = n00 + (n10 - n00) * sx
    nx1 = n01 + (n11 - n01) * sx
    return nx0 + (nx1 - nx0) * sy


# ─── Topology ────────────────────────────────────────────────────────────────

class DisjointSet:
    """Union-find with path compression and union by rank."""

    def __init__(self, size: int):
        self._parent: List[int] = list(range(size))
        self._rank: List[int] = [0] * size

    def find(self, value: int) -> int:
        root = value
        while self._parent[root] != root:
            root = self._parent[root]
        while self._parent[value] != root:
            self._parent[value], value = root, self._parent[value]
        return root

    def union(self, a: int, b: int) -> None:
        root_a = self.find(a)
        root_b = self.find(b)
        if root_a == root_b:
            return
        rank_a = self._rank[root_a]
        rank_b = self._rank[root_b]
        if rank_a < rank_b:
            self._parent[root_a] = root_b
        elif rank_a > rank_b:
            self._parent[root_b] = root_a
        else:
            self._parent[root_b] = root_a
            self._rank[root_a] += 1

    def roots(self) -> np.ndarray:
        return np.array([self.find(i) for i in range(len(self._parent))], dtype=np.int64)
