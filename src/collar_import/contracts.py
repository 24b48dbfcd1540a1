"""Contracts for the imported collar mesh pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np


class MeshImportError(Exception):
    """Base class for collar import failures."""


class MeshFormatError(MeshImportError):
    """File bytes or embedded JSON are malformed or truncated."""


class UnsupportedAccessorError(MeshImportError):
    """A glTF accessor uses a layout the importer deliberately rejects."""


class UnsupportedMeshFormatError(MeshImportError):
    """The file extension is neither .stl nor .glb."""


@dataclass
class ImportedMeshData:
    """Indexed triangle soup in source units.

    ``positions`` is (V, 3) float32, ``indices`` is (T, 3) int64.
    """

    positions: np.ndarray
    indices: np.ndarray

    def __post_init__(self):
        self.positions = np.asarray(self.positions, dtype=np.float32).reshape(-1, 3)
        self.indices = np.asarray(self.indices, dtype=np.int64).reshape(-1, 3)

    @property
    def vertex_count(self) -> int:
        return int(len(self.positions))

    @property
    def triangle_count(self) -> int:
        return int(len(self.indices))

    def copy(self) -> "ImportedMeshData":
        return ImportedMeshData(self.positions.copy(), self.indices.copy())


@dataclass(frozen=True)
class OrientationResult:
    """How the auto-orienter remapped the source axes."""

    permutation: Tuple[int, int, int]
    flipped_z: bool
    negated_x: bool


@dataclass(frozen=True)
class RadialBands:
    """Robust planar radius bands of a ring-shaped point cloud."""

    inner: float
    center: float
    outer: float


@dataclass
class ImportStats:
    """Cache counters, exposed for diagnostics and tests."""

    hits: int = 0
    misses: int = 0
    failures: int = 0
