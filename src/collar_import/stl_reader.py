"""Binary STL decoding with quantized vertex welding."""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np

from collar_import.contracts import ImportedMeshData, MeshFormatError

logger = logging.getLogger(__name__)

STL_HEADER_BYTES = 80
STL_RECORD_BYTES = 50
WELD_QUANTIZATION = 10000.0

_STL_RECORD = np.dtype([
    ("normal", "<f4", (3,)),
    ("vertices", "<f4", (3, 3)),
    ("attribute", "<u2"),
])


def weld_triangle_soup(corners: np.ndarray) -> ImportedMeshData:
    """Merge (T, 3, 3) triangle corners into an indexed mesh.

    Corners that round to the same 1e-4 lattice point share one vertex.
    Vertices keep first-appearance order; triangles that collapse after
    welding are dropped.
    """
    flat = np.asarray(corners, dtype=np.float32).reshape(-1, 3)
    if not len(flat):
        return ImportedMeshData(np.zeros((0, 3)), np.zeros((0, 3)))

    keys = np.round(flat.astype(np.float64) * WELD_QUANTIZATION).astype(np.int64)
    _, first, inverse = np.unique(keys, axis=0, return_index=True, return_inverse=True)
    inverse = inverse.reshape(-1)
    order = np.argsort(first, kind="stable")
    rank = np.empty_like(order)
    rank[order] = np.arange(len(order))

    positions = flat[first[order]]
    indices = rank[inverse].reshape(-1, 3)
    keep = (
        (indices[:, 0] != indices[:, 1])
        & (indices[:, 1] != indices[:, 2])
        & (indices[:, 2] != indices[:, 0])
    )
    return ImportedMeshData(positions, indices[keep])


def decode_binary_stl(data: bytes) -> ImportedMeshData:
    """Decode binary STL bytes; the length must match the triangle count exactly."""
    if len(data) < STL_HEADER_BYTES + 4:
        raise MeshFormatError(f"STL too short: {len(data)} bytes")

    tri_count = int(np.frombuffer(data, dtype="<u4", count=1, offset=STL_HEADER_BYTES)[0])
    expected = STL_HEADER_BYTES + 4 + tri_count * STL_RECORD_BYTES
    if expected != len(data):
        raise MeshFormatError(
            f"STL length mismatch: header declares {tri_count} triangles "
            f"({expected} bytes) but file has {len(data)} bytes"
        )

    records = np.frombuffer(data, dtype=_STL_RECORD, count=tri_count, offset=STL_HEADER_BYTES + 4)
    # Stored facet normals are ignored; normals are recomputed after placement.
    mesh = weld_triangle_soup(records["vertices"])
    if mesh.vertex_count == 0 or mesh.triangle_count == 0:
        raise MeshFormatError("STL contains no usable triangles")
    return mesh


def read_binary_stl(path) -> ImportedMeshData:
    mesh = decode_binary_stl(Path(path).read_bytes())
    logger.debug(
        "Read STL %s: %d vertices, %d triangles", path, mesh.vertex_count, mesh.triangle_count
    )
    return mesh
