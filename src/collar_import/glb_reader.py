"""
Binary glTF (GLB v2) decoding for collar assets.

Only ``meshes[].primitives[]`` in triangle mode are read, through their
POSITION accessor and optional index accessor. Everything must live in the
first BIN chunk (buffer 0); sparse accessors are rejected. Any structural
problem aborts the whole read, so callers never see a partial mesh.
"""

from __future__ import annotations

import json
import logging
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

import numpy as np

from collar_import.contracts import (
    ImportedMeshData,
    MeshFormatError,
    UnsupportedAccessorError,
)

logger = logging.getLogger(__name__)

GLB_MAGIC = 0x46546C67
GLB_VERSION = 2
GLB_HEADER_BYTES = 12
GLB_MIN_BYTES = 20
CHUNK_JSON = 0x4E4F534A
CHUNK_BIN = 0x004E4942

MODE_TRIANGLES = 4
COMPONENT_FLOAT = 5126
INDEX_DTYPES = {
    5121: np.dtype("<u1"),
    5123: np.dtype("<u2"),
    5125: np.dtype("<u4"),
}


@dataclass(frozen=True)
class AccessorView:
    """Resolved byte window of one accessor inside the BIN chunk."""

    data_offset: int
    count: int
    component_type: int
    type: str
    byte_stride: int
    byte_length: int


def _int_field(obj: dict, key: str, default: Optional[int] = None) -> Optional[int]:
    value = obj.get(key, default)
    if value is default:
        return default
    if isinstance(value, bool) or not isinstance(value, int):
        raise MeshFormatError(f"glTF field {key!r} is not an integer: {value!r}")
    return value


def _required_array(document: dict, key: str) -> list:
    value = document.get(key)
    if not isinstance(value, list) or not value:
        raise MeshFormatError(f"glTF document has no {key!r} array")
    return value


def parse_glb_container(data: bytes) -> Tuple[dict, bytes]:
    """Validate the GLB header and return (JSON document, first BIN chunk)."""
    if len(data) < GLB_MIN_BYTES:
        raise MeshFormatError(f"GLB too short: {len(data)} bytes")

    magic, version, declared = struct.unpack_from("<III", data, 0)
    if magic != GLB_MAGIC:
        raise MeshFormatError(f"Bad GLB magic 0x{magic:08X}")
    if version != GLB_VERSION:
        raise MeshFormatError(f"Unsupported GLB version {version}")
    if declared < GLB_MIN_BYTES or declared > len(data):
        raise MeshFormatError(f"GLB declared length {declared} outside file of {len(data)} bytes")

    json_text = None
    binary = None
    pos = GLB_HEADER_BYTES
    while pos + 8 <= declared:
        chunk_length, chunk_type = struct.unpack_from("<II", data, pos)
        pos += 8
        if pos + chunk_length > declared:
            raise MeshFormatError(
                f"GLB chunk of {chunk_length} bytes at offset {pos} overruns declared length"
            )
        payload = data[pos:pos + chunk_length]
        pos += chunk_length
        if chunk_type == CHUNK_JSON:
            try:
                json_text = payload.decode("utf-8").rstrip("\0\t\r\n ")
            except UnicodeDecodeError as exc:
                raise MeshFormatError(f"GLB JSON chunk is not UTF-8: {exc}") from exc
        elif chunk_type == CHUNK_BIN and binary is None:
            binary = bytes(payload)

    if not json_text or not json_text.strip() or binary is None:
        raise MeshFormatError("GLB is missing its JSON or BIN chunk")

    try:
        document = json.loads(json_text)
    except json.JSONDecodeError as exc:
        raise MeshFormatError(f"GLB JSON chunk is malformed: {exc}") from exc
    if not isinstance(document, dict):
        raise MeshFormatError("GLB JSON root is not an object")
    return document, binary


def resolve_accessor_view(
    accessors: list,
    buffer_views: list,
    buffer_length: int,
    accessor_index: int,
) -> AccessorView:
    if not 0 <= accessor_index < len(accessors) or not isinstance(accessors[accessor_index], dict):
        raise MeshFormatError(f"Accessor {accessor_index} does not exist")
    accessor = accessors[accessor_index]

    if "sparse" in accessor:
        raise UnsupportedAccessorError(f"Accessor {accessor_index} is sparse")

    view_index = _int_field(accessor, "bufferView")
    if view_index is None or not 0 <= view_index < len(buffer_views) \
            or not isinstance(buffer_views[view_index], dict):
        raise MeshFormatError(f"Accessor {accessor_index} has no valid bufferView")
    buffer_view = buffer_views[view_index]

    count = _int_field(accessor, "count")
    if count is None or count <= 0:
        raise MeshFormatError(f"Accessor {accessor_index} has no elements")
    component_type = _int_field(accessor, "componentType")
    if component_type is None:
        raise MeshFormatError(f"Accessor {accessor_index} has no componentType")
    acc_type = accessor.get("type")
    if not isinstance(acc_type, str) or not acc_type.strip():
        raise MeshFormatError(f"Accessor {accessor_index} has no type")

    buffer_index = _int_field(buffer_view, "buffer", 0)
    if buffer_index != 0:
        raise UnsupportedAccessorError(
            f"Accessor {accessor_index} reads buffer {buffer_index}; only buffer 0 is embedded"
        )

    view_offset = _int_field(buffer_view, "byteOffset", 0)
    view_length = _int_field(buffer_view, "byteLength")
    if view_length is None or view_length <= 0:
        raise MeshFormatError(f"bufferView {view_index} has no byteLength")
    accessor_offset = _int_field(accessor, "byteOffset", 0)
    byte_stride = _int_field(buffer_view, "byteStride", 0)

    data_offset = view_offset + accessor_offset
    if data_offset < 0 or data_offset >= buffer_length:
        raise MeshFormatError(f"Accessor {accessor_index} starts outside the BIN chunk")
    if data_offset > view_offset + view_length:
        raise MeshFormatError(f"Accessor {accessor_index} starts past its bufferView")

    byte_length = view_length - accessor_offset
    if byte_length <= 0:
        raise MeshFormatError(f"Accessor {accessor_index} has an empty byte window")
    return AccessorView(data_offset, count, component_type, acc_type, byte_stride, byte_length)


def _gather(binary: bytes, view: AccessorView, element_size: int, stride: int) -> np.ndarray:
    last_start = view.data_offset + (view.count - 1) * stride
    if last_start < 0 \
            or last_start + element_size > len(binary) \
            or last_start + element_size > view.data_offset + view.byte_length:
        raise MeshFormatError("Accessor elements run past the end of their buffer")
    raw = np.frombuffer(binary, dtype=np.uint8)
    starts = view.data_offset + np.arange(view.count, dtype=np.int64) * stride
    return raw[starts[:, None] + np.arange(element_size)].copy()


def read_accessor_vec3(document: dict, binary: bytes, accessor_index: int) -> np.ndarray:
    view = resolve_accessor_view(document["accessors"], document["bufferViews"], len(binary), accessor_index)
    if view.type != "VEC3" or view.component_type != COMPONENT_FLOAT:
        raise UnsupportedAccessorError(
            f"POSITION accessor {accessor_index} is {view.type}/{view.component_type}, expected VEC3/5126"
        )
    stride = view.byte_stride if view.byte_stride > 0 else 12
    if stride < 12:
        raise UnsupportedAccessorError(f"POSITION stride {stride} is smaller than a float3")
    return _gather(binary, view, 12, stride).view("<f4").reshape(-1, 3)


def read_accessor_indices(document: dict, binary: bytes, accessor_index: int) -> np.ndarray:
    view = resolve_accessor_view(document["accessors"], document["bufferViews"], len(binary), accessor_index)
    if view.type != "SCALAR":
        raise UnsupportedAccessorError(f"Index accessor {accessor_index} is {view.type}, expected SCALAR")
    dtype = INDEX_DTYPES.get(view.component_type)
    if dtype is None:
        raise UnsupportedAccessorError(
            f"Index accessor {accessor_index} has component type {view.component_type}"
        )
    stride = view.byte_stride if view.byte_stride > 0 else dtype.itemsize
    if stride < dtype.itemsize:
        raise UnsupportedAccessorError(f"Index stride {stride} is smaller than its component")
    return _gather(binary, view, dtype.itemsize, stride).view(dtype).reshape(-1).astype(np.int64)


def _primitive_triangles(document: dict, binary: bytes, primitive: dict, vertex_count: int) -> np.ndarray:
    index_accessor = _int_field(primitive, "indices")
    if index_accessor is None:
        usable = (vertex_count // 3) * 3
        return np.arange(usable, dtype=np.int64).reshape(-1, 3)

    values = read_accessor_indices(document, binary, index_accessor)
    tris = values[: (len(values) // 3) * 3].reshape(-1, 3)
    keep = (
        np.all(tris < vertex_count, axis=1)
        & (tris[:, 0] != tris[:, 1])
        & (tris[:, 1] != tris[:, 2])
        & (tris[:, 2] != tris[:, 0])
    )
    return tris[keep]


def decode_glb(data: bytes) -> ImportedMeshData:
    document, binary = parse_glb_container(data)
    meshes = _required_array(document, "meshes")
    _required_array(document, "accessors")
    _required_array(document, "bufferViews")

    positions: List[np.ndarray] = []
    triangles: List[np.ndarray] = []
    base_vertex = 0
    for mesh in meshes:
        primitives = mesh.get("primitives") if isinstance(mesh, dict) else None
        if not isinstance(primitives, list):
            continue
        for primitive in primitives:
            if not isinstance(primitive, dict):
                continue
            if _int_field(primitive, "mode", MODE_TRIANGLES) != MODE_TRIANGLES:
                continue
            attributes = primitive.get("attributes")
            if not isinstance(attributes, dict) or "POSITION" not in attributes:
                continue
            position_accessor = _int_field(attributes, "POSITION")

            points = read_accessor_vec3(document, binary, position_accessor)
            tris = _primitive_triangles(document, binary, primitive, len(points))
            positions.append(points)
            triangles.append(tris + base_vertex)
            base_vertex += len(points)

    if not positions:
        raise MeshFormatError("GLB has no triangle primitives with positions")
    mesh = ImportedMeshData(np.vstack(positions), np.vstack(triangles))
    if mesh.vertex_count == 0 or mesh.triangle_count == 0:
        raise MeshFormatError("GLB contains no usable triangles")
    return mesh


def read_glb(path) -> ImportedMeshData:
    mesh = decode_glb(Path(path).read_bytes())
    logger.debug(
        "Read GLB %s: %d vertices, %d triangles", path, mesh.vertex_count, mesh.triangle_count
    )
    return mesh
