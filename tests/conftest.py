"""
Shared test fixtures for knob and collar geometry tests.
"""
import json
import struct
import sys
from pathlib import Path

import numpy as np
import pytest
import trimesh

# Add src/ to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from knob_parameters import (
    CollarParameters,
    CollarPreset,
    IndicatorParameters,
    KnobParameters,
)


def make_torus(major=40.0, minor=8.0, sections=48, ring_segments=16):
    """Closed torus in the XY plane with outward winding."""
    u = np.arange(sections) * (2 * np.pi / sections)
    v = np.arange(ring_segments) * (2 * np.pi / ring_segments)
    uu, vv = np.meshgrid(u, v, indexing="ij")
    r = major + minor * np.cos(vv)
    vertices = np.stack([r * np.cos(uu), r * np.sin(uu), minor * np.sin(vv)], axis=-1).reshape(-1, 3)

    i = np.arange(sections)[:, None]
    j = np.arange(ring_segments)[None, :]
    a = i * ring_segments + j
    b = ((i + 1) % sections) * ring_segments + j
    c = ((i + 1) % sections) * ring_segments + (j + 1) % ring_segments
    d = i * ring_segments + (j + 1) % ring_segments
    faces = np.concatenate([
        np.stack(np.broadcast_arrays(a, b, c), axis=-1).reshape(-1, 3),
        np.stack(np.broadcast_arrays(a, c, d), axis=-1).reshape(-1, 3),
    ])
    return trimesh.Trimesh(vertices=vertices, faces=faces, process=False)


def write_glb(path, positions, indices=None, index_component=5125, mode=None,
              position_accessor_extra=None, buffer_view_extra=None):
    """Write a minimal single-primitive GLB with packed positions (+ indices)."""
    positions = np.asarray(positions, dtype="<f4")
    blob = positions.tobytes()
    position_view = dict(buffer=0, byteOffset=0, byteLength=len(blob))
    position_view.update(buffer_view_extra or {})
    buffer_views = [position_view]
    position_accessor = dict(bufferView=0, componentType=5126, count=len(positions), type="VEC3")
    position_accessor.update(position_accessor_extra or {})
    accessors = [position_accessor]
    primitive = {"attributes": {"POSITION": 0}}
    if mode is not None:
        primitive["mode"] = mode

    if indices is not None:
        dtype = {5121: "<u1", 5123: "<u2", 5125: "<u4"}[index_component]
        index_bytes = np.asarray(indices, dtype=dtype).reshape(-1).tobytes()
        while len(blob) % 4:
            blob += b"\0"
        buffer_views.append(dict(buffer=0, byteOffset=len(blob), byteLength=len(index_bytes)))
        accessors.append(dict(
            bufferView=1, componentType=index_component,
            count=int(np.asarray(indices).size), type="SCALAR",
        ))
        primitive["indices"] = 1
        blob += index_bytes

    while len(blob) % 4:
        blob += b"\0"
    document = {
        "asset": {"version": "2.0"},
        "buffers": [{"byteLength": len(blob)}],
        "bufferViews": buffer_views,
        "accessors": accessors,
        "meshes": [{"primitives": [primitive]}],
    }
    text = json.dumps(document).encode("utf-8")
    while len(text) % 4:
        text += b" "

    total = 12 + 8 + len(text) + 8 + len(blob)
    data = struct.pack("<III", 0x46546C67, 2, total)
    data += struct.pack("<II", len(text), 0x4E4F534A) + text
    data += struct.pack("<II", len(blob), 0x004E4942) + blob
    Path(path).write_bytes(data)
    return path


@pytest.fixture
def knob_params():
    """Default knob with the indicator hard walls switched off."""
    return KnobParameters(indicator=IndicatorParameters(cad_walls_enabled=False))


@pytest.fixture
def small_knob_params():
    """Coarse knob that keeps edge-topology checks fast."""
    return KnobParameters(
        radial_segments=24,
        indicator=IndicatorParameters(cad_walls_enabled=False),
    )


@pytest.fixture
def collar_params():
    return CollarParameters(enabled=True, preset=CollarPreset.PROCEDURAL)


@pytest.fixture
def torus_mesh():
    return make_torus()


@pytest.fixture
def blob_mesh():
    """Small sphere floating above the torus hole."""
    blob = trimesh.creation.icosphere(subdivisions=2, radius=5.0)
    blob.apply_translation([0.0, 0.0, 40.0])
    return blob


@pytest.fixture
def torus_stl(tmp_path, torus_mesh):
    path = tmp_path / "torus.stl"
    torus_mesh.export(str(path))
    return path


@pytest.fixture
def two_component_stl(tmp_path, torus_mesh, blob_mesh):
    path = tmp_path / "torus_and_blob.stl"
    trimesh.util.concatenate([torus_mesh, blob_mesh]).export(str(path))
    return path
