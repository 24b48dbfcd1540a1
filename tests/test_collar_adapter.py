"""Tests for the imported collar cache, placement and preset dispatch."""
import logging
import os
from types import SimpleNamespace

import numpy as np
import pytest

import collar_source
from collar_import import (
    ImportedMeshAdapter,
    ImportedMeshCache,
    ImportedMeshData,
    MeshFormatError,
    place_imported_collar,
)
from collar_source import build_collar_for_preset, default_adapter
from geometry_primitives import Mesh
from knob_parameters import CollarParameters, CollarPreset, KnobParameters


def imported(path, **overrides):
    return CollarParameters(enabled=True, preset=CollarPreset.IMPORTED, mesh_path=str(path), **overrides)


def signed_volume(mesh):
    p = mesh.positions.astype(np.float64)[mesh.triangles]
    return float(np.einsum("ij,ij->i", p[:, 0], np.cross(p[:, 1], p[:, 2])).sum() / 6.0)


class CountingLoader:

    def __init__(self):
        self.calls = 0

    def __call__(self, path):
        self.calls += 1
        return ImportedMeshData(np.eye(3), [[0, 1, 2]])


class TestImportedMeshCache:
    """Single-entry path + mtime cache."""

    def test_hit_after_miss(self, torus_stl):
        cache = ImportedMeshCache()
        loader = CountingLoader()
        cache.get_or_load(torus_stl, loader)
        cache.get_or_load(str(torus_stl), loader)
        assert loader.calls == 1
        assert cache.stats.hits == 1
        assert cache.stats.misses == 1

    def test_returns_private_copies(self, torus_stl):
        cache = ImportedMeshCache()
        loader = CountingLoader()
        first = cache.get_or_load(torus_stl, loader)
        first.positions[:] = 99.0
        second = cache.get_or_load(torus_stl, loader)
        assert np.array_equal(second.positions, np.eye(3, dtype=np.float32))

    def test_modified_file_is_reloaded(self, torus_stl):
        cache = ImportedMeshCache()
        loader = CountingLoader()
        cache.get_or_load(torus_stl, loader)
        stat = os.stat(torus_stl)
        os.utime(torus_stl, ns=(stat.st_atime_ns, stat.st_mtime_ns + 5_000_000_000))
        cache.get_or_load(torus_stl, loader)
        assert loader.calls == 2
        assert cache.stats.misses == 2

    def test_injected_stat(self):
        mtimes = {"value": 1}
        cache = ImportedMeshCache(stat_fn=lambda path: SimpleNamespace(st_mtime_ns=mtimes["value"]))
        loader = CountingLoader()
        cache.get_or_load("virtual.stl", loader)
        cache.get_or_load("virtual.stl", loader)
        mtimes["value"] = 2
        cache.get_or_load("virtual.stl", loader)
        assert loader.calls == 2
        assert cache.stats.hits == 1

    def test_single_entry(self):
        cache = ImportedMeshCache(stat_fn=lambda path: SimpleNamespace(st_mtime_ns=0))
        loader = CountingLoader()
        cache.get_or_load("a.stl", loader)
        cache.get_or_load("b.stl", loader)
        cache.get_or_load("a.stl", loader)
        assert loader.calls == 3

    def test_failure_counted_and_raised(self, torus_stl):
        cache = ImportedMeshCache()

        def broken(path):
            raise MeshFormatError("bad bytes")

        with pytest.raises(MeshFormatError):
            cache.get_or_load(torus_stl, broken)
        assert cache.stats.failures == 1
        assert cache.stats.misses == 1

    def test_missing_file(self, tmp_path):
        with pytest.raises(OSError):
            ImportedMeshCache().get_or_load(tmp_path / "gone.stl", CountingLoader())

    def test_clear(self, torus_stl):
        cache = ImportedMeshCache()
        loader = CountingLoader()
        cache.get_or_load(torus_stl, loader)
        cache.clear()
        cache.get_or_load(torus_stl, loader)
        assert loader.calls == 2


class TestPlacement:

    def test_band_centre_matches_target(self, torus_stl):
        mesh = ImportedMeshAdapter().build(KnobParameters(), imported(torus_stl))
        assert isinstance(mesh, Mesh)
        r = np.hypot(mesh.positions[:, 0].astype(np.float64), mesh.positions[:, 1])
        inner, outer = np.quantile(r, [0.22, 0.78])
        assert (inner + outer) * 0.5 == pytest.approx(220.0 * 1.055 + 220.0 * 0.115, rel=1e-4)

    def test_scale_multiplies_size(self, torus_stl):
        adapter = ImportedMeshAdapter()
        base = adapter.build(KnobParameters(), imported(torus_stl))
        doubled = adapter.build(KnobParameters(), imported(torus_stl, scale=2.0))
        assert np.abs(doubled.positions).max() == pytest.approx(2.0 * np.abs(base.positions).max(), rel=1e-4)

    def test_shading_attributes(self, torus_stl):
        mesh = ImportedMeshAdapter().build(KnobParameters(), imported(torus_stl))
        assert np.linalg.norm(mesh.normals, axis=1) == pytest.approx(1.0, abs=1e-4)
        assert np.linalg.norm(mesh.tangents[:, :3], axis=1) == pytest.approx(1.0, abs=1e-4)
        assert np.all(mesh.tangents[:, 3] == 1.0)
        assert mesh.uvs.min() >= 0.0
        assert mesh.uvs.max() <= 1.0
        assert mesh.reference_radius >= 220.0

    def test_elevation(self, torus_stl):
        adapter = ImportedMeshAdapter()
        flat = adapter.build(KnobParameters(), imported(torus_stl))
        raised = adapter.build(KnobParameters(), imported(torus_stl, elevation_ratio=0.5))
        shift = raised.positions[:, 2].mean() - flat.positions[:, 2].mean()
        assert shift == pytest.approx(30.0, abs=1e-3)

    @pytest.mark.parametrize("mirror", [
        {},
        {"mirror_x": True},
        {"mirror_y": True, "mirror_z": True},
        {"mirror_x": True, "mirror_y": True, "mirror_z": True},
    ])
    def test_mirrors_keep_outward_winding(self, torus_stl, mirror):
        mesh = ImportedMeshAdapter().build(KnobParameters(), imported(torus_stl, **mirror))
        assert signed_volume(mesh) > 0.0

    def test_inflate_grows_tube(self, torus_stl):
        adapter = ImportedMeshAdapter()
        base = adapter.build(KnobParameters(), imported(torus_stl))
        inflated = adapter.build(KnobParameters(), imported(torus_stl, inflate_ratio=0.02))
        assert signed_volume(inflated) > signed_volume(base)

    def test_degenerate_source(self):
        flat = ImportedMeshData(np.zeros((3, 3)), [[0, 1, 2]])
        assert place_imported_collar(flat, KnobParameters(), imported("x.stl")) is None


class TestImportedMeshAdapter:

    def test_extracts_ring_component(self, two_component_stl):
        mesh = ImportedMeshAdapter().build(KnobParameters(), imported(two_component_stl))
        assert mesh.vertex_count == 768

    def test_decodes_once_per_file(self, torus_stl):
        adapter = ImportedMeshAdapter()
        adapter.build(KnobParameters(), imported(torus_stl))
        adapter.build(KnobParameters(), imported(torus_stl, rotation_radians=0.5))
        assert adapter.cache.stats.misses == 1
        assert adapter.cache.stats.hits == 1

    def test_empty_path(self):
        assert ImportedMeshAdapter().build(KnobParameters(), imported("  ")) is None

    def test_missing_file(self, tmp_path, caplog):
        with caplog.at_level(logging.WARNING):
            assert ImportedMeshAdapter().build(KnobParameters(), imported(tmp_path / "nope.stl")) is None
        assert "not found" in caplog.text

    def test_corrupt_file(self, tmp_path, caplog):
        path = tmp_path / "broken.stl"
        path.write_bytes(b"\0" * 84 + b"garbage")
        adapter = ImportedMeshAdapter()
        with caplog.at_level(logging.WARNING):
            assert adapter.build(KnobParameters(), imported(path)) is None
        assert "Failed to import" in caplog.text
        assert adapter.cache.stats.failures == 1

    def test_unsupported_format(self, tmp_path):
        path = tmp_path / "collar.obj"
        path.write_text("v 0 0 0\n")
        assert ImportedMeshAdapter().build(KnobParameters(), imported(path)) is None

    def test_unexpected_error_logged(self, torus_stl, monkeypatch, caplog):
        def explode(*args):
            raise RuntimeError("boom")

        monkeypatch.setattr("collar_import.adapter.place_imported_collar", explode)
        with caplog.at_level(logging.ERROR):
            assert ImportedMeshAdapter().build(KnobParameters(), imported(torus_stl)) is None
        assert "Unexpected error" in caplog.text


class FakeAdapter:

    def __init__(self, result):
        self.result = result
        self.calls = []

    def build(self, knob, collar):
        self.calls.append((knob, collar))
        return self.result


class TestCollarForPreset:
    """Exactly one collar source per request."""

    def test_disabled(self):
        adapter = FakeAdapter("mesh")
        collar = CollarParameters(enabled=False, preset=CollarPreset.IMPORTED)
        assert build_collar_for_preset(KnobParameters(), collar, adapter) is None
        assert adapter.calls == []

    def test_none_preset(self):
        collar = CollarParameters(enabled=True, preset=CollarPreset.NONE)
        assert build_collar_for_preset(KnobParameters(), collar) is None

    def test_procedural(self, collar_params):
        mesh = build_collar_for_preset(KnobParameters(), collar_params)
        assert isinstance(mesh, Mesh)
        assert mesh.vertex_count == 320 * 26

    def test_imported_uses_adapter(self):
        adapter = FakeAdapter("mesh")
        collar = imported("collar.stl")
        assert build_collar_for_preset(KnobParameters(), collar, adapter) == "mesh"
        assert adapter.calls[0][1] is collar

    def test_imported_failure_yields_none(self, tmp_path):
        collar = imported(tmp_path / "missing.glb")
        assert build_collar_for_preset(KnobParameters(), collar, ImportedMeshAdapter()) is None

    def test_default_adapter_is_shared(self, monkeypatch):
        monkeypatch.setattr(collar_source, "_default_adapter", None)
        assert default_adapter() is default_adapter()
