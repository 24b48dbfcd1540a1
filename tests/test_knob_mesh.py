"""Tests for the revolved knob body builder."""
import numpy as np
import pytest

from knob_mesh import (
    build_knob_mesh,
    build_profile_curve,
    resolve_dimensions,
)
from knob_parameters import (
    GripParameters,
    GripType,
    IndicatorParameters,
    IndicatorProfile,
    IndicatorShape,
    KnobParameters,
)


def expected_vertex_count(params):
    segments = resolve_dimensions(params).radial_segments
    cap_rings = min(max(segments * 3, 36), 360)
    rings = len(build_profile_curve(params))
    return rings * segments + cap_rings * segments + 1 + segments + 1


def welded_edge_counts(mesh):
    """Share counts for every undirected edge after merging coincident vertices."""
    _, inverse = np.unique(np.round(mesh.positions, 3), axis=0, return_inverse=True)
    tris = inverse.reshape(-1)[mesh.triangles]
    edges = np.concatenate([tris[:, [0, 1]], tris[:, [1, 2]], tris[:, [2, 0]]])
    edges = np.sort(edges, axis=1)
    _, counts = np.unique(edges, axis=0, return_counts=True)
    return counts


class TestProfileCurve:

    def test_endpoints(self, knob_params):
        profile = build_profile_curve(knob_params)
        assert profile[0] == pytest.approx([220.0 * 0.97, -60.0])
        assert profile[-1] == pytest.approx([220.0 * 0.86, 60.0])

    def test_ring_count(self, knob_params, small_knob_params):
        assert len(build_profile_curve(knob_params)) == 143
        assert len(build_profile_curve(small_knob_params)) == 32

    def test_z_increases(self, knob_params):
        z = build_profile_curve(knob_params)[:, 1]
        assert np.all(np.diff(z) > 0.0)


class TestDimensions:

    def test_clamps(self):
        dims = resolve_dimensions(KnobParameters(
            radius=1.0, height=1.0, radial_segments=1000, bevel=1e6, top_radius_scale=5.0,
        ))
        assert dims.radial_segments == 180
        assert dims.radius == 20.0
        assert dims.height == 20.0
        assert dims.bevel == pytest.approx(9.0)
        assert dims.top_radius == pytest.approx(26.0)

    def test_minimum_segments(self):
        assert resolve_dimensions(KnobParameters(radial_segments=3)).radial_segments == 12


class TestKnobMesh:
    """Topology and shading attributes of the full revolved body."""

    def test_default_vertex_count(self, knob_params):
        mesh = build_knob_mesh(knob_params)
        assert mesh.vertex_count == 90722
        assert mesh.vertex_count == expected_vertex_count(knob_params)

    def test_reference_radius(self, knob_params):
        assert build_knob_mesh(knob_params).reference_radius == 220.0

    def test_unit_normals_and_tangents(self, small_knob_params):
        mesh = build_knob_mesh(small_knob_params)
        assert np.linalg.norm(mesh.normals, axis=1) == pytest.approx(1.0, abs=1e-4)
        assert np.linalg.norm(mesh.tangents[:, :3], axis=1) == pytest.approx(1.0, abs=1e-4)
        assert set(np.unique(mesh.tangents[:, 3]).tolist()) <= {-1.0, 1.0}

    def test_tangents_orthogonal_to_normals(self, small_knob_params):
        mesh = build_knob_mesh(small_knob_params)
        d = np.einsum("ij,ij->i", mesh.normals, mesh.tangents[:, :3])
        assert np.abs(d).max() < 1e-3

    def test_indices_in_range(self, small_knob_params):
        mesh = build_knob_mesh(small_knob_params)
        assert mesh.indices.size % 3 == 0
        assert mesh.indices.max() < mesh.vertex_count

    def test_closed_surface(self, small_knob_params):
        counts = welded_edge_counts(build_knob_mesh(small_knob_params))
        assert np.all(counts == 2)

    def test_faces_wind_outward(self, small_knob_params):
        mesh = build_knob_mesh(small_knob_params)
        p = mesh.positions[mesh.triangles]
        face = np.cross(p[:, 1] - p[:, 0], p[:, 2] - p[:, 0])
        vertex = mesh.normals[mesh.triangles].sum(axis=1)
        agree = np.einsum("ij,ij->i", face, vertex) > 0.0
        assert agree.mean() > 0.95

    def test_back_is_flat(self, small_knob_params):
        mesh = build_knob_mesh(small_knob_params)
        assert mesh.positions[:, 2].min() == pytest.approx(-60.0)

    def test_deterministic(self, small_knob_params):
        a = build_knob_mesh(small_knob_params)
        b = build_knob_mesh(small_knob_params)
        assert np.array_equal(a.positions, b.positions)
        assert np.array_equal(a.indices, b.indices)

    def test_extreme_parameters_stay_finite(self):
        params = KnobParameters(
            radius=1.0, height=1.0, radial_segments=1000, bevel=1e6, top_radius_scale=5.0,
            body_bulge=-0.35, indicator=IndicatorParameters(cad_walls_enabled=False),
        )
        mesh = build_knob_mesh(params)
        assert mesh.vertex_count == expected_vertex_count(params)
        assert np.all(np.isfinite(mesh.positions))
        assert np.all(np.isfinite(mesh.normals))
        assert mesh.reference_radius == 20.0


class TestGrip:

    def test_knurl_moves_side_wall_only_outward(self, small_knob_params):
        plain = build_knob_mesh(small_knob_params)
        knurled = build_knob_mesh(KnobParameters(
            radial_segments=24,
            grip=GripParameters(type=GripType.DIAMOND_KNURL, density=24),
            indicator=IndicatorParameters(cad_walls_enabled=False),
        ))
        assert knurled.vertex_count == plain.vertex_count
        side = len(build_profile_curve(small_knob_params)) * 24
        r_plain = np.hypot(plain.positions[:side, 0], plain.positions[:side, 1])
        r_knurl = np.hypot(knurled.positions[:side, 0], knurled.positions[:side, 1])
        assert np.all(r_knurl >= r_plain - 1e-3)
        assert np.any(r_knurl > r_plain + 1e-3)


class TestHardWalls:

    def test_walls_add_four_vertices_per_edge(self, small_knob_params):
        base = build_knob_mesh(small_knob_params)
        walled = build_knob_mesh(KnobParameters(radial_segments=24))
        contour_edges = 2 * 25
        assert walled.vertex_count - base.vertex_count == 4 * contour_edges
        assert walled.triangle_count - base.triangle_count == 2 * contour_edges

    def test_walls_rise_by_indicator_thickness(self):
        walled = build_knob_mesh(KnobParameters(radial_segments=24))
        walls = walled.positions[-4 * 50:].reshape(-1, 4, 3)
        height = walls[:, 3, 2] - walls[:, 0, 2]
        assert height == pytest.approx(0.012 * 220.0 * 0.86, rel=1e-4)

    def test_wall_normals_are_horizontal(self):
        walled = build_knob_mesh(KnobParameters(radial_segments=24))
        normals = walled.normals[-4 * 50:]
        assert np.abs(normals[:, 2]).max() < 1e-6

    @pytest.mark.parametrize("indicator", [
        IndicatorParameters(profile=IndicatorProfile.ROUNDED),
        IndicatorParameters(enabled=False),
        IndicatorParameters(thickness_ratio=0.0),
    ])
    def test_no_walls_when_not_applicable(self, indicator, small_knob_params):
        base = build_knob_mesh(small_knob_params)
        mesh = build_knob_mesh(KnobParameters(radial_segments=24, indicator=indicator))
        assert mesh.vertex_count == base.vertex_count

    def test_dot_contour_walls(self, small_knob_params):
        base = build_knob_mesh(small_knob_params)
        mesh = build_knob_mesh(KnobParameters(
            radial_segments=24, indicator=IndicatorParameters(shape=IndicatorShape.DOT),
        ))
        assert mesh.vertex_count - base.vertex_count == 4 * 28
