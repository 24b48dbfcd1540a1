"""Tests for the procedural collar tube and its head patch."""
import numpy as np
import pytest

from collar_head import build_head_patch, eval_piecewise, evaluate_head_local_point
from collar_mesh import (
    TOTAL_REPLACED_RINGS,
    build_collar_mesh,
    circular_frames,
    compute_ring_radii,
    replaced_rings,
    resolve_collar_layout,
    sweep_collar_body,
    tube_indices,
    weld_rings,
)
from knob_parameters import CollarParameters, KnobParameters


class TestHeadPatch:

    def test_piecewise_hits_knots(self):
        knots_u = np.array([0.0, 0.5, 1.0])
        knots_v = np.array([1.0, 3.0, 2.0])
        assert eval_piecewise(knots_u, knots_u, knots_v) == pytest.approx(knots_v)
        assert eval_piecewise(0.25, knots_u, knots_v) == pytest.approx(2.0)

    def test_point_broadcasts(self):
        u = np.linspace(0, 1, 5)[:, None]
        phi = np.linspace(0, 2 * np.pi, 7, endpoint=False)[None, :]
        assert evaluate_head_local_point(u, phi, 1.0, 0.24, 0.86).shape == (5, 7, 3)

    def test_patch_shapes(self):
        patch = build_head_patch(26, 8, 1.0, 0.24, 0.86)
        assert patch.ring_count == 8
        assert patch.cross_segments == 26
        assert patch.positions.shape == (8, 26, 3)
        assert patch.tangents.shape == (8, 26, 4)
        assert patch.uvs.shape == (8, 26, 2)

    def test_patch_basis_is_unit(self):
        patch = build_head_patch(26, 8, 1.0, 0.24, 0.86)
        assert np.linalg.norm(patch.normals, axis=-1) == pytest.approx(1.0)
        assert np.linalg.norm(patch.tangents[..., :3], axis=-1) == pytest.approx(1.0)
        assert set(np.unique(patch.tangents[..., 3]).tolist()) <= {-1.0, 1.0}

    def test_normals_face_away_from_head_axis(self):
        patch = build_head_patch(26, 8, 1.0, 0.24, 0.86)
        hint = patch.positions.copy()
        hint[..., 0] = 0.0
        assert np.all(np.einsum("...i,...i->...", patch.normals, hint) >= -1e-4)

    def test_extreme_inputs_are_clamped(self):
        wild = build_head_patch(16, 8, 50.0, 9.0, 0.1)
        capped = build_head_patch(16, 8, 2.0, 1.0, 0.45)
        assert np.allclose(wild.positions, capped.positions)


class TestLayout:

    def test_default_dimensions(self, collar_params):
        layout = resolve_collar_layout(KnobParameters(), collar_params)
        assert layout.path_segments == 320
        assert layout.cross_segments == 26
        assert layout.body_radius == pytest.approx(220.0 * 0.115)
        assert layout.centerline_radius == pytest.approx(220.0 * 1.055 + 220.0 * 0.115)
        assert layout.bite_index == 54

    def test_segment_clamps(self):
        layout = resolve_collar_layout(
            KnobParameters(), CollarParameters(enabled=True, path_segments=10, cross_segments=3),
        )
        assert layout.path_segments == 80
        assert layout.cross_segments == 8

    def test_body_thickness_limit(self):
        layout = resolve_collar_layout(
            KnobParameters(), CollarParameters(enabled=True, body_radius_ratio=5.0),
        )
        assert layout.body_radius / layout.centerline_radius == pytest.approx(0.48)

    def test_reference_radius(self, collar_params):
        layout = resolve_collar_layout(KnobParameters(), collar_params)
        expected = layout.centerline_radius + layout.body_radius * 1.2
        assert layout.reference_radius == pytest.approx(expected)
        assert build_collar_mesh(KnobParameters(), collar_params).reference_radius == pytest.approx(expected)

    def test_fixed_seam_offset(self):
        layout = resolve_collar_layout(KnobParameters(), CollarParameters(
            enabled=True, uv_seam_follow_bite=False, uv_seam_offset=0.25,
        ))
        assert layout.seam_offset == 0.25

    def test_window_wraps(self):
        layout = resolve_collar_layout(KnobParameters(), CollarParameters(
            enabled=True, bite_angle_radians=0.0,
        ))
        window = replaced_rings(layout)
        assert layout.bite_index == 0
        assert len(set(window.tolist())) == TOTAL_REPLACED_RINGS
        assert window.min() >= 0
        assert window.max() < layout.path_segments
        assert window[10] == 0


class TestBody:

    def test_frames_are_orthonormal(self):
        frames = circular_frames(64, 0.3)
        assert np.einsum("ij,ij->i", frames.tangents, frames.normals) == pytest.approx(0.0, abs=1e-12)
        assert np.cross(frames.normals, frames.tangents) == pytest.approx(frames.bitangents)

    def test_neck_is_thinner_than_body(self, collar_params):
        layout = resolve_collar_layout(KnobParameters(), collar_params)
        radii = compute_ring_radii(layout, collar_params)
        assert radii[layout.bite_index] < radii.max()
        assert radii.min() >= layout.body_radius * 0.15

    def test_sweep_shapes(self, collar_params):
        body = sweep_collar_body(KnobParameters(), collar_params)
        assert body.positions.shape == (320, 26, 3)
        assert body.tangents.shape == (320, 26, 4)
        assert np.linalg.norm(body.normals, axis=-1) == pytest.approx(1.0)

    def test_uv_seam_at_bite(self, collar_params):
        body = sweep_collar_body(KnobParameters(), collar_params)
        u = body.uvs[..., 0]
        assert u.min() >= 0.0
        assert u.max() < 1.0
        assert u[body.layout.bite_index].max() == pytest.approx(
            (54 / 320 - body.layout.seam_offset) % 1.0
        )


class TestCollarMesh:
    """Blended collar output, especially at the head window."""

    def test_counts(self, collar_params):
        mesh = build_collar_mesh(KnobParameters(), collar_params)
        assert mesh.vertex_count == 320 * 26
        assert mesh.triangle_count == 2 * 320 * 26
        assert mesh.uvs.shape == (320 * 26, 2)

    def test_tube_is_closed(self):
        tris = tube_indices(12, 8).reshape(-1, 3)
        edges = np.sort(np.concatenate([tris[:, [0, 1]], tris[:, [1, 2]], tris[:, [2, 0]]]), axis=1)
        _, counts = np.unique(edges, axis=0, return_counts=True)
        assert np.all(counts == 2)

    def test_unit_basis(self, collar_params):
        mesh = build_collar_mesh(KnobParameters(), collar_params)
        assert np.linalg.norm(mesh.normals, axis=1) == pytest.approx(1.0, abs=1e-4)
        assert np.linalg.norm(mesh.tangents[:, :3], axis=1) == pytest.approx(1.0, abs=1e-4)
        assert set(np.unique(mesh.tangents[:, 3]).tolist()) <= {-1.0, 1.0}
        assert np.all(np.isfinite(mesh.positions))

    def test_weld_rings_keep_body_basis(self, collar_params):
        knob = KnobParameters()
        body = sweep_collar_body(knob, collar_params)
        mesh = build_collar_mesh(knob, collar_params)
        normals = mesh.normals.reshape(320, 26, 3)
        tangents = mesh.tangents.reshape(320, 26, 4)
        for ring in weld_rings(body.layout):
            assert normals[ring] == pytest.approx(body.normals[ring], abs=1e-6)
            assert tangents[ring] == pytest.approx(body.tangents[ring], abs=1e-6)

    def test_rings_outside_window_match_body(self, collar_params):
        knob = KnobParameters()
        body = sweep_collar_body(knob, collar_params)
        mesh = build_collar_mesh(knob, collar_params)
        positions = mesh.positions.reshape(320, 26, 3)
        far = (body.layout.bite_index + 160) % 320
        assert positions[far] == pytest.approx(body.positions[far], abs=1e-3)

    def test_faces_wind_outward(self, collar_params):
        mesh = build_collar_mesh(KnobParameters(), collar_params)
        p = mesh.positions[mesh.triangles]
        face = np.cross(p[:, 1] - p[:, 0], p[:, 2] - p[:, 0])
        vertex = mesh.normals[mesh.triangles].sum(axis=1)
        agree = np.einsum("ij,ij->i", face, vertex) > 0.0
        assert agree.mean() > 0.9

    def test_ring_sits_around_knob(self, collar_params):
        mesh = build_collar_mesh(KnobParameters(), collar_params)
        radial = np.hypot(mesh.positions[:, 0], mesh.positions[:, 1])
        assert radial.min() > 150.0
        assert radial.max() < mesh.reference_radius * 1.5

    def test_deterministic(self, collar_params):
        a = build_collar_mesh(KnobParameters(), collar_params)
        b = build_collar_mesh(KnobParameters(), collar_params)
        assert np.array_equal(a.positions, b.positions)
        assert np.array_equal(a.normals, b.normals)
