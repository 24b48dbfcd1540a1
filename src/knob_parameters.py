"""
Parameter snapshots read by the mesh builders.

The scene graph owns the live values; builders receive these dataclasses as
read-only snapshots. Ranges mirror the editor's clamps, and ``clamped()``
applies them for callers that assemble parameters by hand.
"""
import math
from dataclasses import dataclass, field, replace
from enum import Enum


class GripType(Enum):
    """Knurl pattern cut into the knob's side wall."""
    NONE = "none"
    VERTICAL_FLUTES = "vertical_flutes"
    DIAMOND_KNURL = "diamond_knurl"
    SQUARE_KNURL = "square_knurl"
    HEX_KNURL = "hex_knurl"


class IndicatorShape(Enum):
    BAR = "bar"
    TAPERED = "tapered"
    CAPSULE = "capsule"
    NEEDLE = "needle"
    TRIANGLE = "triangle"
    DIAMOND = "diamond"
    DOT = "dot"


class IndicatorRelief(Enum):
    INSET = "inset"
    EXTRUDE = "extrude"


class IndicatorProfile(Enum):
    STRAIGHT = "straight"
    ROUNDED = "rounded"
    CONVEX = "convex"
    CONCAVE = "concave"


class CollarPreset(Enum):
    """Which collar source the renderer should draw this frame."""
    NONE = "none"
    PROCEDURAL = "procedural"
    IMPORTED = "imported"


def _clamp(value: float, lo: float, hi: float) -> float:
    return min(max(value, lo), hi)


@dataclass(frozen=True)
class GripParameters:
    """Knurl band on the side wall (start/height are fractions of the side)."""
    type: GripType = GripType.NONE
    start: float = 0.15
    height: float = 0.55
    density: float = 60.0
    pitch: float = 6.0
    depth: float = 1.2
    width: float = 1.2
    sharpness: float = 1.0

    def clamped(self) -> "GripParameters":
        return replace(
            self,
            start=_clamp(self.start, 0.0, 1.0),
            height=_clamp(self.height, 0.05, 1.0),
            density=_clamp(self.density, 4.0, 320.0),
            pitch=_clamp(self.pitch, 0.2, 24.0),
            depth=_clamp(self.depth, 0.0, 20.0),
            width=_clamp(self.width, 0.05, 3.0),
            sharpness=_clamp(self.sharpness, 0.5, 8.0),
        )


@dataclass(frozen=True)
class IndicatorParameters:
    """Pointer mark on the front cap, in cap-radius-relative units."""
    enabled: bool = True
    shape: IndicatorShape = IndicatorShape.BAR
    relief: IndicatorRelief = IndicatorRelief.EXTRUDE
    profile: IndicatorProfile = IndicatorProfile.STRAIGHT
    width_ratio: float = 0.06
    length_ratio: float = 0.28
    position_ratio: float = 0.46
    thickness_ratio: float = 0.012
    roundness: float = 0.0
    cad_walls_enabled: bool = True

    def clamped(self) -> "IndicatorParameters":
        return replace(
            self,
            width_ratio=_clamp(self.width_ratio, 0.005, 0.35),
            length_ratio=_clamp(self.length_ratio, 0.05, 0.80),
            position_ratio=_clamp(self.position_ratio, 0.05, 0.90),
            thickness_ratio=_clamp(self.thickness_ratio, 0.0, 0.08),
            roundness=_clamp(self.roundness, 0.0, 1.0),
        )


@dataclass(frozen=True)
class SpiralRidgeParameters:
    """Fine concentric machining ridges on the front cap."""
    height: float = 19.89
    width: float = 18.92
    turns: float = 150.0

    def clamped(self) -> "SpiralRidgeParameters":
        return replace(
            self,
            height=_clamp(self.height, 0.0, 24.0),
            width=_clamp(self.width, 0.4, 30.0),
            turns=_clamp(self.turns, 1.0, 600.0),
        )


@dataclass(frozen=True)
class KnobParameters:
    """Revolved knob body description (world units)."""
    radius: float = 220.0
    height: float = 120.0
    bevel: float = 18.0
    top_radius_scale: float = 0.86
    radial_segments: int = 180
    crown_profile: float = 0.0
    bevel_curve: float = 1.0
    body_taper: float = 0.0
    body_bulge: float = 0.0
    grip: GripParameters = field(default_factory=GripParameters)
    indicator: IndicatorParameters = field(default_factory=IndicatorParameters)
    spiral: SpiralRidgeParameters = field(default_factory=SpiralRidgeParameters)

    def clamped(self) -> "KnobParameters":
        return replace(
            self,
            crown_profile=_clamp(self.crown_profile, -1.0, 1.0),
            bevel_curve=_clamp(self.bevel_curve, 0.4, 3.0),
            body_taper=_clamp(self.body_taper, -0.35, 0.35),
            body_bulge=_clamp(self.body_bulge, -0.35, 0.35),
            grip=self.grip.clamped(),
            indicator=self.indicator.clamped(),
            spiral=self.spiral.clamped(),
        )


@dataclass(frozen=True)
class CollarParameters:
    """Collar ring around the knob.

    Ratios are relative to the knob radius (or half height for elevation).
    The ``mesh_path`` .. ``head_thickness_scale`` block only applies to the
    imported preset.
    """
    enabled: bool = False
    preset: CollarPreset = CollarPreset.PROCEDURAL
    inner_radius_ratio: float = 1.03
    gap_to_knob_ratio: float = 0.025
    elevation_ratio: float = 0.0
    overall_rotation_radians: float = 0.0
    bite_angle_radians: float = math.pi * 0.34
    body_radius_ratio: float = 0.115
    body_ellipse_y_scale: float = 0.86
    neck_taper: float = 0.22
    tail_taper: float = 0.34
    mass_bias: float = 0.18
    tail_underlap: float = 0.22
    head_scale: float = 1.0
    jaw_bulge: float = 0.24
    path_segments: int = 320
    cross_segments: int = 26
    uv_seam_offset: float = 0.0
    uv_seam_follow_bite: bool = True

    mesh_path: str = ""
    scale: float = 1.0
    rotation_radians: float = 0.0
    mirror_x: bool = False
    mirror_y: bool = False
    mirror_z: bool = False
    offset_x_ratio: float = 0.0
    offset_y_ratio: float = 0.0
    inflate_ratio: float = 0.0
    head_angle_offset_radians: float = 0.0
    body_length_scale: float = 1.0
    body_thickness_scale: float = 1.0
    head_length_scale: float = 1.0
    head_thickness_scale: float = 1.0

    def clamped(self) -> "CollarParameters":
        return replace(
            self,
            inner_radius_ratio=_clamp(self.inner_radius_ratio, 0.65, 1.90),
            gap_to_knob_ratio=_clamp(self.gap_to_knob_ratio, 0.0, 0.40),
            elevation_ratio=_clamp(self.elevation_ratio, -1.5, 1.5),
            body_radius_ratio=_clamp(self.body_radius_ratio, 0.03, 0.35),
            body_ellipse_y_scale=_clamp(self.body_ellipse_y_scale, 0.45, 1.35),
            neck_taper=_clamp(self.neck_taper, 0.0, 0.95),
            tail_taper=_clamp(self.tail_taper, 0.0, 0.95),
            mass_bias=_clamp(self.mass_bias, -1.0, 1.0),
            tail_underlap=_clamp(self.tail_underlap, 0.0, 1.0),
            head_scale=_clamp(self.head_scale, 0.40, 2.20),
            jaw_bulge=_clamp(self.jaw_bulge, 0.0, 1.0),
            path_segments=int(_clamp(self.path_segments, 64, 2048)),
            cross_segments=int(_clamp(self.cross_segments, 8, 256)),
            uv_seam_offset=_clamp(self.uv_seam_offset, 0.0, 1.0),
            mesh_path=self.mesh_path.strip(),
            scale=_clamp(self.scale, 0.05, 8.0),
            offset_x_ratio=_clamp(self.offset_x_ratio, -2.0, 2.0),
            offset_y_ratio=_clamp(self.offset_y_ratio, -2.0, 2.0),
            inflate_ratio=_clamp(self.inflate_ratio, -0.35, 0.35),
            body_length_scale=_clamp(self.body_length_scale, 0.6, 2.4),
            body_thickness_scale=_clamp(self.body_thickness_scale, 0.5, 2.5),
            head_length_scale=_clamp(self.head_length_scale, 0.5, 2.5),
            head_thickness_scale=_clamp(self.head_thickness_scale, 0.5, 2.8),
        )
