"""
Surface offset fields for the revolved knob body.

Each function maps surface coordinates (angle/axial position on the side
wall, x/y on the front cap) to a displacement in world units. Everything is
written against numpy arrays so the builder evaluates a whole ring lattice in
one call.

Grip patterns and indicator shapes are closed enums; their per-kind math is
selected through the dispatch tables below rather than through subclasses.
"""
import logging
from typing import Callable, Dict, Tuple

import numpy as np
from shapely.geometry import LinearRing

from geometry_primitives import (
    TWO_PI,
    clamp,
    fract,
    lerp,
    smoothstep,
    value_noise_2d,
)
from knob_parameters import (
    GripParameters,
    GripType,
    IndicatorParameters,
    IndicatorProfile,
    IndicatorRelief,
    IndicatorShape,
)

logger = logging.getLogger(__name__)

# Indicator contour sampling.
STRAIGHT_SIDE_SAMPLES = 24
ROUND_SEGMENTS = 28
CAPSULE_ARC_SEGMENTS = 14


# ─── Body silhouette ─────────────────────────────────────────────────────────

def compute_body_radius(t, radius_start: float, radius_end: float, body_bulge: float):
    """Side-wall radius at parameter *t*: linear taper plus a bulge arch."""
    t = np.asarray(t, dtype=float)
    base = radius_start + (radius_end - radius_start) * t
    arch = 1.0 - (2.0 * t - 1.0) ** 2
    bulge_scale = radius_start * body_bulge * 0.22
    return np.maximum(1.0, base + bulge_scale * arch)


def compute_crown_offset(r_norm, crown_profile: float, radius: float, height: float):
    """Dome (positive) or dish (negative) axial offset of the front cap."""
    r_norm = np.asarray(r_norm, dtype=float)
    if abs(crown_profile) <= 1e-5:
        return np.zeros_like(r_norm)
    t = 1.0 - np.clip(r_norm, 0.0, 1.0)
    magnitude = abs(crown_profile)
    exponent = 1.6 + (1.0 - magnitude) * 1.2
    max_amplitude = min(radius, height) * 0.08
    return np.sign(crown_profile) * max_amplitude * magnitude * t ** exponent


# ─── Grip knurl ──────────────────────────────────────────────────────────────

def quantize_grip_density(grip_density: float, radial_segments: int) -> float:
    """Snap the knurl count to a divisor of the segment count.

    Keeps the pattern periodic across the angular seam of the revolve.
    """
    segments = max(1, radial_segments)
    target = int(clamp(round(grip_density), 1, segments))
    divisors = [d for d in range(1, segments + 1) if segments % d == 0]
    best = min(divisors, key=lambda d: abs(d - target))
    return float(max(1, best))


def _nearest_integer_distance(x):
    return np.abs(fract(x + 0.5) - 0.5)


def _ridge_mask(distance, width: float):
    return np.clip(1.0 - distance / max(width, 1e-4), 0.0, 1.0)


def _flutes(u, v, width):
    return _ridge_mask(_nearest_integer_distance(u), width)


def _diamond(u, v, width):
    m1 = _ridge_mask(_nearest_integer_distance(u + v), width)
    m2 = _ridge_mask(_nearest_integer_distance(u - v), width)
    return m1 * m2


def _square(u, v, width):
    m1 = _ridge_mask(_nearest_integer_distance(u), width)
    m2 = _ridge_mask(_nearest_integer_distance(v), width)
    return m1 * m2


def _hex(u, v, width):
    cos60 = 0.5
    sin60 = 0.8660254
    m1 = _ridge_mask(_nearest_integer_distance(u), width)
    m2 = _ridge_mask(_nearest_integer_distance(cos60 * u + sin60 * v), width)
    m3 = _ridge_mask(_nearest_integer_distance(cos60 * u - sin60 * v), width)
    return (m1 * m2 + m2 * m3 + m3 * m1) / 3.0


KNURL_PATTERNS: Dict[GripType, Callable] = {
    GripType.VERTICAL_FLUTES: _flutes,
    GripType.DIAMOND_KNURL: _diamond,
    GripType.SQUARE_KNURL: _square,
    GripType.HEX_KNURL: _hex,
}


def compute_knurl_pattern(grip_type: GripType, u, v, width: float):
    """Ridge mask in [0, 1] on the (u, v) knurl lattice."""
    pattern = KNURL_PATTERNS.get(grip_type)
    if pattern is None:
        return np.zeros(np.broadcast(np.asarray(u), np.asarray(v)).shape)
    return pattern(np.asarray(u, dtype=float), np.asarray(v, dtype=float), width)


def compute_grip_offset(
    grip: GripParameters,
    density: float,
    angle,
    z,
    side_start_z: float,
    side_end_z: float,
) -> np.ndarray:
    """Outward radial displacement of the side wall inside the grip band."""
    angle = np.asarray(angle, dtype=float)
    z = np.asarray(z, dtype=float)
    shape = np.broadcast(angle, z).shape
    if grip.type is GripType.NONE or grip.depth <= 1e-6:
        return np.zeros(shape)

    side_span = max(1e-4, side_end_z - side_start_z)
    z_norm = np.clip((z - side_start_z) / side_span, 0.0, 1.0)
    start = clamp(grip.start, 0.0, 1.0)
    end = clamp(start + clamp(grip.height, 0.05, 1.0), start + 0.001, 1.0)
    in_band = (z_norm >= start) & (z_norm <= end)

    local_z = (z_norm - start) / max(1e-4, end - start)
    u = (angle / TWO_PI) * max(1.0, density)
    v = local_z * max(0.2, grip.pitch)
    # Line width is decoupled from depth so wide grips don't balloon into lobes.
    line_width = clamp(0.02 + grip.width * 0.10, 0.015, 0.35)
    pattern = compute_knurl_pattern(grip.type, u, v, line_width)

    sharp_exponent = clamp(1.0 + (clamp(grip.sharpness, 0.5, 8.0) - 1.0) * 0.7, 0.45, 5.0)
    profile = np.clip(pattern, 0.0, 1.0) ** sharp_exponent
    band_fade = smoothstep(0.0, 0.06, local_z) * (1.0 - smoothstep(0.94, 1.0, local_z))
    depth_world = max(0.0, grip.depth) * side_span * 0.016
    depth_scale = 0.75 + min(1.5, grip.width) * 0.25
    offset = depth_world * depth_scale * profile * band_fade
    return np.broadcast_to(np.where(in_band, offset, 0.0), shape).copy()


# ─── Front cap ridges ────────────────────────────────────────────────────────

def compute_spiral_ridge_offset(
    x,
    y,
    radial_distance,
    top_radius: float,
    ridge_height: float,
    ridge_width: float,
    turns: float,
) -> np.ndarray:
    """Shallow machined ring grooves on the cap with a little noise jitter."""
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    radial_distance = np.asarray(radial_distance, dtype=float)
    shape = np.broadcast(x, y, radial_distance).shape
    if ridge_height <= 0.0 or top_radius <= 1e-6 or turns <= 1e-6:
        return np.zeros(shape)

    r_norm = np.clip(radial_distance / top_radius, 0.0, 1.0)
    theta = np.arctan2(y, x)
    theta = np.where(theta < 0.0, theta + TWO_PI, theta)
    theta_norm = theta / TWO_PI
    ring_count = max(1.0, turns)

    phase_noise = value_noise_2d(r_norm * 60.0 + 17.2, theta_norm * 40.0 + 9.7)
    phase = r_norm * ring_count + (phase_noise - 0.5) * 0.15
    abs_dist = np.abs((phase - np.round(phase)) / ring_count)

    micro_height = ridge_height * 0.075
    width_noise = value_noise_2d(r_norm * 80.0 + 2.3, theta_norm * 48.0 + 4.1)
    width_jitter = 1.0 + (width_noise - 0.5) * 0.08
    width_norm = np.maximum(1e-6, (ridge_width * 1.25 * width_jitter) / max(top_radius, 1e-4))
    half_width = width_norm * 0.5

    t = np.minimum(abs_dist / half_width, 1.0)
    v_profile = (1.0 - t) ** 4
    height_noise = value_noise_2d(r_norm * 96.0 + 13.9, theta_norm * 56.0 + 5.8)
    height_jitter = 1.0 + (height_noise - 0.5) * 0.04
    edge_t = np.clip((r_norm - 0.975) / 0.025, 0.0, 1.0)
    edge_fade = 1.0 - edge_t * edge_t * (3.0 - 2.0 * edge_t)

    offset = -micro_height * height_jitter * v_profile * edge_fade
    return np.broadcast_to(np.where(abs_dist < half_width, offset, 0.0), shape).copy()


# ─── Indicator ───────────────────────────────────────────────────────────────

_HALF_WIDTH_TAPER: Dict[IndicatorShape, Callable] = {
    IndicatorShape.TAPERED: lambda along: np.maximum(0.20, 1.0 - along * 0.80),
    IndicatorShape.NEEDLE: lambda along: np.maximum(0.06, 1.0 - along * 0.94),
    IndicatorShape.TRIANGLE: lambda along: np.maximum(0.02, 1.0 - along),
}

_PROFILE_MASKS: Dict[IndicatorProfile, Callable] = {
    IndicatorProfile.STRAIGHT: lambda e: np.ones_like(e),
    IndicatorProfile.ROUNDED: lambda e: 1.0 - e * e,
    IndicatorProfile.CONVEX: lambda e: np.sqrt(np.maximum(0.0, 1.0 - e * e)),
    IndicatorProfile.CONCAVE: lambda e: np.maximum(0.0, 1.0 - e) ** 2,
}


def indicator_span(indicator: IndicatorParameters) -> Tuple[float, float, float]:
    """(start, end, half_width) of the indicator along the cap's +Y radius."""
    start = clamp(indicator.position_ratio, 0.05, 0.90)
    end = clamp(start + indicator.length_ratio, start + 1e-4, 0.98)
    half_width = max(0.001, indicator.width_ratio * 0.5)
    return start, end, half_width


def _half_width_scale(shape: IndicatorShape, along):
    taper = _HALF_WIDTH_TAPER.get(shape)
    if taper is None:
        return np.ones_like(np.asarray(along, dtype=float))
    return taper(np.asarray(along, dtype=float))


def _dot_center(start: float, end: float, half_width: float) -> float:
    return end - min(half_width * 0.35, (end - start) * 0.25)


def compute_indicator_offset(x, y, top_radius: float, indicator: IndicatorParameters) -> np.ndarray:
    """Signed axial offset that embosses or engraves the indicator mark."""
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    shape_out = np.broadcast(x, y).shape
    if not indicator.enabled or indicator.thickness_ratio <= 1e-6 or top_radius <= 1e-6:
        return np.zeros(shape_out)

    px = x / top_radius
    py = y / top_radius
    start, end, half_width = indicator_span(indicator)
    along = (py - start) / max(1e-4, end - start)

    if indicator.shape is IndicatorShape.DOT:
        center_y = _dot_center(start, end, half_width)
        edge = np.hypot(px, py - center_y) / max(half_width, 1e-6)
        inside = np.ones(shape_out, dtype=bool)
    else:
        inside = (py >= start) & (py <= end)
        if indicator.shape is IndicatorShape.DIAMOND:
            edge = np.abs(px) / max(half_width, 1e-6) + np.abs(along * 2.0 - 1.0)
        else:
            local_half_width = half_width * _half_width_scale(indicator.shape, along)
            edge = np.abs(px) / np.maximum(local_half_width, 1e-6)
    inside = inside & (edge < 1.0)
    edge = np.clip(edge, 0.0, 1.0)

    if indicator.profile is IndicatorProfile.STRAIGHT or indicator.roundness <= 1e-4:
        # Straight profile reads as a hard machined edge: no feathering.
        edge_mask = np.ones_like(edge)
    else:
        feather = clamp(indicator.roundness, 0.0, 1.0) * 0.45
        edge_mask = 1.0 - smoothstep(1.0 - feather, 1.0, edge)

    if indicator.shape is IndicatorShape.CAPSULE:
        cap_mask = smoothstep(0.0, 0.22, np.minimum(along, 1.0 - along))
    else:
        cap_mask = np.ones_like(edge)

    profile_mask = _PROFILE_MASKS[indicator.profile](edge)
    sign = -1.0 if indicator.relief is IndicatorRelief.INSET else 1.0
    amplitude = indicator.thickness_ratio * top_radius
    offset = sign * amplitude * edge_mask * cap_mask * profile_mask
    return np.where(inside, offset, 0.0)


def _circle(center_y: float, radius: float, segments: int) -> np.ndarray:
    a = np.arange(segments) * (TWO_PI / segments)
    return np.column_stack([np.cos(a) * radius, center_y + np.sin(a) * radius])


def build_indicator_contour(indicator: IndicatorParameters) -> np.ndarray:
    """Closed 2D outline of the indicator in cap-radius units, shape (K, 2)."""
    start, end, half_width = indicator_span(indicator)
    shape = indicator.shape

    if shape is IndicatorShape.DOT:
        return _circle(_dot_center(start, end, half_width), half_width, ROUND_SEGMENTS)

    if shape is IndicatorShape.DIAMOND:
        center_y = (start + end) * 0.5
        return np.array([
            [0.0, start],
            [half_width, center_y],
            [0.0, end],
            [-half_width, center_y],
        ])

    if shape is IndicatorShape.CAPSULE:
        radius = half_width
        y0 = start + radius
        y1 = end - radius
        if y1 <= y0 + 1e-5:
            return _circle((start + end) * 0.5, radius, ROUND_SEGMENTS)
        steps = np.arange(1, CAPSULE_ARC_SEGMENTS + 1) / (CAPSULE_ARC_SEGMENTS + 1)
        top_arc = np.pi * steps
        bottom_arc = np.pi + np.pi * steps
        return np.vstack([
            [[radius, y0], [radius, y1]],
            np.column_stack([np.cos(top_arc) * radius, y1 + np.sin(top_arc) * radius]),
            [[-radius, y1], [-radius, y0]],
            np.column_stack([np.cos(bottom_arc) * radius, y0 + np.sin(bottom_arc) * radius]),
        ])

    t = np.arange(STRAIGHT_SIDE_SAMPLES + 1) / STRAIGHT_SIDE_SAMPLES
    ys = lerp(start, end, t)
    along = (ys - start) / max(1e-5, end - start)
    hw = half_width * _half_width_scale(shape, along)
    right = np.column_stack([hw, ys])
    left = np.column_stack([-hw, ys])[::-1]
    return np.vstack([right, left])


def ensure_counter_clockwise(points: np.ndarray) -> np.ndarray:
    """Return *points* ordered counter-clockwise (as seen from +Z)."""
    if len(points) < 3:
        return points
    if LinearRing(points).is_ccw:
        return points
    logger.debug("Reversing clockwise indicator contour (%d points)", len(points))
    return points[::-1].copy()
