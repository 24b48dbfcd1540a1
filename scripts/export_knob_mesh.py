#!/usr/bin/env python3
"""
Build a knob (and optional collar) mesh and write it to disk for inspection.

Usage:
    python scripts/export_knob_mesh.py --output out/
    python scripts/export_knob_mesh.py --grip diamond_knurl --indicator-shape capsule --format glb
    python scripts/export_knob_mesh.py --collar imported --collar-mesh snake.stl --output out/ -v
"""
import sys
import os
import json
import argparse
import logging
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from collar_source import build_collar_for_preset
from knob_mesh import build_knob_mesh
from knob_parameters import (
    CollarParameters,
    CollarPreset,
    GripParameters,
    GripType,
    IndicatorParameters,
    IndicatorShape,
    KnobParameters,
)


def main():
    parser = argparse.ArgumentParser(
        description="Export knob and collar meshes via trimesh.",
    )
    parser.add_argument(
        "--output", default="knob_export",
        help="Output directory (default: ./knob_export)",
    )
    parser.add_argument(
        "--format", default="stl", choices=["stl", "glb", "obj", "ply"],
        help="Mesh file format (default: stl)",
    )
    parser.add_argument("--radius", type=float, default=220.0, help="Knob radius (default: 220)")
    parser.add_argument("--height", type=float, default=120.0, help="Knob height (default: 120)")
    parser.add_argument(
        "--segments", type=int, default=180,
        help="Radial segments, clamped to 12..180 (default: 180)",
    )
    parser.add_argument(
        "--grip", default=GripType.NONE.value,
        choices=[g.value for g in GripType],
        help="Side-wall knurl pattern (default: none)",
    )
    parser.add_argument(
        "--indicator-shape", default=IndicatorShape.BAR.value,
        choices=[s.value for s in IndicatorShape],
        help="Indicator mark shape (default: bar)",
    )
    parser.add_argument(
        "--collar", default=CollarPreset.NONE.value,
        choices=[p.value for p in CollarPreset],
        help="Collar source (default: none)",
    )
    parser.add_argument(
        "--collar-mesh", default="",
        help="STL/GLB path for --collar imported",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args()

    # Logging
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.collar == CollarPreset.IMPORTED.value and not args.collar_mesh:
        parser.error("--collar imported requires --collar-mesh")

    output_dir = os.path.abspath(args.output)
    os.makedirs(output_dir, exist_ok=True)

    knob = KnobParameters(
        radius=args.radius,
        height=args.height,
        radial_segments=args.segments,
        grip=GripParameters(type=GripType(args.grip)),
        indicator=IndicatorParameters(shape=IndicatorShape(args.indicator_shape)),
    ).clamped()
    collar = CollarParameters(
        enabled=args.collar != CollarPreset.NONE.value,
        preset=CollarPreset(args.collar),
        mesh_path=args.collar_mesh,
    ).clamped()

    summary = {}
    print(f"Building knob (radius {knob.radius:.0f}, height {knob.height:.0f}) ...")
    knob_mesh = build_knob_mesh(knob)
    knob_path = os.path.join(output_dir, f"knob.{args.format}")
    knob_mesh.to_trimesh().export(knob_path)
    summary["knob"] = {
        "path": knob_path,
        "vertices": knob_mesh.vertex_count,
        "triangles": knob_mesh.triangle_count,
        "reference_radius": knob_mesh.reference_radius,
    }
    print(f"  {knob_mesh.vertex_count} vertices, {knob_mesh.triangle_count} triangles -> {knob_path}")

    collar_mesh = build_collar_for_preset(knob, collar)
    if collar_mesh is not None:
        collar_path = os.path.join(output_dir, f"collar.{args.format}")
        collar_mesh.to_trimesh().export(collar_path)
        summary["collar"] = {
            "path": collar_path,
            "preset": collar.preset.value,
            "vertices": collar_mesh.vertex_count,
            "triangles": collar_mesh.triangle_count,
            "reference_radius": collar_mesh.reference_radius,
        }
        print(f"  collar: {collar_mesh.vertex_count} vertices -> {collar_path}")
    elif collar.enabled:
        print("  collar: no mesh produced (see log)")

    summary_path = os.path.join(output_dir, "summary.json")
    with open(summary_path, "w") as f:
        json.dump(summary, f, indent=2)
    print(f"\nSummary saved to {summary_path}")


if __name__ == "__main__":
    main()
