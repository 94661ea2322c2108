#!/usr/bin/env python3
"""
Demo script for pytubegen: inflate a 2D outline into a rigged tube mesh,
visualize it with the skeleton overlaid, and export the mesh and rig.

Usage:
  python scripts/demo_tubegen.py [--outline PATH] [--shape star|hexagon|bar]
                                 [--isodistance 10] [--outdir PATH]
                                 [--backend auto|plotly|matplotlib]

--outline takes a text file of "x y" rows (one outline point per row).
Without it a built-in shape is used.
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

import numpy as np

from pytubegen import GenerationConfig, dumps, generate
from pytubegen.errors import TubeGenError
from pytubegen.metrics import analyze_mesh, mesh_silhouette, silhouette_iou
from pytubegen.viz import dominant_bone, visualize_rig_3d


def builtin_shape(name: str) -> np.ndarray:
    if name == "hexagon":
        a = np.deg2rad(60.0 * np.arange(6))
        return np.column_stack([50.0 * np.cos(a), 50.0 * np.sin(a)])
    if name == "bar":
        return np.array([[0.0, 0.0], [150.0, 0.0], [150.0, 30.0], [0.0, 30.0]])
    # five-pointed star
    a = np.deg2rad(90.0 + 36.0 * np.arange(10))
    r = np.where(np.arange(10) % 2 == 0, 100.0, 35.0)
    return np.column_stack([r * np.cos(a), r * np.sin(a)])


def ensure_outdir(path: str) -> Path:
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    return p


def main():
    ap = argparse.ArgumentParser(description="pytubegen demo: outline -> tube mesh + skeleton + skin weights")
    ap.add_argument("--outline", type=str, default=None, help="Text file of x y rows. If omitted, use --shape")
    ap.add_argument("--shape", type=str, default="star", choices=["star", "hexagon", "bar"], help="Built-in outline")
    ap.add_argument("--isodistance", type=float, default=10.0, help="Sampling distance along the outline and around rings")
    ap.add_argument("--remesh", type=int, default=6, help="Isometric remeshing passes (0 keeps the raw tube)")
    ap.add_argument("--no-fit", action="store_true", help="Skip the least-squares mesh fit")
    ap.add_argument("--timeout", type=float, default=None, help="Wall-clock budget in seconds")
    ap.add_argument("--outdir", type=str, default="outputs/demo", help="Directory to write outputs")
    ap.add_argument(
        "--backend",
        type=str,
        default="auto",
        choices=["auto", "plotly", "matplotlib", "none"],
        help="Visualization backend",
    )
    args = ap.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(name)s: %(message)s")

    if args.outline:
        outline = np.loadtxt(args.outline, dtype=float, ndmin=2)[:, :2]
        label = Path(args.outline).stem
    else:
        outline = builtin_shape(args.shape)
        label = args.shape
    print(f"Outline '{label}': {outline.shape[0]} points")

    outdir = ensure_outdir(args.outdir)

    cfg = GenerationConfig(
        isodistance=args.isodistance,
        remesh_iterations=args.remesh,
        fit=not args.no_fit,
        timeout=args.timeout,
    )
    try:
        rig = generate(outline, cfg, verbose=True)
    except TubeGenError as e:
        print(f"Generation failed: {e}")
        sys.exit(1)

    print(f"Mesh: {rig.vertices.shape[0]} vertices, {rig.faces.shape[0]} faces")
    print(f"Skeleton: {rig.joints.shape[0]} joints, {rig.bones.shape[0]} bones")
    for d in rig.diagnostics:
        print(f"Skipped {d.kind} {d.index}: {d.reason}")

    report = analyze_mesh(rig.vertices, rig.faces)
    print(f"Watertight: {report['is_watertight']}, genus: {report['genus']}, issues: {report['issues']}")
    centred = np.asarray(outline, dtype=float) - rig.planar.origin
    iou = silhouette_iou(mesh_silhouette(rig.vertices, rig.faces), centred)
    print(f"Silhouette IoU against the outline: {iou:.3f}")

    out_json = outdir / f"{label}_rig.json"
    out_json.write_text(dumps(rig, indent=1))
    print(f"Wrote rig: {out_json}")

    out_obj = outdir / f"{label}_mesh.obj"
    try:
        rig.to_trimesh().export(str(out_obj))
        print(f"Wrote mesh: {out_obj}")
    except Exception as e:
        print(f"Failed to write OBJ: {e}")

    if args.backend == "none":
        return
    values = dominant_bone(rig.skin.indices, rig.skin.weights)
    fig = visualize_rig_3d(
        rig.vertices, rig.faces, rig.joints, rig.bones,
        vertex_values=values, title=f"Rig: {label}", backend=args.backend,
    )
    if fig is None:
        return
    if fig.__class__.__module__.startswith("plotly"):
        out_html = outdir / f"{label}_plotly.html"
        try:
            fig.write_html(str(out_html))
            print(f"Wrote visualization: {out_html}")
        except Exception as e:
            print(f"Failed to write plotly HTML: {e}")
    else:
        out_png = outdir / f"{label}_matplotlib.png"
        try:
            fig.savefig(str(out_png), dpi=150)
            print(f"Wrote visualization: {out_png}")
        except Exception as e:
            print(f"Failed to write matplotlib PNG: {e}")


if __name__ == "__main__":
    main()
