"""
Quality measures for generated meshes.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

import numpy as np
import trimesh
from shapely.geometry import Polygon
from shapely.ops import unary_union

from .laplacian import topological_laplacian

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


def laplacian_energy(vertices: np.ndarray, faces: np.ndarray) -> float:
    """Mean squared norm of the uniform Laplacian of the vertex positions.

    Zero for a mesh whose every vertex is the centroid of its neighbours;
    smoothing should lower it.
    """
    V = np.asarray(vertices, dtype=float)
    L = topological_laplacian(faces, V.shape[0])
    D = np.asarray(L @ V)
    used = np.diff(L.indptr) > 0
    if not np.any(used):
        return 0.0
    return float(np.mean(np.sum(D[used] ** 2, axis=1)))


def _as_shape(poly):
    if hasattr(poly, "area"):
        return poly.buffer(0)
    return Polygon(np.asarray(poly, dtype=float)[:, :2]).buffer(0)


def silhouette_iou(poly_a, poly_b) -> float:
    """Intersection over union of two closed 2D outlines (point arrays or shapely shapes).

    Outlines are repaired with ``buffer(0)`` before the overlay so slightly
    self-touching rings still produce an area.
    """
    A = _as_shape(poly_a)
    B = _as_shape(poly_b)
    union = A.union(B).area
    if union <= 0:
        return 0.0
    return float(A.intersection(B).area / union)


def mesh_silhouette(vertices: np.ndarray, faces: np.ndarray):
    """Union of the mesh triangles projected onto the z = 0 plane."""
    V = np.asarray(vertices, dtype=float)[:, :2]
    tris = [Polygon(V[f]) for f in np.asarray(faces, dtype=np.int64)]
    tris = [t for t in tris if t.area > 1e-12]
    return unary_union(tris)


def analyze_mesh(vertices: np.ndarray, faces: np.ndarray) -> Dict[str, Any]:
    """Diagnostic summary of a triangle mesh.

    Pure analysis; the input is not modified.

    Returns:
        Dictionary with face and vertex counts, watertightness, winding
        consistency, volume, Euler characteristic, genus, degenerate face
        count, connected component count and a list of issues found.
    """
    mesh = trimesh.Trimesh(vertices=np.asarray(vertices, dtype=float), faces=np.asarray(faces, dtype=np.int64), process=False)
    results: Dict[str, Any] = {
        "face_count": len(mesh.faces),
        "vertex_count": len(mesh.vertices),
        "bounds": mesh.bounds.tolist() if len(mesh.vertices) else None,
        "is_watertight": bool(mesh.is_watertight),
        "is_winding_consistent": bool(mesh.is_winding_consistent),
        "issues": [],
    }

    results["volume"] = float(mesh.volume)
    if results["is_watertight"] and results["volume"] < 0:
        results["issues"].append("Negative volume detected - face normals may be inverted")
    if not results["is_watertight"]:
        results["issues"].append("Mesh is not watertight")
    if not results["is_winding_consistent"]:
        results["issues"].append("Inconsistent face winding")

    results["euler_characteristic"] = int(mesh.euler_number)
    if results["is_watertight"]:
        # closed orientable surface: genus = (2 - euler) / 2 per component
        components = mesh.body_count
        results["genus"] = int((2 * components - mesh.euler_number) // 2)
    else:
        results["genus"] = None

    area = mesh.area_faces if len(mesh.faces) else np.empty(0)
    results["degenerate_faces"] = int(np.count_nonzero(area < 1e-12))
    if results["degenerate_faces"]:
        results["issues"].append(f"{results['degenerate_faces']} degenerate faces")
    if len(mesh.faces):
        groups = trimesh.graph.connected_components(mesh.face_adjacency, nodes=np.arange(len(mesh.faces)))
        results["component_count"] = len(groups)
    else:
        results["component_count"] = 0

    logger.debug("Mesh analysis: %s", results)
    return results
