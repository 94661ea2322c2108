from __future__ import annotations

import logging
import math
from typing import Optional

import numpy as np
import trimesh

from .laplacian import topological_laplacian
from .solver import smooth
from .tube import TubeMesh

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


def fit_mesh(
    vertices: np.ndarray,
    faces: np.ndarray,
    constrained: np.ndarray,
    factor: float = 0.1,
    *,
    verbose: bool = False,
    log: Optional[logging.Logger] = None,
) -> np.ndarray:
    """Relax a mesh toward a smooth surface while holding selected vertices softly.

    Solves the least-squares problem of :func:`pytubegen.solver.smooth` over the
    topological Laplacian of ``faces`` with ``smoothness = log(factor)``; every
    vertex in ``constrained`` is a weak constraint to its current position.
    x, y and z share one factorisation.

    Parameters
    ----------
    vertices : (n,3) float array
    faces : (m,3) int array
    constrained : (k,) int array
        Usually the cross-section ring vertices of a tube mesh.
    factor : float, default 0.1
        Must be positive and different from 1 (``log(1) = 0`` leaves the
        unconstrained vertices undetermined).

    Returns
    -------
    (n,3) array of fitted positions. Vertices not referenced by any face keep
    their input position.
    """
    if factor <= 0:
        raise ValueError("factor must be positive")
    V = np.asarray(vertices, dtype=float)
    F = np.asarray(faces, dtype=np.int64)
    idx = np.unique(np.asarray(constrained, dtype=np.int64).ravel())
    _log = log or logger
    if verbose:
        _log.info("Mesh fit: %d vertices, %d faces, %d constrained, factor=%.3g", V.shape[0], F.shape[0], idx.size, factor)
    L = topological_laplacian(F, V.shape[0])
    X = smooth(L, weak=(idx, V[idx]), smoothness=math.log(factor), verbose=verbose, log=_log)
    return np.where(np.isnan(X), V, X)


def _points_inward(mesh: trimesh.Trimesh, ref: int, eps: float = 1e-6) -> bool:
    """True when a ray leaving face ``ref`` along its normal crosses the surface an odd number of times."""
    d = np.asarray(mesh.face_normals[ref], dtype=float)
    if float(np.linalg.norm(d)) < 1e-12:
        return False
    origin = np.asarray(mesh.triangles_center[ref], dtype=float) + d * eps
    locations, _, index_tri = mesh.ray.intersects_location(origin[None, :], d[None, :], multiple_hits=True)
    if len(locations) == 0:
        return False
    t = (np.asarray(locations) - origin) @ d
    # hits on a shared edge are reported once per face
    ts = np.sort(t[(np.asarray(index_tri) != ref) & (t > eps)])
    crossings = int(ts.size and 1 + np.count_nonzero(np.diff(ts) > eps))
    return crossings % 2 == 1


def orient_faces(
    vertices: np.ndarray,
    faces: np.ndarray,
    *,
    verbose: bool = False,
    log: Optional[logging.Logger] = None,
) -> np.ndarray:
    """Make face winding consistent and outward facing.

    Winding is made consistent per edge-connected component with
    :func:`trimesh.repair.fix_normals`, which also turns closed components
    with negative volume inside out. Open components have no volume to test;
    a ray is cast from just above their largest face along its normal and the
    component is flipped when it crosses the surface an odd number of times.
    Edges with other than two faces are logged and not crossed.

    Returns a new (m,3) array.
    """
    _log = log or logger
    V = np.asarray(vertices, dtype=float)
    F = np.asarray(faces, dtype=np.int64)
    if F.shape[0] == 0:
        return F.copy()
    mesh = trimesh.Trimesh(vertices=V, faces=F.copy(), process=False)
    edges, counts = np.unique(mesh.edges_sorted, axis=0, return_counts=True)
    for (a, b), c in zip(edges[counts != 2], counts[counts != 2]):
        _log.error("Non-manifold edge %d-%d shared by %d faces", a, b, c)

    trimesh.repair.fix_normals(mesh, multibody=True)

    groups = trimesh.graph.connected_components(mesh.face_adjacency, nodes=np.arange(len(mesh.faces)))
    face_edges = mesh.edges.reshape((-1, 6))
    area = mesh.area_faces
    flip = np.zeros(len(mesh.faces), dtype=bool)
    for group in groups:
        tight, _ = trimesh.graph.is_watertight(face_edges[group].reshape((-1, 2)))
        if tight and len(group) >= 4:
            continue
        ref = int(group[np.argmax(area[group])])
        if _points_inward(mesh, ref):
            flip[group] = True
    out = mesh.faces.view(np.ndarray).copy()
    out[flip] = out[flip, ::-1]
    if verbose:
        flipped = int(np.count_nonzero(np.any(out != F, axis=1)))
        _log.info("Face orientation: %d components, %d faces flipped", len(groups), flipped)
    return out


def fit_tube(
    tube: TubeMesh,
    factor: float = 0.1,
    *,
    verbose: bool = False,
    log: Optional[logging.Logger] = None,
) -> TubeMesh:
    """Fit a generated tube with its chord rings as weak constraints, then orient its faces."""
    X = fit_mesh(tube.vertices, tube.faces, tube.chord_ring_indices(), factor, verbose=verbose, log=log)
    F = orient_faces(X, tube.faces, verbose=verbose, log=log)
    return tube.with_vertices(X, F)
