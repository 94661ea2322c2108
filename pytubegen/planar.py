"""
Planar triangulated disk built from the user outline, and branch pruning.

The triangulation of a simple polygon without interior points has a tree as
its dual graph: faces with one neighbour are leaves ("ears"), faces with three
neighbours are branch points. Pruning walks that tree from the leaves and cuts
branches that are too short to deserve their own tube.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np

from .errors import OutlineError, TopologyError
from .geometry2d import close_outline, is_clockwise, reparameterize, triangulate

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


@dataclass(eq=False)
class PlanarMesh:
    """
    Triangulated disk in the outline plane.

    Attributes:
        vertices: (n,2) resampled outline points (centered when built by
            build_planar_mesh). Vertices dropped by pruning stay in the array.
        faces: (m,3) triangles.
        origin: translation that was removed from the raw outline.

    Derived (computed on construction):
        edges: (e,2) unique undirected edges, ``lo < hi``.
        edge_face_count: (e,) number of faces per edge (1 = boundary).
        edge_faces: (e,2) incident faces, -1 where absent.
        face_edges: (m,3) edge id of face edge ``(f[k], f[k+1])``.
        face_adjacency: per face, list of edge-adjacent faces.
    """

    vertices: np.ndarray
    faces: np.ndarray
    origin: np.ndarray = field(default_factory=lambda: np.zeros(2))

    edges: np.ndarray = field(init=False, repr=False)
    edge_face_count: np.ndarray = field(init=False, repr=False)
    edge_faces: np.ndarray = field(init=False, repr=False)
    face_edges: np.ndarray = field(init=False, repr=False)
    face_adjacency: List[List[int]] = field(init=False, repr=False)
    _edge_lookup: Dict[int, int] = field(init=False, repr=False)

    def __post_init__(self):
        self.vertices = np.asarray(self.vertices, dtype=float)[:, :2]
        self.faces = np.asarray(self.faces, dtype=np.int64).reshape(-1, 3)
        self.origin = np.asarray(self.origin, dtype=float)
        self._build_adjacency()

    def _build_adjacency(self) -> None:
        n = self.vertices.shape[0]
        F = self.faces
        m = F.shape[0]
        E = np.concatenate([F[:, [0, 1]], F[:, [1, 2]], F[:, [2, 0]]], axis=0)
        lo = E.min(axis=1)
        hi = E.max(axis=1)
        keys = lo * n + hi
        uniq, inverse = np.unique(keys, return_inverse=True)
        inverse = inverse.ravel()
        ne = uniq.shape[0]

        self.edges = np.column_stack([uniq // n, uniq % n]).astype(np.int64)
        self.edge_face_count = np.bincount(inverse, minlength=ne)
        if np.any(self.edge_face_count > 2):
            raise TopologyError("planar mesh has non-manifold edges")
        self.face_edges = inverse.reshape(3, m).T.copy()

        face_of = np.tile(np.arange(m), 3)
        order = np.argsort(inverse, kind="stable")
        e_sorted = inverse[order]
        f_sorted = face_of[order]
        starts = np.searchsorted(e_sorted, np.arange(ne))
        edge_faces = np.full((ne, 2), -1, dtype=np.int64)
        edge_faces[:, 0] = f_sorted[starts]
        two = self.edge_face_count == 2
        edge_faces[two, 1] = f_sorted[starts[two] + 1]
        self.edge_faces = edge_faces

        adjacency: List[List[int]] = [[] for _ in range(m)]
        for a, b in edge_faces[two]:
            adjacency[int(a)].append(int(b))
            adjacency[int(b)].append(int(a))
        self.face_adjacency = adjacency
        self._edge_lookup = {int(k): i for i, k in enumerate(uniq)}

    @property
    def n_vertices(self) -> int:
        return int(self.vertices.shape[0])

    @property
    def n_faces(self) -> int:
        return int(self.faces.shape[0])

    @property
    def is_boundary_edge(self) -> np.ndarray:
        return self.edge_face_count == 1

    @property
    def interior_edges(self) -> np.ndarray:
        return np.flatnonzero(self.edge_face_count == 2)

    @property
    def barycenters(self) -> np.ndarray:
        return self.vertices[self.faces].mean(axis=1)

    @property
    def boundary_vertices(self) -> np.ndarray:
        return np.unique(self.edges[self.is_boundary_edge].ravel())

    def edge_index(self, a: int, b: int) -> Optional[int]:
        lo, hi = (a, b) if a < b else (b, a)
        return self._edge_lookup.get(int(lo) * self.n_vertices + int(hi))

    def vertex_faces(self) -> List[List[int]]:
        out: List[List[int]] = [[] for _ in range(self.n_vertices)]
        for f, tri in enumerate(self.faces):
            for v in tri:
                out[int(v)].append(f)
        return out

    def with_faces(self, faces: np.ndarray) -> "PlanarMesh":
        """Rebuild from scratch on the same vertices."""
        return PlanarMesh(self.vertices.copy(), np.asarray(faces, dtype=np.int64), self.origin.copy())


def build_planar_mesh(outline, isodistance: float, *, center: bool = True, verbose: bool = False) -> PlanarMesh:
    """Triangulate a user outline.

    The outline is validated, made counter-clockwise, translated to its
    vertex centroid (when ``center``), resampled at ``2 * isodistance`` and
    triangulated with constrained Delaunay.

    Raises
    ------
    OutlineError
        Degenerate or self-intersecting outline, or isodistance too coarse.
    """
    if not isodistance > 0:
        raise ValueError("isodistance must be positive")
    P = close_outline(outline)
    if is_clockwise(P):
        P = P[::-1].copy()
    origin = P.mean(axis=0) if center else np.zeros(2)
    P = P - origin
    P = reparameterize(P, 2.0 * isodistance)
    faces = triangulate(P)
    mesh = PlanarMesh(P, faces, origin)
    if verbose:
        logger.info(
            "Planar mesh: %d outline samples, %d faces, %d interior edges",
            mesh.n_vertices, mesh.n_faces, mesh.interior_edges.shape[0],
        )
    return mesh


def _prune_pass(mesh: PlanarMesh, branch_min_length: float) -> np.ndarray:
    m = mesh.n_faces
    adj = mesh.face_adjacency
    bary = mesh.barycenters
    to_leaf = np.zeros(m, dtype=float)
    to_prune = np.zeros(m, dtype=bool)
    visited = np.zeros(m, dtype=bool)
    queue = deque(f for f in range(m) if len(adj[f]) == 1)

    while queue:
        i = queue.popleft()
        if to_prune[i]:
            continue
        visited[i] = True
        nbrs = adj[i]
        for c in nbrs:
            if visited[c] and not to_prune[c]:
                d = float(np.linalg.norm(bary[i] - bary[c]))
                to_leaf[i] = max(to_leaf[i], to_leaf[c] + d)

        if len(nbrs) > 2:
            pruned = False
            for c in nbrs:
                if visited[c] and not to_prune[c] and to_leaf[c] < branch_min_length:
                    to_prune[c] = True
                    stack: List[Tuple[int, int]] = [(c, i)]
                    while stack:
                        u, p = stack.pop()
                        for v in adj[u]:
                            if v != p and v != i and not to_prune[v]:
                                to_prune[v] = True
                                stack.append((v, u))
                    pruned = True
            if not pruned:
                continue
        for c in nbrs:
            if not visited[c]:
                queue.append(c)
    return ~to_prune


def prune_planar_mesh(
    mesh: PlanarMesh,
    branch_min_length: float = 5.0,
    *,
    max_passes: int = 100,
    verbose: bool = False,
) -> PlanarMesh:
    """Remove short side branches of the triangulation.

    Distances to the nearest leaf face are propagated inward along face
    barycenters. At a face with three neighbours, every already reached branch
    whose distance-to-leaf is below ``branch_min_length`` is removed. Passes
    repeat until no face changes, so pruning an already pruned mesh with the
    same threshold is a no-op. The mesh is rebuilt from the surviving faces.
    """
    if branch_min_length < 0:
        raise ValueError("branch_min_length must be non-negative")
    current = mesh
    for k in range(max_passes):
        keep = _prune_pass(current, branch_min_length)
        removed = int(np.count_nonzero(~keep))
        if removed == 0:
            break
        if verbose:
            logger.info("Prune pass %d: removed %d of %d faces", k + 1, removed, current.n_faces)
        current = current.with_faces(current.faces[keep])
    else:
        logger.warning("Pruning did not settle after %d passes", max_passes)
    if current.n_faces == 0:
        raise OutlineError("pruning removed every face")
    return current
