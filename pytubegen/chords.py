"""
Chord graph: the dual structure over interior edges of the planar mesh.

Every interior edge of the triangulated outline is a *chord*, a cross-section
of the future tube with an axis point (its midpoint), a direction and a
length. Two chords are linked when they bound the same triangle. A triangle
with one chord closes a tube end (cap); a triangle whose three edges are
chords joins three tubes (junction).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Tuple

import networkx as nx
import numpy as np
import scipy.sparse as sp

from .errors import TopologyError
from .planar import PlanarMesh

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


@dataclass(eq=False)
class ChordGraph:
    """
    Attributes:
        axis: (c,3) chord midpoints, z = 0.
        directions: (c,3) unit chord directions, z = 0. Sign carries no meaning.
        lengths: (c,) chord lengths (tube diameters).
        endpoints: (c,2) planar vertex ids of each chord, ``lo < hi``.
        graph: networkx.Graph over chord ids; an edge per triangle with two chords.
        caps: list of (chord, free_vertex) for triangles with one chord.
        junctions: list of chord triples for triangles with three chords.
        index: ``(lo, hi) -> chord`` lookup.
        outline: (n,2) planar vertices the chords were built from.
    """

    axis: np.ndarray
    directions: np.ndarray
    lengths: np.ndarray
    endpoints: np.ndarray
    graph: nx.Graph
    caps: List[Tuple[int, int]] = field(default_factory=list)
    junctions: List[Tuple[int, int, int]] = field(default_factory=list)
    index: Dict[Tuple[int, int], int] = field(default_factory=dict)
    outline: Optional[np.ndarray] = None

    @property
    def n_chords(self) -> int:
        return int(self.axis.shape[0])

    def degree(self, i: int) -> int:
        return int(self.graph.degree(i))

    def chord(self, a: int, b: int) -> Optional[int]:
        return self.index.get((min(a, b), max(a, b)))

    def free_vertex(self, cap: int) -> np.ndarray:
        """3D position of the outline vertex a cap shrinks toward."""
        _, o = self.caps[cap]
        p = self.outline[o]
        return np.array([p[0], p[1], 0.0])

    def summary(self) -> Dict[str, int]:
        return {
            "chords": self.n_chords,
            "links": self.graph.number_of_edges(),
            "caps": len(self.caps),
            "junctions": len(self.junctions),
        }


def build_chord_graph(mesh: PlanarMesh, *, verbose: bool = False) -> ChordGraph:
    """Build chords and their links from a planar mesh.

    Raises
    ------
    TopologyError
        If the mesh has no interior edge, or a triangle touches no chord.
    """
    interior = mesh.interior_edges
    if interior.shape[0] == 0:
        raise TopologyError("planar mesh has no interior edges; nothing to build a tube from")

    chord_of_edge = np.full(mesh.edges.shape[0], -1, dtype=np.int64)
    chord_of_edge[interior] = np.arange(interior.shape[0])
    endpoints = mesh.edges[interior]
    P = mesh.vertices
    p0 = P[endpoints[:, 0]]
    p1 = P[endpoints[:, 1]]
    delta = p1 - p0
    lengths = np.linalg.norm(delta, axis=1)
    mid = 0.5 * (p0 + p1)
    c = interior.shape[0]
    axis = np.column_stack([mid, np.zeros(c)])
    directions = np.column_stack([delta / np.maximum(lengths, 1e-12)[:, None], np.zeros(c)])
    index = {(int(a), int(b)): k for k, (a, b) in enumerate(endpoints)}

    G = nx.Graph()
    G.add_nodes_from(range(c))
    caps: List[Tuple[int, int]] = []
    junctions: List[Tuple[int, int, int]] = []
    for f, tri in enumerate(mesh.faces):
        ids = [int(chord_of_edge[e]) for e in mesh.face_edges[f]]
        present = [k for k in range(3) if ids[k] >= 0]
        if len(present) == 2:
            G.add_edge(ids[present[0]], ids[present[1]])
        elif len(present) == 1:
            k = present[0]
            # face edge k is (tri[k], tri[k+1]); the free corner is tri[k+2]
            caps.append((ids[k], int(tri[(k + 2) % 3])))
        elif len(present) == 3:
            junctions.append((ids[0], ids[1], ids[2]))
        else:
            raise TopologyError(f"triangle {f} has no chord edge; the planar mesh is malformed")

    chords = ChordGraph(
        axis=axis,
        directions=directions,
        lengths=lengths,
        endpoints=endpoints.copy(),
        graph=G,
        caps=caps,
        junctions=junctions,
        index=index,
        outline=P.copy(),
    )
    if verbose:
        logger.info("Chord graph: %s", chords.summary())
    return chords


def encode_directions(directions: np.ndarray) -> np.ndarray:
    """Double-angle map ``(dx^2 - dy^2, 2 dx dy)``: ``d`` and ``-d`` coincide."""
    dx, dy = directions[:, 0], directions[:, 1]
    return np.column_stack([dx * dx - dy * dy, 2.0 * dx * dy])


def decode_directions(encoded: np.ndarray) -> np.ndarray:
    """Half-angle inverse of :func:`encode_directions`.

    ``nx = sqrt((1 + ex)/2)``, ``ny = sqrt((1 - ex)/2)`` and ``ny`` is negated
    when ``nx * ny * ey < 0``. The result always has ``nx >= 0``.
    """
    ex, ey = encoded[:, 0], encoded[:, 1]
    nx_ = np.sqrt(np.clip((1.0 + ex) * 0.5, 0.0, 1.0))
    ny_ = np.sqrt(np.clip((1.0 - ex) * 0.5, 0.0, 1.0))
    flip = nx_ * ny_ * ey < 0
    ny_ = np.where(flip, -ny_, ny_)
    return np.column_stack([nx_, ny_, np.zeros(encoded.shape[0])])


def _normalize_rows(X: np.ndarray, fallback: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(X, axis=1)
    ok = norms > 1e-12
    out = fallback.copy()
    out[ok] = X[ok] / norms[ok, None]
    return out


def laplacian_relax(values: np.ndarray, adjacency: sp.csr_matrix, alpha: float) -> np.ndarray:
    """One explicit relaxation step ``q += alpha * mean(q_nbr - q)``.

    Nodes with fewer than two neighbours are left in place.
    """
    deg = np.asarray(adjacency.sum(axis=1)).ravel()
    movable = deg >= 2
    lap = np.zeros_like(values)
    if np.any(movable):
        avg = (adjacency @ values)[movable] / deg[movable, None]
        lap[movable] = avg - values[movable]
    return values + alpha * lap


def smooth_chords(
    chords: ChordGraph,
    iterations: int = 50,
    alpha: float = 0.5,
    *,
    verbose: bool = False,
) -> ChordGraph:
    """Relax chord axes and directions along the chord graph.

    Returns a new ChordGraph; lengths, topology, caps and junctions are kept.
    Chords with fewer than two links (cap and junction chords) do not move, so
    junction corners stay where the triangulation put them.
    """
    if iterations < 0:
        raise ValueError("iterations must be non-negative")
    if not (0.0 < alpha <= 1.0):
        raise ValueError("alpha must lie in (0, 1]")
    c = chords.n_chords
    A = nx.to_scipy_sparse_array(chords.graph, nodelist=range(c), format="csr", dtype=float)
    A = sp.csr_matrix(A)

    enc = encode_directions(chords.directions)
    enc = _normalize_rows(enc, np.tile([1.0, 0.0], (c, 1)))
    axis2 = chords.axis[:, :2].copy()
    for _ in range(iterations):
        enc_next = laplacian_relax(enc, A, alpha)
        axis2 = laplacian_relax(axis2, A, alpha)
        enc = _normalize_rows(enc_next, enc)

    directions = decode_directions(enc)
    axis = np.column_stack([axis2, chords.axis[:, 2]])
    if verbose:
        moved = float(np.linalg.norm(axis - chords.axis, axis=1).max()) if c else 0.0
        logger.info("Chord smoothing: %d iterations, alpha=%.3g, max axis shift=%.4g", iterations, alpha, moved)
    return replace(chords, axis=axis, directions=directions)


def chord_branches(chords: ChordGraph) -> List[List[int]]:
    """Maximal chains of linked chords.

    Walks start at every chord with at most one link and follow unvisited
    links; every chord of a tree-shaped chord graph lands in exactly one chain.
    """
    G = chords.graph
    visited = np.zeros(chords.n_chords, dtype=bool)
    branches: List[List[int]] = []
    for i in range(chords.n_chords):
        if G.degree(i) > 1:
            continue
        branch: List[int] = []
        current: Optional[int] = i
        while current is not None and not visited[current]:
            visited[current] = True
            branch.append(current)
            nbrs = list(G.neighbors(current))
            if len(nbrs) > 2:
                break
            current = next((w for w in nbrs if not visited[w]), None)
        if branch:
            branches.append(branch)
    if not np.all(visited):
        logger.warning("%d chords lie on closed chord loops and were not walked", int(np.count_nonzero(~visited)))
    return branches
