"""
Isometric remeshing of a closed triangle mesh.

Each pass rebuilds a half-edge map ``he[u][v] = w`` (directed edge u->v
belongs to face (u, v, w)) from the face list, then

1. splits edges longer than 4L/3,
2. collapses edges shorter than 4L/5,
3. flips edges that bring vertex valences closer to 6,
4. moves every vertex tangentially toward its one-ring centroid,

and finally compacts vertices and faces back into arrays.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Dict, List, Optional, Tuple, Union

import numpy as np

from .errors import Deadline
from .laplacian import unique_edges

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

HalfEdges = Dict[int, Dict[int, int]]


def edge_lengths(vertices: np.ndarray, faces: np.ndarray) -> np.ndarray:
    """Length of every unique undirected edge."""
    E = unique_edges(faces)
    V = np.asarray(vertices, dtype=float)
    return np.linalg.norm(V[E[:, 0]] - V[E[:, 1]], axis=1)


def vertex_valences(faces: np.ndarray, n: Optional[int] = None) -> np.ndarray:
    E = unique_edges(faces)
    if n is None:
        n = int(E.max()) + 1 if E.size else 0
    return np.bincount(E.ravel(), minlength=n)


class _Mesh:
    """Working half-edge state for one remeshing pass."""

    def __init__(self, V: np.ndarray, F: np.ndarray):
        self.pos: List[np.ndarray] = [p for p in np.asarray(V, dtype=float)]
        self.alive: List[bool] = [True] * len(self.pos)
        self.he: HalfEdges = {i: {} for i in range(len(self.pos))}
        for a, b, c in np.asarray(F, dtype=np.int64):
            self.set_face(int(a), int(b), int(c))

    def set_face(self, a: int, b: int, c: int) -> None:
        self.he[a][b] = c
        self.he[b][c] = a
        self.he[c][a] = b

    def has(self, u: int, v: int) -> bool:
        return self.alive[u] and self.alive[v] and v in self.he[u]

    def length(self, u: int, v: int) -> float:
        return float(np.linalg.norm(self.pos[u] - self.pos[v]))

    def add_vertex(self, p: np.ndarray) -> int:
        self.pos.append(p)
        self.alive.append(True)
        self.he[len(self.pos) - 1] = {}
        return len(self.pos) - 1

    def remove_edge(self, u: int, v: int) -> None:
        self.he[u].pop(v, None)
        self.he[v].pop(u, None)

    def remove_vertex(self, v: int) -> None:
        for x in set(self.he[v]) | set(self.he[v].values()):
            self.he[x].pop(v, None)
        self.he[v] = {}
        self.alive[v] = False

    def degree(self, u: int) -> int:
        return len(self.he[u])

    def mean_edge_length(self) -> float:
        total = 0.0
        count = 0
        for u, out in self.he.items():
            for v in out:
                total += self.length(u, v)
                count += 1
        return total / count if count else 0.0

    def undirected_edges(self) -> List[Tuple[int, int]]:
        return [(u, v) for u, out in self.he.items() if self.alive[u] for v in out if u < v]


def _split_long_edges(M: _Mesh, upper: float, deadline: Deadline) -> int:
    queue = deque((u, v) for u, out in M.he.items() for v in out)
    splits = 0
    while queue:
        u, v = queue.popleft()
        if not M.has(u, v) or M.length(u, v) <= upper:
            continue
        y = M.he[u][v]
        z = M.he[v].get(u)
        x = M.add_vertex(0.5 * (M.pos[u] + M.pos[v]))
        M.remove_edge(u, v)
        M.set_face(u, x, y)
        M.set_face(x, v, y)
        queue.extend([(x, u), (x, v), (x, y)])
        if z is not None:
            M.set_face(u, z, x)
            M.set_face(x, z, v)
            queue.append((x, z))
        splits += 1
        if splits % 1024 == 0:
            deadline.check("edge splits")
    return splits


def _can_collapse(M: _Mesh, u: int, v: int, upper: float) -> bool:
    if u not in M.he[v]:
        return False
    common = sum(1 for w in M.he[u] if w in M.he[v])
    if common > 2:
        return False
    p = M.he[u][v]
    q = M.he[v][u]
    if p == q or M.degree(p) <= 3 or M.degree(q) <= 3:
        return False
    mid = 0.5 * (M.pos[u] + M.pos[v])
    for w in set(M.he[u]) | set(M.he[v]):
        if w not in (u, v) and float(np.linalg.norm(M.pos[w] - mid)) > upper:
            return False
    return True


def _collapse_short_edges(M: _Mesh, lower: float, upper: float, deadline: Deadline) -> int:
    queue = deque(M.undirected_edges())
    collapses = 0
    while queue:
        u, v = queue.popleft()
        if not M.has(u, v) or M.length(u, v) >= lower:
            continue
        if not _can_collapse(M, u, v, upper):
            continue
        for x in list(M.he[v]):
            y = M.he[x].get(v)
            if x == u or y is None or y == u:
                continue
            M.set_face(x, u, y)
        mid = 0.5 * (M.pos[u] + M.pos[v])
        M.remove_vertex(v)
        M.pos[u] = mid
        queue.extend((u, w) for w in M.he[u])
        collapses += 1
        if collapses % 1024 == 0:
            deadline.check("edge collapses")
    return collapses


def _flip_valences(M: _Mesh, deadline: Deadline) -> int:
    deg = {u: M.degree(u) for u in range(len(M.pos)) if M.alive[u]}
    queue = deque(M.undirected_edges())
    flips = 0

    def score(*vs: int) -> int:
        return sum(abs(deg[w] - 6) for w in vs)

    while queue:
        u, v = queue.popleft()
        if not M.has(u, v) or u not in M.he[v]:
            continue
        x = M.he[u][v]
        y = M.he[v][u]
        if x == y or y in M.he[x] or x in M.he[y]:
            continue
        if deg[u] <= 3 or deg[v] <= 3:
            continue
        before = score(u, v, x, y)
        deg[u] -= 1
        deg[v] -= 1
        deg[x] += 1
        deg[y] += 1
        if score(u, v, x, y) >= before:
            deg[u] += 1
            deg[v] += 1
            deg[x] -= 1
            deg[y] -= 1
            continue

        M.remove_edge(u, v)
        M.set_face(u, y, x)
        M.set_face(v, x, y)
        nodes = (u, v, x, y)
        for a in nodes:
            for w in M.he[a]:
                if w not in nodes:
                    queue.append((a, w))
        queue.extend([(x, y), (u, y), (y, v), (v, x), (x, u)])
        flips += 1
        if flips % 1024 == 0:
            deadline.check("edge flips")
    return flips


def _relocate_and_compact(M: _Mesh) -> Tuple[np.ndarray, np.ndarray]:
    keep = [u for u in range(len(M.pos)) if M.alive[u]]
    remap = np.full(len(M.pos), -1, dtype=np.int64)
    remap[keep] = np.arange(len(keep))
    P = np.asarray([M.pos[u] for u in keep], dtype=float).reshape(-1, 3)

    hu, hv, hw = [], [], []
    for u, out in M.he.items():
        if not M.alive[u]:
            continue
        for v, w in out.items():
            hu.append(u)
            hv.append(v)
            hw.append(w)
    hu = remap[np.asarray(hu, dtype=np.int64)]
    hv = remap[np.asarray(hv, dtype=np.int64)]
    hw = remap[np.asarray(hw, dtype=np.int64)]

    # tangential smoothing: centroid pull with the normal component removed
    n = P.shape[0]
    normal = np.zeros((n, 3))
    centroid = np.zeros((n, 3))
    count = np.zeros(n)
    if hu.size:
        np.add.at(normal, hu, np.cross(P[hv] - P[hu], P[hw] - P[hu]))
        np.add.at(centroid, hu, P[hv])
        np.add.at(count, hu, 1.0)
    has = count > 0
    nn = np.linalg.norm(normal, axis=1)
    unit = np.zeros_like(normal)
    ok = has & (nn > 1e-12)
    unit[ok] = normal[ok] / nn[ok, None]
    step = np.zeros_like(P)
    step[has] = centroid[has] / count[has, None] - P[has]
    step -= unit * np.einsum("ij,ij->i", step, unit)[:, None]
    P = P + step

    # every face once: from its smallest vertex
    first = (hu < hv) & (hu < hw)
    F = np.column_stack([hu[first], hv[first], hw[first]]).astype(np.int64)
    return P, F


def isometric_remesh(
    vertices: np.ndarray,
    faces: np.ndarray,
    iterations: int = 6,
    length: Optional[float] = None,
    *,
    deadline: Union[None, float, Deadline] = None,
    verbose: bool = False,
    log: Optional[logging.Logger] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """Drive a closed mesh toward uniform edge length and valence 6.

    Parameters
    ----------
    vertices : (n,3) float array
    faces : (m,3) int array, consistently oriented
    iterations : int, default 6
        Number of split/collapse/flip/relocate passes.
    length : float, optional
        Target edge length L. Defaults to the mean edge length of each pass.
    deadline : float seconds or Deadline, optional
        Raises DeadlineExceeded when the budget runs out.
    verbose : bool, default False
    log : logging.Logger, optional

    Returns
    -------
    (V, F) remeshed arrays.
    """
    if iterations < 0:
        raise ValueError("iterations must be non-negative")
    if length is not None and length <= 0:
        raise ValueError("length must be positive")
    _log = log or logger
    dl = Deadline.coerce(deadline)
    V = np.asarray(vertices, dtype=float)
    F = np.asarray(faces, dtype=np.int64)
    for it in range(iterations):
        dl.check(f"remesh pass {it + 1}")
        M = _Mesh(V, F)
        L = float(length) if length is not None else M.mean_edge_length()
        if L <= 0:
            break
        lower, upper = 0.8 * L, 4.0 * L / 3.0
        splits = _split_long_edges(M, upper, dl)
        collapses = _collapse_short_edges(M, lower, upper, dl)
        flips = _flip_valences(M, dl)
        V, F = _relocate_and_compact(M)
        if verbose:
            _log.info(
                "Remesh pass %d/%d: L=%.4g, %d splits, %d collapses, %d flips -> %d vertices, %d faces",
                it + 1, iterations, L, splits, collapses, flips, V.shape[0], F.shape[0],
            )
    return V, F
