"""
Skeleton extraction from the chord graph.

Chord axis points are the initial joints and chord links the initial bones;
every junction adds a joint at the barycenter of its three chords. The graph
is then simplified by three passes, repeated until none of them changes it:

1. chain collapse: a joint with exactly two neighbours is removed when the
   tube it sits in is almost straight there (deviation below a threshold),
   including a junction joint left with two bones by pruning,
2. leaf pruning: short dangling branches are trimmed,
3. bone merging: bones shorter than a threshold are contracted to their
   midpoint.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import networkx as nx
import numpy as np

from .chords import ChordGraph
from .tube import Z_AXIS

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


@dataclass(eq=False)
class Skeleton:
    """
    Attributes:
        joints: (k,3) joint positions.
        bones: (b,2) joint index pairs, ``lo < hi``.
    """

    joints: np.ndarray
    bones: np.ndarray

    def __post_init__(self):
        self.joints = np.asarray(self.joints, dtype=float).reshape(-1, 3)
        self.bones = np.asarray(self.bones, dtype=np.int64).reshape(-1, 2)

    @property
    def n_joints(self) -> int:
        return int(self.joints.shape[0])

    @property
    def n_bones(self) -> int:
        return int(self.bones.shape[0])

    @property
    def graph(self) -> nx.Graph:
        G = nx.Graph()
        G.add_nodes_from(range(self.n_joints))
        G.add_edges_from((int(a), int(b)) for a, b in self.bones)
        return G

    def bone_lengths(self) -> np.ndarray:
        if self.n_bones == 0:
            return np.empty(0)
        return np.linalg.norm(self.joints[self.bones[:, 1]] - self.joints[self.bones[:, 0]], axis=1)

    def is_tree(self) -> bool:
        return self.n_joints > 0 and nx.is_tree(self.graph)


def _unit(v: np.ndarray) -> np.ndarray:
    n = float(np.linalg.norm(v))
    return v / n if n > 1e-12 else np.zeros(3)


def _reject(v: np.ndarray, d: np.ndarray) -> np.ndarray:
    return v - d * float(v @ d)


def chain_deviation(p, p0, p1, size: float, size0: float, size1: float, direction) -> float:
    """How far a middle cross-section sits from the straight tube between its neighbours.

    ``p0``/``p1`` are the neighbouring axis points with diameters ``size0``/``size1``;
    the middle one is at ``p`` with diameter ``size`` and chord ``direction``.
    The result is ``0.5 |axis offset| + 0.25 (|side offset 1| + |side offset 2|)``
    where the side offsets measure the chord ends against the two straight
    tube walls.
    """
    p, p0, p1 = (np.asarray(x, dtype=float) for x in (p, p0, p1))
    axis_dir = _unit(p1 - p0)
    base_dir = _unit(np.cross(axis_dir, Z_AXIS))

    a1 = p0 + base_dir * size0 / 2
    b1 = p1 + base_dir * size1 / 2
    a2 = p0 - base_dir * size0 / 2
    b2 = p1 - base_dir * size1 / 2

    chord_dir = np.asarray(direction, dtype=float)
    if chord_dir @ base_dir < 0:
        chord_dir = -chord_dir
    c1 = p + chord_dir * size / 2
    c2 = p - chord_dir * size / 2

    v0 = _reject(p - p0, axis_dir)
    v1 = _reject(c1 - b1, _unit(a1 - b1))
    v2 = _reject(c2 - b2, _unit(a2 - b2))
    return 0.5 * float(np.linalg.norm(v0)) + 0.25 * (float(np.linalg.norm(v1)) + float(np.linalg.norm(v2)))


def _seed_graph(chords: ChordGraph) -> nx.Graph:
    G = nx.Graph()
    for i in range(chords.n_chords):
        G.add_node(i, pos=chords.axis[i].copy(), size=float(chords.lengths[i]), direction=chords.directions[i].copy())
    G.add_edges_from(chords.graph.edges())
    nid = chords.n_chords
    for c0, c1, c2 in chords.junctions:
        ids = [c0, c1, c2]
        center = chords.axis[ids].mean(axis=0)
        # no chord of its own; collapses only once pruning leaves it with two bones
        G.add_node(nid, pos=center, size=float(chords.lengths[ids].mean()), direction=None)
        G.add_edges_from((nid, c) for c in ids)
        nid += 1
    return G


def _collapse_chains(G: nx.Graph, deviation: float) -> int:
    removed = 0
    queue = deque(list(G.nodes))
    while queue:
        i = queue.popleft()
        if i not in G or G.degree(i) != 2:
            continue
        n0, n1 = list(G.neighbors(i))
        a, b, c = G.nodes[i], G.nodes[n0], G.nodes[n1]
        direction = a["direction"]
        if direction is None:
            # a junction joint that lost an arm: its cross-section is square to the through line
            direction = _unit(np.cross(c["pos"] - b["pos"], Z_AXIS))
        dev = chain_deviation(a["pos"], b["pos"], c["pos"], a["size"], b["size"], c["size"], direction)
        if dev < deviation:
            G.add_edge(n0, n1)
            G.remove_node(i)
            removed += 1
    return removed


def _leaf_branch(G: nx.Graph, leaf) -> Tuple[List[int], float, int]:
    """Walk from a leaf through degree-2 joints; returns (path, length, end degree)."""
    path = [leaf]
    total = 0.0
    prev, cur = None, leaf
    while True:
        nbrs = [w for w in G.neighbors(cur) if w != prev]
        if not nbrs:
            return path, total, G.degree(cur)
        nxt = nbrs[0]
        total += float(np.linalg.norm(G.nodes[nxt]["pos"] - G.nodes[cur]["pos"]))
        if G.degree(nxt) != 2:
            return path, total, G.degree(nxt)
        path.append(nxt)
        prev, cur = cur, nxt


def _prune_leaves(G: nx.Graph, pruning: float) -> int:
    removed = 0
    changed = True
    while changed:
        changed = False
        for leaf in [u for u in G.nodes if G.degree(u) == 1]:
            if leaf not in G or G.degree(leaf) != 1:
                continue
            path, total, end_degree = _leaf_branch(G, leaf)
            # only trim side branches; a bare chain keeps both ends
            if end_degree >= 3 and total < pruning:
                G.remove_nodes_from(path)
                removed += len(path)
                changed = True
    return removed


def _merge_short_bones(G: nx.Graph, length: float) -> int:
    merged = 0
    queue = deque((u, v) for u, v in G.edges)
    while queue:
        u, v = queue.popleft()
        if not G.has_edge(u, v) or G.number_of_edges() <= 1:
            continue
        pu, pv = G.nodes[u]["pos"], G.nodes[v]["pos"]
        if float(np.linalg.norm(pv - pu)) >= length:
            continue
        for w in list(G.neighbors(v)):
            if w != u:
                G.add_edge(u, w)
        G.nodes[u]["pos"] = 0.5 * (pu + pv)
        G.remove_node(v)
        queue.extend((u, w) for w in G.neighbors(u))
        merged += 1
    return merged


def extract_skeleton(
    chords: ChordGraph,
    deviation: float = 0.1,
    length: float = 5.0,
    pruning: float = 5.0,
    *,
    verbose: bool = False,
    log: Optional[logging.Logger] = None,
) -> Skeleton:
    """Build joints and bones from a (smoothed) chord graph.

    Parameters
    ----------
    chords : ChordGraph
    deviation : float, default 0.1
        Chain joints whose :func:`chain_deviation` is below this are removed.
    length : float, default 5.0
        Bones shorter than this are contracted. The last bone is never merged.
    pruning : float, default 5.0
        Leaf branches ending at a branch joint and shorter than this are trimmed.

    Returns
    -------
    Skeleton with joints re-indexed compactly in seed order. A joint with
    two bones survives only where the tube bends by more than ``deviation``.
    """
    _log = log or logger
    G = _seed_graph(chords)
    seeded = G.number_of_nodes()
    collapsed = pruned = merged = 0
    # pruning and merging can leave new pass-through joints; repeat until stable
    while True:
        c = _collapse_chains(G, deviation)
        p = _prune_leaves(G, pruning)
        m = _merge_short_bones(G, length)
        collapsed, pruned, merged = collapsed + c, pruned + p, merged + m
        if not (c or p or m):
            break

    index: Dict[int, int] = {u: k for k, u in enumerate(G.nodes)}
    joints = np.array([G.nodes[u]["pos"] for u in G.nodes], dtype=float).reshape(-1, 3)
    bones = np.array(
        sorted((min(index[u], index[v]), max(index[u], index[v])) for u, v in G.edges),
        dtype=np.int64,
    ).reshape(-1, 2)
    skel = Skeleton(joints, bones)
    if verbose:
        _log.info(
            "Skeleton: %d seeds -> %d joints, %d bones (%d collapsed, %d pruned, %d merged)",
            seeded, skel.n_joints, skel.n_bones, collapsed, pruned, merged,
        )
    return skel
