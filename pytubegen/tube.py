"""
Tube surface generation from a chord graph.

Each chord becomes a ring of points in the plane spanned by the chord
direction and the outline normal (+z). Rings are bridged into pipes along
chord chains, shrunk into caps at tube ends, and joined at junctions by a
triangulated lid patch that is emitted twice (above and below the outline
plane).

Without later fitting or remeshing, every edge of the result is shared by
exactly two triangles, provided no junction had to be skipped.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np
import trimesh

from .chords import ChordGraph, chord_branches
from .errors import OutlineError, SkippedFeature
from .geometry2d import generate_triangle_grid, segment_distance, triangulate

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

Z_AXIS = np.array([0.0, 0.0, 1.0])

CORNER_TOL = 1e-4
PLANE_TOL = 1e-6
# lid height above and below the outline plane
LID_OFFSET = 1.0
# lattice points closer than this (times isodistance) to the patch border are dropped
LATTICE_MARGIN = 0.25


def ring_size(radius: float, isodistance: float) -> int:
    """Even point count ``floor(2 pi r / iso)``, at least 4."""
    n = int(math.floor(2.0 * math.pi * radius / isodistance))
    if n % 2 == 1:
        n += 1
    return max(n, 4)


def generate_circle(center, direction, radius: float, isodistance: float) -> np.ndarray:
    """Ring of points ``c + r (d cos t + z sin t)``, ``t = 2 pi k / n``.

    Point 0 lies at ``c + r d`` and point ``n/2`` at ``c - r d``; points
    ``1 .. n/2-1`` lie above the outline plane.
    """
    if not isodistance > 0:
        raise ValueError("isodistance must be positive")
    c = np.asarray(center, dtype=float).reshape(3)
    d = np.asarray(direction, dtype=float).reshape(3)
    norm = float(np.linalg.norm(d))
    d = d / norm if norm > 1e-12 else np.array([1.0, 0.0, 0.0])
    n = ring_size(radius, isodistance)
    t = 2.0 * np.pi * np.arange(n) / n
    return c + radius * (np.outer(np.cos(t), d) + np.outer(np.sin(t), Z_AXIS))


def stitch_rings(ring_a, ring_b) -> np.ndarray:
    """Triangles bridging two rings of possibly different sizes.

    Local indexing: ``ring_a`` occupies ``[0, n_a)`` and ``ring_b``
    ``[n_a, n_a + n_b)``. The larger ring is rotated so that its point nearest
    to the smaller ring's point 0 comes first; the smaller ring is walked
    backwards when the first tangents point in opposite directions. Every ring
    edge is used by exactly one triangle; a single-point ring yields a fan.
    """
    A = np.asarray(ring_a, dtype=float).reshape(-1, 3)
    B = np.asarray(ring_b, dtype=float).reshape(-1, 3)
    n1, n2 = A.shape[0], B.shape[0]
    if n1 == 0 or n2 == 0:
        return np.empty((0, 3), dtype=np.int64)

    if n1 <= n2:
        small, large, s_base, l_base = A, B, 0, n1
    else:
        small, large, s_base, l_base = B, A, n1, 0
    ns, nl = small.shape[0], large.shape[0]

    offset = int(np.argmin(np.linalg.norm(large - small[0], axis=1)))
    t_small = small[1 % ns] - small[0]
    t_large = large[(offset + 1) % nl] - large[offset]
    s_order = np.arange(ns)
    if float(np.dot(t_small, t_large)) < 0.0:
        s_order = (ns - s_order) % ns

    faces = []
    for i in range(nl):
        l0 = l_base + (offset + i) % nl
        l1 = l_base + (offset + i + 1) % nl
        j0 = (i * ns) // nl
        j1 = ((i + 1) * ns // nl) % ns
        faces.append((l0, l1, s_base + s_order[j1]))
        if j0 != j1:
            faces.append((l0, s_base + s_order[j1], s_base + s_order[j0]))
    return np.asarray(faces, dtype=np.int64)


@dataclass(eq=False)
class TubeMesh:
    """
    Generated tube surface with ring bookkeeping.

    Attributes:
        vertices: (N,3)
        faces: (M,3)
        ring_offsets / ring_sizes: vertex range of every ring. The first
            ``n_chord_rings`` rings belong to chords in chord order; later rings
            are cap discs and cap apexes.
        ring_chords: chord id per ring, -1 for cap rings.
        lid_vertices: ids of junction lid vertices.
        diagnostics: skipped features.
    """

    vertices: np.ndarray
    faces: np.ndarray
    ring_offsets: np.ndarray
    ring_sizes: np.ndarray
    ring_chords: np.ndarray
    n_chord_rings: int
    lid_vertices: np.ndarray = field(default_factory=lambda: np.empty(0, dtype=np.int64))
    diagnostics: List[SkippedFeature] = field(default_factory=list)

    @property
    def n_vertices(self) -> int:
        return int(self.vertices.shape[0])

    @property
    def n_faces(self) -> int:
        return int(self.faces.shape[0])

    def ring(self, i: int) -> np.ndarray:
        o = int(self.ring_offsets[i])
        return np.arange(o, o + int(self.ring_sizes[i]))

    def ring_vertex_groups(self, chords_only: bool = True) -> List[np.ndarray]:
        count = self.n_chord_rings if chords_only else self.ring_offsets.shape[0]
        return [self.ring(i) for i in range(count)]

    def chord_ring_indices(self) -> np.ndarray:
        """All vertex ids of chord rings (the fitting constraints)."""
        groups = self.ring_vertex_groups()
        if not groups:
            return np.empty(0, dtype=np.int64)
        return np.concatenate(groups)

    def with_vertices(self, vertices: np.ndarray, faces: Optional[np.ndarray] = None) -> "TubeMesh":
        return TubeMesh(
            vertices=np.asarray(vertices, dtype=float),
            faces=self.faces.copy() if faces is None else np.asarray(faces, dtype=np.int64),
            ring_offsets=self.ring_offsets.copy(),
            ring_sizes=self.ring_sizes.copy(),
            ring_chords=self.ring_chords.copy(),
            n_chord_rings=self.n_chord_rings,
            lid_vertices=self.lid_vertices.copy(),
            diagnostics=list(self.diagnostics),
        )

    def to_trimesh(self) -> trimesh.Trimesh:
        return trimesh.Trimesh(vertices=self.vertices, faces=self.faces, process=False)


class _TubeBuilder:
    def __init__(self):
        self.blocks: List[np.ndarray] = []
        self.n = 0
        self.faces: List[np.ndarray] = []
        self.ring_offsets: List[int] = []
        self.ring_sizes: List[int] = []
        self.ring_chords: List[int] = []
        self.lid: List[int] = []
        self.diagnostics: List[SkippedFeature] = []

    def add_vertices(self, pts: np.ndarray) -> int:
        pts = np.asarray(pts, dtype=float).reshape(-1, 3)
        start = self.n
        self.blocks.append(pts)
        self.n += pts.shape[0]
        return start

    def add_ring(self, pts: np.ndarray, chord: int = -1) -> int:
        start = self.add_vertices(pts)
        self.ring_offsets.append(start)
        self.ring_sizes.append(pts.shape[0])
        self.ring_chords.append(chord)
        return len(self.ring_offsets) - 1

    def ring_points(self, r: int) -> np.ndarray:
        o, s = self.ring_offsets[r], self.ring_sizes[r]
        return self.vertex_array()[o:o + s]

    def vertex_array(self) -> np.ndarray:
        if len(self.blocks) > 1:
            self.blocks = [np.vstack(self.blocks)]
        return self.blocks[0] if self.blocks else np.empty((0, 3))

    def add_faces(self, F) -> None:
        F = np.asarray(F, dtype=np.int64).reshape(-1, 3)
        if F.shape[0]:
            self.faces.append(F)

    def bridge(self, ra: int, rb: int) -> None:
        local = stitch_rings(self.ring_points(ra), self.ring_points(rb))
        na = self.ring_sizes[ra]
        oa, ob = self.ring_offsets[ra], self.ring_offsets[rb]
        self.add_faces(np.where(local < na, local + oa, local - na + ob))

    def skip(self, kind: str, index: int, reason: str) -> None:
        logger.warning("Skipping %s %d: %s", kind, index, reason)
        self.diagnostics.append(SkippedFeature(kind, index, reason))

    def build(self, n_chord_rings: int) -> TubeMesh:
        faces = np.vstack(self.faces) if self.faces else np.empty((0, 3), dtype=np.int64)
        return TubeMesh(
            vertices=self.vertex_array().copy(),
            faces=faces,
            ring_offsets=np.asarray(self.ring_offsets, dtype=np.int64),
            ring_sizes=np.asarray(self.ring_sizes, dtype=np.int64),
            ring_chords=np.asarray(self.ring_chords, dtype=np.int64),
            n_chord_rings=n_chord_rings,
            lid_vertices=np.asarray(self.lid, dtype=np.int64),
            diagnostics=self.diagnostics,
        )


def _stitch_pipes(b: _TubeBuilder, chords: ChordGraph) -> int:
    count = 0
    for branch in chord_branches(chords):
        for prev, cur in zip(branch[:-1], branch[1:]):
            b.bridge(prev, cur)
            count += 1
    return count


def _stitch_caps(b: _TubeBuilder, chords: ChordGraph, isodistance: float) -> None:
    for k, (i, _) in enumerate(chords.caps):
        d = chords.directions[i]
        ci = chords.axis[i]
        ri = 0.5 * float(chords.lengths[i])
        co = chords.free_vertex(k)

        rings = [i]
        r = ri
        while r > 1.2 * isodistance:
            r -= isodistance
            center = co + (ci - co) * (r / ri)
            rings.append(b.add_ring(generate_circle(center, d, r, isodistance)))
        rings.append(b.add_ring(co.reshape(1, 3)))
        for ra, rb in zip(rings[:-1], rings[1:]):
            b.bridge(ra, rb)


def _match_corners(ends: Sequence[np.ndarray]) -> Optional[Tuple[List[np.ndarray], List[List[int]]]]:
    """Corners of a junction triangle and the chord ends meeting at each.

    ``ends`` holds ``[e0a, e0b, e1a, e1b, e2a, e2b]``; end ``j`` belongs to
    chord slot ``j // 2`` and is ring point ``(j % 2) * n / 2``.
    """
    e0a, e0b, e1a, e1b = ends[:4]
    corners = [e0a, e0b]
    if np.linalg.norm(e0a - e1a) < CORNER_TOL or np.linalg.norm(e0b - e1a) < CORNER_TOL:
        corners.append(e1b)
    else:
        corners.append(e1a)
    matches: List[List[int]] = []
    for corner in corners:
        hit = [j for j in range(6) if np.linalg.norm(corner - ends[j]) < CORNER_TOL]
        if len(hit) != 2 or hit[0] // 2 == hit[1] // 2:
            return None
        matches.append(hit)
    if sorted(j for hit in matches for j in hit) != list(range(6)):
        return None
    return corners, matches


def _stitch_junction(b: _TubeBuilder, chords: ChordGraph, jid: int, isodistance: float) -> None:
    junction = chords.junctions[jid]
    V = b.vertex_array()
    offs = [b.ring_offsets[c] for c in junction]
    sizes = [b.ring_sizes[c] for c in junction]
    ends = []
    for o, s in zip(offs, sizes):
        ends.append(V[o])
        ends.append(V[o + s // 2])

    if any(abs(float(e[2])) > PLANE_TOL for e in ends):
        b.skip("junction", jid, "chord ends leave the outline plane")
        return
    matched = _match_corners(ends)
    if matched is None:
        b.skip("junction", jid, "chord ends do not meet in three corners")
        return
    corners, matches = matched
    tri2d = np.array([c[:2] for c in corners])

    lattice = generate_triangle_grid(tri2d, isodistance)
    if lattice.shape[0]:
        margin = np.min(
            np.column_stack([segment_distance(lattice, tri2d[i], tri2d[(i + 1) % 3]) for i in range(3)]),
            axis=1,
        )
        lattice = lattice[margin >= LATTICE_MARGIN * isodistance]

    # 2D patch points: lattice, interior points of each chord's upper half, corners
    points = [lattice]
    slot_start = []
    cursor = lattice.shape[0]
    chord_pts: List[np.ndarray] = []
    for o, s in zip(offs, sizes):
        inner = V[o + 1:o + s // 2, :2]
        slot_start.append(cursor)
        chord_pts.append(np.arange(cursor, cursor + inner.shape[0]))
        points.append(inner)
        cursor += inner.shape[0]
    corner_start = cursor
    points.append(tri2d)
    P = np.vstack(points)

    segments = []
    for i in range(3):
        nxt = (i + 1) % 3
        slot = None
        reverse = False
        for j0 in matches[i]:
            for j1 in matches[nxt]:
                if j0 // 2 == j1 // 2:
                    slot = j0 // 2
                    reverse = j0 % 2 == 1
        if slot is None:
            b.skip("junction", jid, f"no chord joins corners {i} and {nxt}")
            return
        walk = chord_pts[slot][::-1] if reverse else chord_pts[slot]
        chain = [corner_start + i, *walk.tolist(), corner_start + nxt]
        segments.extend(zip(chain[:-1], chain[1:]))

    try:
        faces2d = triangulate(P, np.asarray(segments))
    except OutlineError as exc:
        b.skip("junction", jid, f"patch triangulation failed: {exc}")
        return

    n_lat = lattice.shape[0]
    used = np.unique(faces2d[faces2d < n_lat]) if n_lat else np.empty(0, dtype=np.int64)
    lid_top = np.full(n_lat, -1, dtype=np.int64)
    lid_bot = np.full(n_lat, -1, dtype=np.int64)
    if used.size:
        top = np.column_stack([lattice[used], np.full(used.size, LID_OFFSET)])
        bot = np.column_stack([lattice[used], np.full(used.size, -LID_OFFSET)])
        start = b.add_vertices(np.vstack([top, bot]))
        lid_top[used] = start + np.arange(used.size)
        lid_bot[used] = start + used.size + np.arange(used.size)
        b.lid.extend(range(start, start + 2 * used.size))

    def corner_vertex(j: int) -> int:
        slot = j // 2
        return offs[slot] + (j % 2) * (sizes[slot] // 2)

    def lift(v: int, upper: bool) -> int:
        if v < n_lat:
            return int(lid_top[v] if upper else lid_bot[v])
        if v >= corner_start:
            return corner_vertex(matches[v - corner_start][0])
        slot = max(k for k in range(3) if slot_start[k] <= v)
        k = v - slot_start[slot] + 1
        s = sizes[slot]
        return offs[slot] + (k if upper else (s - k) % s)

    out = []
    for f in faces2d:
        out.append([lift(int(v), True) for v in f])
        out.append([lift(int(v), False) for v in f[::-1]])

    # close the seam where two chord ends meet at each corner
    for i in range(3):
        j0, j1 = matches[i]
        idx0 = corner_vertex(j0)
        slot = j1 // 2
        base, size = offs[slot], sizes[slot]
        e = (j1 % 2) * size // 2
        out.append([idx0, base + e, base + (e + 1) % size])
        out.append([idx0, base + (e + size - 1) % size, base + e])
    b.add_faces(out)


def generate_tube(
    chords: ChordGraph,
    isodistance: float,
    *,
    verbose: bool = False,
    log: Optional[logging.Logger] = None,
) -> TubeMesh:
    """Emit the tube surface for a (smoothed) chord graph.

    Parameters
    ----------
    chords : ChordGraph
    isodistance : float
        Target spacing of ring points and of cap discs.
    verbose : bool, default False
    log : logging.Logger, optional

    Returns
    -------
    TubeMesh
        Junctions that cannot be built are skipped and listed in
        ``diagnostics``; the rest of the mesh is still produced.
    """
    if not isodistance > 0:
        raise ValueError("isodistance must be positive")
    _log = log or logger
    b = _TubeBuilder()
    for i in range(chords.n_chords):
        disc = generate_circle(chords.axis[i], chords.directions[i], 0.5 * float(chords.lengths[i]), isodistance)
        b.add_ring(disc, chord=i)

    n_links = _stitch_pipes(b, chords)
    _stitch_caps(b, chords, isodistance)
    for jid in range(len(chords.junctions)):
        _stitch_junction(b, chords, jid, isodistance)

    tube = b.build(chords.n_chords)
    if verbose:
        _log.info(
            "Tube mesh: %d vertices, %d faces (%d pipe links, %d caps, %d junctions, %d skipped)",
            tube.n_vertices, tube.n_faces, n_links, len(chords.caps), len(chords.junctions), len(tube.diagnostics),
        )
    return tube
