"""
Editing operators on finished rigs: plane cut and snap merge.

A plane is given as ``(normal, offset)`` with ``normal . x + offset = 0``;
the normal is normalised on entry. The positive side is where
``normal . x + offset >= 0``.

split_rig cuts mesh, skeleton and skin. Faces are sliced exactly at the
plane, bones crossing it are shortened to stop one mesh spacing before it,
and every cut loop is closed by a flat triangulated cap whose skin weights
are diffused in from the loop.

snap_merge moves one rig so that a chosen joint lands on a joint of the
other, removes the vertices of each mesh that lie inside the other, stitches
the opened boundary loops pairwise, smooths the seam and recomputes the skin.
"""

from __future__ import annotations

import logging
import math
from typing import List, Optional, Sequence, Tuple

import numpy as np
import scipy.sparse as sp
import trimesh
from scipy.sparse.csgraph import connected_components

from .errors import OutlineError, SkippedFeature, TopologyError
from .fitting import orient_faces
from .geometry2d import generate_triangle_grid, is_clockwise, segment_distance, triangulate
from .io import RiggedMesh
from .laplacian import geometric_laplacian, topological_laplacian, uniform_adjacency
from .skin import SkinWeights, closest_bones, compute_skin_weights, truncate_weights
from .solver import diffuse, smooth
from .tube import stitch_rings

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

PLANE_TOL = 1e-6
# cap lattice points closer than this (times spacing) to the loop are dropped
CAP_MARGIN = 0.5
# skin weights at or below this do not tie a vertex to a bone
WEIGHT_EPS = 1e-6


def _plane(normal, offset: float) -> Tuple[np.ndarray, float]:
    n = np.asarray(normal, dtype=float).reshape(3)
    norm = float(np.linalg.norm(n))
    if norm < 1e-12:
        raise ValueError("plane normal must be non-zero")
    return n / norm, float(offset) / norm


def plane_basis(normal) -> Tuple[np.ndarray, np.ndarray]:
    """Two unit vectors spanning the plane, with ``u x v = normal``.

    ``u`` is the axis least aligned with the normal, projected onto the plane.
    """
    n, _ = _plane(normal, 0.0)
    axis = np.zeros(3)
    axis[int(np.argmin(np.abs(n)))] = 1.0
    u = axis - n * float(axis @ n)
    u /= np.linalg.norm(u)
    return u, np.cross(n, u)


def project_to_2d(points, normal, offset: float) -> np.ndarray:
    """Coordinates of the points' orthogonal projections in the plane frame.

    The frame origin is the plane point closest to the world origin and its
    axes come from :func:`plane_basis`.
    """
    n, off = _plane(normal, offset)
    u, v = plane_basis(n)
    P = np.asarray(points, dtype=float).reshape(-1, 3)
    rel = P + off * n
    return np.column_stack([rel @ u, rel @ v])


def project_to_3d(uv, normal, offset: float) -> np.ndarray:
    """Inverse of :func:`project_to_2d` for points on the plane."""
    n, off = _plane(normal, offset)
    u, v = plane_basis(n)
    Q = np.asarray(uv, dtype=float).reshape(-1, 2)
    return -off * n + np.outer(Q[:, 0], u) + np.outer(Q[:, 1], v)


def cut_plane_from_line(p0, p1, view_direction) -> Tuple[np.ndarray, float]:
    """Plane through a drawn line that contains the viewing direction.

    ``p0`` and ``p1`` are the line's end points in world space. A degenerate
    line gives the plane facing the viewer through ``p0``.

    Returns ``(normal, offset)``.
    """
    a = np.asarray(p0, dtype=float).reshape(3)
    b = np.asarray(p1, dtype=float).reshape(3)
    view = np.asarray(view_direction, dtype=float).reshape(3)
    n = np.cross(b - a, view)
    if float(np.linalg.norm(n)) < 1e-12:
        n = view
    n, _ = _plane(n, 0.0)
    return n, -float(n @ (0.5 * (a + b)))


def boundary_loops(faces) -> List[np.ndarray]:
    """Closed boundary loops of a triangle mesh.

    Each loop follows the direction of its boundary half-edges, so the faces
    that close it must walk it backwards. Open boundary chains are ignored.
    """
    F = np.asarray(faces, dtype=np.int64).reshape(-1, 3)
    if F.shape[0] == 0:
        return []
    E = F[:, [0, 1, 1, 2, 2, 0]].reshape(-1, 2)
    single = trimesh.grouping.group_rows(np.sort(E, axis=1), require_count=1)
    nxt = {int(a): int(b) for a, b in E[single]}
    loops = []
    while nxt:
        start, cur = next(iter(nxt.items()))
        loop = [start]
        del nxt[start]
        while cur != start and cur in nxt:
            loop.append(cur)
            cur = nxt.pop(cur)
        if cur == start and len(loop) >= 3:
            loops.append(np.asarray(loop, dtype=np.int64))
        else:
            logger.debug("Ignoring open boundary chain of %d vertices", len(loop))
    return loops


def _interpolate_weights(source: trimesh.Trimesh, W: np.ndarray, points: np.ndarray) -> np.ndarray:
    # barycentric interpolation on the nearest source triangle
    closest, _, tri = trimesh.proximity.closest_point(source, points)
    bary = trimesh.triangles.points_to_barycentric(source.triangles[tri], closest)
    return np.einsum("ij,ijk->ik", bary, W[source.faces[tri]])


def _cap_loop(V, W, ring, normal, offset, spacing):
    """Flat cap of one planar loop: new vertices, faces in cap-local ids, new weights."""
    uv = project_to_2d(V[ring], normal, offset)
    grid = generate_triangle_grid(uv, spacing)
    if grid.shape[0]:
        near = np.full(grid.shape[0], np.inf)
        for i in range(uv.shape[0]):
            near = np.minimum(near, segment_distance(grid, uv[i], uv[(i + 1) % uv.shape[0]]))
        grid = grid[near > CAP_MARGIN * spacing]
    pts = np.vstack([uv, grid])
    k = uv.shape[0]
    idx = np.arange(k)
    tris = triangulate(pts, np.column_stack([idx, (idx + 1) % k]))
    # make every triangle counter-clockwise, then follow the ring's direction
    a, b, c = pts[tris[:, 0]], pts[tris[:, 1]], pts[tris[:, 2]]
    cw = (b[:, 0] - a[:, 0]) * (c[:, 1] - a[:, 1]) - (b[:, 1] - a[:, 1]) * (c[:, 0] - a[:, 0]) < 0
    tris[cw] = tris[cw, ::-1]
    if is_clockwise(uv):
        tris = tris[:, ::-1]

    new_V = project_to_3d(grid, normal, offset)
    if grid.shape[0] == 0:
        return new_V, tris, np.zeros((0, W.shape[1]))
    L = geometric_laplacian(np.vstack([V[ring], new_V]), tris)
    X = diffuse(L, hard=(idx, W[ring]), smoothness=1.0)
    return new_V, tris, np.clip(X[k:], 0.0, None)


def cap_cut_loops(vertices, faces, weights, normal, offset: float, spacing: float, *, verbose: bool = False, log=None):
    """Close every boundary loop lying on the plane with a triangulated cap.

    Returns ``(vertices, faces, weights, diagnostics)``; loops that cannot be
    triangulated are left open and reported as skipped ``"cap"`` features.
    """
    _log = log or logger
    n, off = _plane(normal, offset)
    V = np.asarray(vertices, dtype=float)
    F = np.asarray(faces, dtype=np.int64)
    W = np.asarray(weights, dtype=float)
    diagnostics = []
    V_parts, F_parts, W_parts = [V], [F], [W]
    base = V.shape[0]
    for li, loop in enumerate(boundary_loops(F)):
        if np.max(np.abs(V[loop] @ n + off)) > PLANE_TOL * max(1.0, spacing):
            continue
        ring = loop[::-1]
        try:
            new_V, tris, new_W = _cap_loop(V, W, ring, n, off, spacing)
        except OutlineError as exc:
            _log.warning("Cut loop %d left open: %s", li, exc)
            diagnostics.append(SkippedFeature("cap", li, str(exc)))
            continue
        k = ring.shape[0]
        ids = np.concatenate([ring, base + np.arange(new_V.shape[0])])
        V_parts.append(new_V)
        W_parts.append(new_W)
        F_parts.append(ids[tris])
        base += new_V.shape[0]
        if verbose:
            _log.info("Capped loop %d: %d ring vertices, %d interior, %d faces", li, k, new_V.shape[0], tris.shape[0])
    return np.vstack(V_parts), np.vstack(F_parts), np.vstack(W_parts), diagnostics


def _split_bones(J, B, d, spacing):
    """Shorten bones that cross the plane. Returns new joints, new bones and their source bone."""
    joints = [p for p in J]
    bones = []
    source = []
    for k, (i0, i1) in enumerate(B):
        d0, d1 = d[i0], d[i1]
        if (d0 >= 0) == (d1 >= 0):
            bones.append((i0, i1))
            source.append(k)
            continue
        step = (J[i1] - J[i0]) / (abs(d0) + abs(d1))
        # keep a stub on each side that reaches far enough past the plane
        for e, s in ((i0, 1.0), (i1, -1.0)):
            de = abs(d[e])
            if de >= 2.0 * spacing:
                bones.append((e, len(joints)))
                source.append(k)
                joints.append(J[e] + s * step * (de - spacing))
    return np.asarray(joints, dtype=float).reshape(-1, 3), np.asarray(bones, dtype=np.int64).reshape(-1, 2), np.asarray(source, dtype=np.int64)


def _side_parts(mesh, W, bones, side_bones):
    """Group side vertices and side bones that are tied by faces, shared joints or skin."""
    nv, nb = mesh.vertices.shape[0], side_bones.shape[0]
    rows = [mesh.edges_unique[:, 0]]
    cols = [mesh.edges_unique[:, 1]]
    for j in np.unique(bones[side_bones]):
        at = np.flatnonzero(np.any(bones[side_bones] == j, axis=1))
        rows.append(nv + at[:-1])
        cols.append(nv + at[1:])
    vi, bi = np.nonzero(W[:, side_bones] > WEIGHT_EPS)
    rows.append(vi)
    cols.append(nv + bi)
    r = np.concatenate(rows)
    c = np.concatenate(cols)
    A = sp.coo_matrix((np.ones(r.shape[0]), (r, c)), shape=(nv + nb, nv + nb))
    return connected_components(A, directed=False)


def split_rig(
    rig: RiggedMesh,
    normal,
    offset: float,
    *,
    cap: bool = True,
    verbose: bool = False,
    log: Optional[logging.Logger] = None,
) -> List[RiggedMesh]:
    """Cut a rigged mesh by a plane.

    Returns one rig per connected piece, positive side first. A piece is a
    set of mesh vertices and bones tied together by faces, shared joints or
    non-zero skin weights; pieces without vertices or without bones are
    dropped. Vertices whose remaining weight is zero are bound to their
    closest bone.
    """
    _log = log or logger
    n, off = _plane(normal, offset)
    V = np.asarray(rig.vertices, dtype=float)
    F = np.asarray(rig.faces, dtype=np.int64)
    J = np.asarray(rig.joints, dtype=float)
    B = np.asarray(rig.bones, dtype=np.int64).reshape(-1, 2)
    source = trimesh.Trimesh(vertices=V, faces=F, process=False)
    spacing = float(source.edges_unique_length.mean())

    joints, bones, origin_bone = _split_bones(J, B, J @ n + off, spacing)
    W = rig.skin.to_dense(B.shape[0])[:, origin_bone]
    jd = joints @ n + off
    if verbose:
        _log.info("Plane cut: %d bones -> %d, spacing=%.3g", B.shape[0], bones.shape[0], spacing)

    parts = []
    for s in (1.0, -1.0):
        Vs, Fs, _ = trimesh.intersections.slice_faces_plane(V, F, plane_normal=s * n, plane_origin=-off * n)
        if Fs.shape[0] == 0:
            continue
        side = trimesh.Trimesh(vertices=Vs, faces=Fs, process=False)
        side.merge_vertices()
        side.remove_unreferenced_vertices()
        Ws = _interpolate_weights(source, W, side.vertices)
        on_side = jd >= 0 if s > 0 else jd < 0
        side_bones = np.flatnonzero(on_side[bones[:, 0]] & on_side[bones[:, 1]])
        count, labels = _side_parts(side, Ws, bones, side_bones)
        nv = side.vertices.shape[0]
        for label in range(count):
            members = np.flatnonzero(labels == label)
            verts = members[members < nv]
            part_bones = side_bones[members[members >= nv] - nv]
            if verts.size == 0 or part_bones.size == 0:
                if verts.size:
                    _log.warning("Dropping cut piece of %d vertices with no bones", verts.size)
                continue
            parts.append(_make_part(side, Ws, joints, bones, verts, part_bones, n, off, s, spacing, cap, verbose, _log))
    if verbose:
        _log.info("Plane cut produced %d pieces", len(parts))
    return parts


def _make_part(side, Ws, joints, bones, verts, part_bones, n, off, s, spacing, cap, verbose, log) -> RiggedMesh:
    remap = np.full(side.vertices.shape[0], -1, dtype=np.int64)
    remap[verts] = np.arange(verts.size)
    F = remap[side.faces]
    F = F[np.all(F >= 0, axis=1)]
    V = np.asarray(side.vertices)[verts]
    W = Ws[verts][:, part_bones]

    used = np.unique(bones[part_bones])
    jmap = np.full(joints.shape[0], -1, dtype=np.int64)
    jmap[used] = np.arange(used.size)
    J = joints[used]
    B = jmap[bones[part_bones]]

    diagnostics = []
    if cap:
        V, F, W, diagnostics = cap_cut_loops(V, F, W, s * n, s * off, spacing, verbose=verbose, log=log)
    empty = W.sum(axis=1) <= WEIGHT_EPS
    if np.any(empty):
        nearest, _ = closest_bones(V[empty], J, B)
        W[empty] = 0.0
        W[np.flatnonzero(empty), nearest] = 1.0
    I, Wt = truncate_weights(W)
    return RiggedMesh(V, F, J, B, SkinWeights(I, Wt), diagnostics=diagnostics)


def smooth_seam(
    vertices,
    faces,
    seam: Sequence[int],
    layers: int = 3,
    factor: float = 0.1,
    *,
    verbose: bool = False,
    log: Optional[logging.Logger] = None,
) -> np.ndarray:
    """Relax the neighbourhood of a seam.

    The region grows ``layers`` edge rings out from ``seam``. Its outermost
    ring is held fixed and the rest are weak constraints to their current
    positions, solved with ``smoothness = log(factor)`` as in mesh fitting.
    Returns a new (n,3) array.
    """
    _log = log or logger
    V = np.asarray(vertices, dtype=float).copy()
    F = np.asarray(faces, dtype=np.int64)
    seed = np.unique(np.asarray(seam, dtype=np.int64))
    if seed.size == 0 or layers < 1:
        return V
    A = uniform_adjacency(F, V.shape[0])
    region = np.zeros(V.shape[0], dtype=bool)
    region[seed] = True
    frontier = region.copy()
    for _ in range(layers):
        reached = (A @ frontier.astype(float)) > 0
        frontier = reached & ~region
        if not frontier.any():
            break
        region |= frontier
    inside = np.all(region[F], axis=1)
    local = np.flatnonzero(region)
    lmap = np.full(V.shape[0], -1, dtype=np.int64)
    lmap[local] = np.arange(local.size)
    LF = lmap[F[inside]]
    L = topological_laplacian(LF, local.size)
    outer = lmap[np.flatnonzero(frontier)] if frontier.any() else np.empty(0, dtype=np.int64)
    inner = np.setdiff1d(np.arange(local.size), outer)
    X = smooth(
        L,
        weak=(inner, V[local[inner]]),
        hard=(outer, V[local[outer]]) if outer.size else None,
        smoothness=math.log(factor),
        verbose=verbose,
        log=_log,
    )
    ok = np.all(np.isfinite(X), axis=1)
    V[local[ok]] = X[ok]
    if verbose:
        _log.info("Seam smoothing: %d vertices, %d fixed", local.size, outer.size)
    return V


def _stitch_pairs(V, loops_a, loops_b):
    ca = [V[l].mean(axis=0) for l in loops_a]
    cb = [V[l].mean(axis=0) for l in loops_b]
    D = np.array([[np.linalg.norm(p - q) for q in cb] for p in ca])
    pairs = []
    while len(pairs) < len(loops_a):
        i, j = np.unravel_index(np.argmin(D), D.shape)
        pairs.append((int(i), int(j)))
        D[i, :] = np.inf
        D[:, j] = np.inf
    return pairs


def snap_merge(
    a: RiggedMesh,
    b: RiggedMesh,
    src: int,
    tgt: int,
    *,
    layers: int = 3,
    factor: float = 0.1,
    verbose: bool = False,
    log: Optional[logging.Logger] = None,
) -> RiggedMesh:
    """Join rig ``a`` onto rig ``b`` by snapping joint ``src`` of ``a`` to joint ``tgt`` of ``b``.

    Parameters
    ----------
    a, b : RiggedMesh
        ``a`` is translated; ``b`` stays in place.
    src, tgt : int
        Joint indices in ``a`` and ``b``. They become a single joint (``src``
        in the result); the bones of ``b`` follow ``a``'s bones.
    layers, factor : seam smoothing, see :func:`smooth_seam`.

    Returns
    -------
    RiggedMesh with recomputed skin weights. When the two meshes open a
    different number of boundary loops the seam is left open and reported as
    a skipped ``"seam"`` feature.
    """
    _log = log or logger
    if not 0 <= src < a.joints.shape[0] or not 0 <= tgt < b.joints.shape[0]:
        raise IndexError("snap joints out of range")
    shift = np.asarray(b.joints[tgt], dtype=float) - np.asarray(a.joints[src], dtype=float)
    Va = np.asarray(a.vertices, dtype=float) + shift
    Vb = np.asarray(b.vertices, dtype=float)
    mesh_a = trimesh.Trimesh(vertices=Va, faces=a.faces, process=False)
    mesh_b = trimesh.Trimesh(vertices=Vb, faces=b.faces, process=False)
    keep_a = ~mesh_b.contains(Va)
    keep_b = ~mesh_a.contains(Vb)

    ids_a = np.cumsum(keep_a) - 1
    ids_b = np.cumsum(keep_b) - 1 + int(keep_a.sum())
    Fa = np.asarray(a.faces, dtype=np.int64)
    Fb = np.asarray(b.faces, dtype=np.int64)
    Fa = ids_a[Fa[np.all(keep_a[Fa], axis=1)]]
    Fb = ids_b[Fb[np.all(keep_b[Fb], axis=1)]]
    V = np.vstack([Va[keep_a], Vb[keep_b]])
    if verbose:
        _log.info("Snap merge: removed %d + %d interior vertices", int((~keep_a).sum()), int((~keep_b).sum()))

    diagnostics = []
    loops_a, loops_b = boundary_loops(Fa), boundary_loops(Fb)
    seam_faces = []
    if len(loops_a) != len(loops_b):
        _log.warning("Seam left open: %d boundary loops against %d", len(loops_a), len(loops_b))
        diagnostics.append(SkippedFeature("seam", 0, f"{len(loops_a)} boundary loops against {len(loops_b)}"))
    else:
        for i, j in _stitch_pairs(V, loops_a, loops_b):
            la, lb = loops_a[i], loops_b[j]
            local = stitch_rings(V[la], V[lb])
            seam_faces.append(np.concatenate([la, lb])[local])
    F = np.vstack([Fa, Fb] + seam_faces)
    F = orient_faces(V, F, verbose=verbose, log=_log)
    if seam_faces:
        V = smooth_seam(V, F, np.unique(np.vstack(seam_faces)), layers, factor, verbose=verbose, log=_log)

    na = a.joints.shape[0]
    Ja = np.asarray(a.joints, dtype=float) + shift
    others = np.delete(np.arange(b.joints.shape[0]), tgt)
    jmap = np.empty(b.joints.shape[0], dtype=np.int64)
    jmap[others] = na + np.arange(others.size)
    jmap[tgt] = src
    J = np.vstack([Ja, np.asarray(b.joints, dtype=float)[others]])
    B = np.vstack([np.asarray(a.bones, dtype=np.int64).reshape(-1, 2), jmap[np.asarray(b.bones, dtype=np.int64).reshape(-1, 2)]])
    if B.shape[0] == 0:
        raise TopologyError("merged skeleton has no bones")

    W = compute_skin_weights(V, F, J, B, verbose=verbose, log=_log)
    I, Wt = truncate_weights(W)
    return RiggedMesh(V, F, J, B, SkinWeights(I, Wt), diagnostics=diagnostics)
