"""
Planar geometry kernel.

Polygons are ``(n, 2)`` float arrays describing a closed loop; the last point
is implicitly connected back to the first.
"""

from __future__ import annotations

import logging
import math
from collections import deque
from typing import Optional

import numpy as np
import triangle

from .errors import OutlineError

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

_DUP_TOL = 1e-12


def _as_polygon(points) -> np.ndarray:
    P = np.asarray(points, dtype=float)
    if P.ndim != 2 or P.shape[1] < 2:
        raise OutlineError("outline must be an (n, 2) array of points")
    return P[:, :2]


def signed_area(points) -> float:
    """Shoelace area, positive for counter-clockwise loops."""
    P = _as_polygon(points)
    x, y = P[:, 0], P[:, 1]
    return 0.5 * float(np.dot(x, np.roll(y, -1)) - np.dot(np.roll(x, -1), y))


def is_clockwise(points) -> bool:
    P = _as_polygon(points)
    Q = np.roll(P, -1, axis=0)
    return float(np.sum((Q[:, 0] - P[:, 0]) * (Q[:, 1] + P[:, 1]))) > 0.0


def perimeter(points) -> float:
    P = _as_polygon(points)
    return float(np.linalg.norm(np.roll(P, -1, axis=0) - P, axis=1).sum())


def close_outline(points) -> np.ndarray:
    """Validate a user outline and return it without duplicate points.

    A repeated closing point and consecutive duplicates are dropped. Raises
    OutlineError for non-finite input, fewer than 3 distinct points or a loop
    with zero area.
    """
    P = _as_polygon(points)
    if P.shape[0] == 0:
        raise OutlineError("outline is empty")
    if not np.all(np.isfinite(P)):
        raise OutlineError("outline contains non-finite coordinates")
    keep = np.ones(P.shape[0], dtype=bool)
    keep[1:] = np.any(np.abs(np.diff(P, axis=0)) > _DUP_TOL, axis=1)
    P = P[keep]
    if P.shape[0] > 1 and np.all(np.abs(P[0] - P[-1]) <= _DUP_TOL):
        P = P[:-1]
    if P.shape[0] < 3:
        raise OutlineError(f"outline needs at least 3 distinct points, got {P.shape[0]}")
    if abs(signed_area(P)) <= _DUP_TOL:
        raise OutlineError("outline encloses zero area")
    return P.copy()


def reparameterize(points, spacing: float) -> np.ndarray:
    """Resample a closed polyline at uniform arc-length spacing.

    The number of samples is ``floor(total_length / spacing)`` and the actual
    spacing is ``total_length / count``, so the loop closes exactly. The first
    sample coincides with the first input point.

    Raises
    ------
    ValueError
        If ``spacing`` is not positive.
    OutlineError
        If fewer than 3 samples would result.
    """
    if not spacing > 0:
        raise ValueError("spacing must be positive")
    P = _as_polygon(points)
    loop = np.vstack([P, P[:1]])
    seg = np.linalg.norm(np.diff(loop, axis=0), axis=1)
    cum = np.concatenate([[0.0], np.cumsum(seg)])
    total = float(cum[-1])
    count = int(math.floor(total / spacing))
    if count < 3:
        raise OutlineError(
            f"outline length {total:.4g} is too short for spacing {spacing:.4g} ({count} samples)"
        )
    step = total / count
    s = np.arange(count, dtype=float) * step
    x = np.interp(s, cum, loop[:, 0])
    y = np.interp(s, cum, loop[:, 1])
    return np.column_stack([x, y])


def triangulate(points, segments: Optional[np.ndarray] = None, *, allow_steiner: bool = False) -> np.ndarray:
    """Constrained Delaunay triangulation of a simple polygon.

    Parameters
    ----------
    points : (n,2) array
    segments : (s,2) int array, optional
        Constraint edges. Defaults to the closed loop ``i -> i+1``.
    allow_steiner : bool, default False
        Triangle inserts extra vertices where constraint segments cross. With
        the default, that is reported as an OutlineError (self-intersection).

    Returns
    -------
    (m,3) int array of counter-clockwise triangles indexing ``points``.
    """
    P = _as_polygon(points)
    n = P.shape[0]
    if n < 3:
        raise OutlineError(f"triangulation needs at least 3 points, got {n}")
    if segments is None:
        idx = np.arange(n)
        segments = np.column_stack([idx, (idx + 1) % n])
    tri_input = {
        "vertices": np.ascontiguousarray(P, dtype=np.float64),
        "segments": np.ascontiguousarray(segments, dtype=np.int32),
    }
    # p: PSLG (constrained, exterior eaten), Q: quiet
    out = triangle.triangulate(tri_input, "pQ")
    tris = np.asarray(out.get("triangles", np.empty((0, 3))), dtype=np.int64).reshape(-1, 3)
    n_out = np.asarray(out["vertices"]).shape[0]
    if n_out != n and not allow_steiner:
        raise OutlineError(
            f"outline is self-intersecting: triangulation inserted {n_out - n} extra vertices"
        )
    if tris.shape[0] == 0:
        raise OutlineError("triangulation produced no triangles")
    return tris


def points_in_polygon(points, polygon) -> np.ndarray:
    """Even/odd ray-casting test for many points at once."""
    Q = np.asarray(points, dtype=float).reshape(-1, 2)
    poly = _as_polygon(polygon)
    x = Q[:, 0][:, None]
    y = Q[:, 1][:, None]
    xi, yi = poly[:, 0][None, :], poly[:, 1][None, :]
    xj = np.roll(poly[:, 0], 1)[None, :]
    yj = np.roll(poly[:, 1], 1)[None, :]
    straddles = (yi > y) != (yj > y)
    with np.errstate(divide="ignore", invalid="ignore"):
        x_cross = (xj - xi) * (y - yi) / (yj - yi) + xi
    hits = straddles & (x < x_cross)
    return (np.count_nonzero(hits, axis=1) % 2) == 1


def point_in_polygon(point, polygon) -> bool:
    return bool(points_in_polygon(np.asarray(point, dtype=float)[:2], polygon)[0])


def segment_distance(points, a, b) -> np.ndarray:
    """Distance from each point to the segment ``a-b``."""
    Q = np.asarray(points, dtype=float).reshape(-1, 2)
    a = np.asarray(a, dtype=float)[:2]
    b = np.asarray(b, dtype=float)[:2]
    ab = b - a
    denom = float(np.dot(ab, ab))
    if denom < 1e-24:
        return np.linalg.norm(Q - a, axis=1)
    t = np.clip((Q - a) @ ab / denom, 0.0, 1.0)
    return np.linalg.norm(Q - (a + t[:, None] * ab), axis=1)


def generate_triangle_grid(polygon, spacing: float) -> np.ndarray:
    """Triangular lattice points inside ``polygon``.

    Breadth-first flood fill from the vertex centroid. Lattice steps are
    ``(+-spacing, 0)`` and ``(+-spacing/2, +-spacing*sqrt(3)/2)``; only points
    that test inside the polygon are kept and expanded, so the fill stays in
    the component containing the seed.
    """
    if not spacing > 0:
        raise ValueError("spacing must be positive")
    poly = _as_polygon(polygon)
    centroid = poly.mean(axis=0)
    hx = 0.5 * spacing
    hy = 0.5 * math.sqrt(3.0) * spacing
    dx = (2, 1, -1, -2, -1, 1)
    dy = (0, 1, 1, 0, -1, -1)

    seen = {(0, 0)}
    queue = deque([(0, 0)])
    found = []
    while queue:
        i, j = queue.popleft()
        p = centroid + np.array([i * hx, j * hy])
        if not point_in_polygon(p, poly):
            continue
        found.append(p)
        for a, b in zip(dx, dy):
            key = (i + a, j + b)
            if key not in seen:
                seen.add(key)
                queue.append(key)
    if not found:
        return np.empty((0, 2), dtype=float)
    return np.vstack(found)
