"""
Skin weights by harmonic diffusion over the surface.

Each bone gets one scalar field on the mesh vertices. Fields are pinned (or
pulled) to 1 near their own bone and to 0 elsewhere, and spread with the
cotangent Laplacian; every field reuses the same factorisation. The dense
result is normalised per vertex and truncated to the four strongest bones.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple, Union

import numpy as np

from .errors import Deadline
from .laplacian import geometric_laplacian
from .solver import diffuse

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

MAX_INFLUENCES = 4
WEAK_WEIGHT = 100.0
DISTANCE_EPS = 1e-3


@dataclass(eq=False)
class SkinWeights:
    """
    Attributes:
        indices: (n,k) influencing bone (or joint) ids per vertex.
        weights: (n,k) matching weights; each row sums to 1.
    """

    indices: np.ndarray
    weights: np.ndarray

    def __post_init__(self):
        self.indices = np.asarray(self.indices, dtype=np.int64)
        self.weights = np.asarray(self.weights, dtype=float)
        if self.indices.shape != self.weights.shape:
            raise ValueError("indices and weights must have the same shape")

    @property
    def n_vertices(self) -> int:
        return int(self.indices.shape[0])

    def to_dense(self, n_bones: int) -> np.ndarray:
        W = np.zeros((self.n_vertices, n_bones), dtype=float)
        rows = np.repeat(np.arange(self.n_vertices), self.indices.shape[1])
        np.add.at(W, (rows, self.indices.ravel()), self.weights.ravel())
        return W


def _segment_projection(P: np.ndarray, a: np.ndarray, b: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Clamped projection parameter ``t`` and distance from each point to segment ab."""
    ab = b - a
    den = float(ab @ ab)
    if den < 1e-12:
        t = np.zeros(P.shape[0])
    else:
        t = np.clip((P - a) @ ab / den, 0.0, 1.0)
    d = np.linalg.norm(P - (a + t[:, None] * ab), axis=1)
    return t, d


def closest_bones(vertices: np.ndarray, joints: np.ndarray, bones: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Nearest bone segment and distance to it, per vertex.

    Returns ``(bone_ids (n,), distances (n,))``. Ties go to the lower bone id.
    """
    V = np.asarray(vertices, dtype=float)
    J = np.asarray(joints, dtype=float)
    B = np.asarray(bones, dtype=np.int64).reshape(-1, 2)
    if B.shape[0] == 0:
        raise ValueError("skeleton has no bones")
    best = np.full(V.shape[0], np.inf)
    which = np.zeros(V.shape[0], dtype=np.int64)
    for k, (i0, i1) in enumerate(B):
        _, d = _segment_projection(V, J[i0], J[i1])
        closer = d < best
        best[closer] = d[closer]
        which[closer] = k
    return which, best


def normalize_weights(W: np.ndarray) -> np.ndarray:
    """Clip negatives and scale rows to sum 1; all-zero rows go fully to bone 0."""
    W = np.clip(np.asarray(W, dtype=float), 0.0, None)
    W = np.nan_to_num(W, nan=0.0)
    s = W.sum(axis=1)
    zero = s <= 0
    out = np.zeros_like(W)
    out[~zero] = W[~zero] / s[~zero, None]
    if W.shape[1]:
        out[zero, 0] = 1.0
    return out


def truncate_weights(W: np.ndarray, k: int = MAX_INFLUENCES) -> Tuple[np.ndarray, np.ndarray]:
    """Keep the ``k`` strongest influences per row, renormalised.

    Returns ``(indices, weights)``, both ``(n, k)``. Rows with fewer than ``k``
    columns available are zero-padded (index 0, weight 0).
    """
    W = normalize_weights(W)
    n, b = W.shape
    keep = min(k, b)
    order = np.argsort(-W, axis=1, kind="stable")[:, :keep]
    vals = np.take_along_axis(W, order, axis=1)
    s = vals.sum(axis=1, keepdims=True)
    vals = np.divide(vals, s, out=np.zeros_like(vals), where=s > 0)
    vals[s[:, 0] <= 0, 0] = 1.0
    indices = np.zeros((n, k), dtype=np.int64)
    weights = np.zeros((n, k), dtype=float)
    indices[:, :keep] = order
    weights[:, :keep] = vals
    return indices, weights


def compute_skin_weights(
    vertices: np.ndarray,
    faces: np.ndarray,
    joints: np.ndarray,
    bones: np.ndarray,
    *,
    ring_groups: Optional[Sequence[np.ndarray]] = None,
    deadline: Union[None, float, Deadline] = None,
    verbose: bool = False,
    log: Optional[logging.Logger] = None,
) -> np.ndarray:
    """Dense per-bone skin weights.

    Parameters
    ----------
    vertices : (n,3) float array
    faces : (m,3) int array
    joints : (k,3) float array
    bones : (b,2) int array
    ring_groups : sequence of vertex id arrays, optional
        Cross-section rings of the tube. When given, every ring is a hard
        constraint: 1 for the bone closest to the ring centre, 0 for the
        others. Otherwise every vertex is a weak constraint toward its closest
        bone with weight ``100 / max(d, eps)^2``.
    deadline : float seconds or Deadline, optional
        All bone columns share one factorisation and one multi-column solve,
        so the deadline is checked once before that solve and once after it,
        not per bone. A solve that is already running is not interrupted.

    Returns
    -------
    (n, b) array of raw diffused weights (not normalised).
    """
    _log = log or logger
    dl = Deadline.coerce(deadline)
    V = np.asarray(vertices, dtype=float)
    J = np.asarray(joints, dtype=float)
    B = np.asarray(bones, dtype=np.int64).reshape(-1, 2)
    n, nb = V.shape[0], B.shape[0]
    if nb == 0:
        raise ValueError("skeleton has no bones")

    L = geometric_laplacian(V, faces)
    dl.check("skin Laplacian")
    if ring_groups:
        idx = []
        vals = []
        for ring in ring_groups:
            ring = np.asarray(ring, dtype=np.int64)
            if ring.size == 0:
                continue
            bone, _ = closest_bones(V[ring].mean(axis=0, keepdims=True), J, B)
            row = np.zeros(nb)
            row[bone[0]] = 1.0
            idx.append(ring)
            vals.append(np.tile(row, (ring.size, 1)))
        idx = np.concatenate(idx)
        vals = np.vstack(vals)
        idx, first = np.unique(idx, return_index=True)
        W = diffuse(L, hard=(idx, vals[first]), smoothness=1.0, verbose=verbose, log=_log)
        mode = "ring"
    else:
        bone, dist = closest_bones(V, J, B)
        targets = np.zeros((n, nb))
        targets[np.arange(n), bone] = 1.0
        wt = WEAK_WEIGHT / np.maximum(dist, DISTANCE_EPS) ** 2
        W = diffuse(L, weak=(np.arange(n), targets), smoothness=1.0, weights=wt, verbose=verbose, log=_log)
        mode = "nearest-bone"
    dl.check("skin diffusion")
    if verbose:
        _log.info("Skin weights (%s constraints): %d vertices, %d bones", mode, n, nb)
    return np.nan_to_num(W, nan=0.0)


def joint_skin_weights(
    vertices: np.ndarray,
    joints: np.ndarray,
    bones: np.ndarray,
    skin: Union[SkinWeights, np.ndarray],
    k: int = MAX_INFLUENCES,
) -> SkinWeights:
    """Spread bone weights onto joints.

    A vertex's weight for bone ``(j0, j1)`` is split ``(1 - t, t)`` between
    the joints, with ``t`` the clamped projection of the vertex onto the bone
    (``t = 0.5`` for bones of near-zero length). The ``k`` strongest joints are
    kept and renormalised; missing slots are zero.
    """
    V = np.asarray(vertices, dtype=float)
    J = np.asarray(joints, dtype=float)
    B = np.asarray(bones, dtype=np.int64).reshape(-1, 2)
    W = skin.to_dense(B.shape[0]) if isinstance(skin, SkinWeights) else np.asarray(skin, dtype=float)
    out = np.zeros((V.shape[0], J.shape[0]))
    for b, (j0, j1) in enumerate(B):
        a, c = J[j0], J[j1]
        if float((c - a) @ (c - a)) < 1e-6:
            t = np.full(V.shape[0], 0.5)
        else:
            t, _ = _segment_projection(V, a, c)
        out[:, j0] += W[:, b] * (1.0 - t)
        out[:, j1] += W[:, b] * t
    indices, weights = truncate_weights(out, k)
    return SkinWeights(indices, weights)
