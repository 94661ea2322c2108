from __future__ import annotations

import logging
from typing import Optional, Tuple

import numpy as np
import scipy.sparse as sp
import scipy.sparse.linalg as spla
from scipy.sparse.csgraph import connected_components

from .errors import SolverError

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

Constraint = Tuple[np.ndarray, np.ndarray]


def _parse_constraint(constraint: Optional[Constraint], n: int, name: str):
    if constraint is None:
        return np.empty(0, dtype=np.int64), None
    idx, vals = constraint
    idx = np.asarray(idx, dtype=np.int64).ravel()
    vals = np.asarray(vals, dtype=float)
    if vals.ndim == 0:
        vals = np.full(idx.shape[0], float(vals))
    if vals.shape[0] != idx.shape[0]:
        raise ValueError(f"{name} constraints: {idx.shape[0]} indices but {vals.shape[0]} values")
    if idx.size and (idx.min() < 0 or idx.max() >= n):
        raise ValueError(f"{name} constraint index out of range [0, {n})")
    if np.unique(idx).shape[0] != idx.shape[0]:
        raise ValueError(f"{name} constraints contain duplicate indices")
    if not np.all(np.isfinite(vals)):
        raise ValueError(f"{name} constraint values must be finite")
    return idx, vals


def _columns(*vals) -> int:
    cols = {1 if v.ndim == 1 else v.shape[1] for v in vals if v is not None}
    if len(cols) > 1:
        raise ValueError("weak and hard constraint values must have the same number of columns")
    return cols.pop() if cols else 1


def _as_2d(vals: Optional[np.ndarray], k: int, m: int) -> np.ndarray:
    if vals is None:
        return np.zeros((k, m), dtype=float)
    return vals.reshape(k, m)


class _System:
    """Free/hard partition of a Laplacian shared by smooth() and diffuse()."""

    def __init__(self, L, weak, hard, weights, smoothness: float):
        L = sp.csr_matrix(L, dtype=float)
        if L.shape[0] != L.shape[1]:
            raise ValueError("Laplacian must be square")
        n = L.shape[0]
        self.n = n
        w_idx, w_val = _parse_constraint(weak, n, "weak")
        h_idx, h_val = _parse_constraint(hard, n, "hard")
        self.m = _columns(w_val, h_val)
        self.squeeze = all(v is None or v.ndim == 1 for v in (w_val, h_val))
        w_val = _as_2d(w_val, w_idx.shape[0], self.m)
        h_val = _as_2d(h_val, h_idx.shape[0], self.m)

        if weights is None:
            w_wt = np.ones(w_idx.shape[0], dtype=float)
        else:
            w_wt = np.asarray(weights, dtype=float).ravel()
            if np.ndim(weights) == 0:
                w_wt = np.full(w_idx.shape[0], float(weights))
            if w_wt.shape[0] != w_idx.shape[0]:
                raise ValueError("weights must have one entry per weak constraint")
            if np.any(~np.isfinite(w_wt)) or np.any(w_wt <= 0):
                raise ValueError("weak constraint weights must be positive and finite")

        hard_mask = np.zeros(n, dtype=bool)
        hard_mask[h_idx] = True
        # a hard constraint wins over a weak one on the same node
        keep = ~hard_mask[w_idx]
        w_idx, w_val, w_wt = w_idx[keep], w_val[keep], w_wt[keep]

        structural = (np.diff(L.indptr) > 0) | (np.bincount(L.indices, minlength=n) > 0)
        active = structural.copy()
        active[w_idx] = True
        active[h_idx] = True

        free = np.flatnonzero(active & ~hard_mask)
        pos = np.full(n, -1, dtype=np.int64)
        pos[free] = np.arange(free.shape[0])

        self.L = L
        self.smoothness = float(smoothness)
        self.free = free
        self.pos = pos
        self.h_idx, self.h_val = h_idx, h_val
        self.w_idx, self.w_val, self.w_wt = w_idx, w_val, w_wt
        self._check_constrained(hard_mask)

        self.Lff = L[free][:, free]
        self.Lfh = L[free][:, h_idx]

    def _check_constrained(self, hard_mask: np.ndarray) -> None:
        if self.free.shape[0] == 0:
            return
        A = abs(self.L) + abs(self.L.T)
        ncomp, labels = connected_components(A, directed=False)
        anchored = np.zeros(ncomp, dtype=bool)
        anchored[labels[self.w_idx]] = True
        anchored[labels[self.h_idx]] = True
        loose = np.unique(labels[self.free][~anchored[labels[self.free]]])
        if loose.size:
            raise SolverError(
                f"{loose.size} connected component(s) carry no weak or hard constraint; "
                "the normal equations are singular"
            )
        if self.smoothness == 0.0:
            weak_free = np.zeros(self.n, dtype=bool)
            weak_free[self.w_idx] = True
            if not np.all(weak_free[self.free]):
                raise SolverError("zero smoothness leaves unconstrained nodes undetermined")

    def solve(self, A: sp.spmatrix, b: np.ndarray, log: logging.Logger, verbose: bool) -> np.ndarray:
        N = (A.T @ A).tocsc()
        rhs = np.asarray(A.T @ b)
        if verbose:
            log.info("Solving normal equations: %d unknowns, %d rhs columns, nnz=%d", N.shape[0], rhs.shape[1], N.nnz)
        try:
            solve = spla.factorized(N)
            X = np.column_stack([solve(rhs[:, k]) for k in range(rhs.shape[1])])
        except RuntimeError as exc:
            raise SolverError(f"factorisation failed: {exc}") from exc
        if not np.all(np.isfinite(X)):
            raise SolverError("normal equations produced non-finite values")
        return X

    def assemble(self, X: Optional[np.ndarray]) -> np.ndarray:
        out = np.full((self.n, self.m), np.nan, dtype=float)
        out[self.h_idx] = self.h_val
        if X is not None:
            out[self.free] = X
        return out[:, 0] if self.squeeze else out


def smooth(
    L: sp.spmatrix,
    weak: Optional[Constraint] = None,
    hard: Optional[Constraint] = None,
    smoothness: float = 1.0,
    *,
    weights: Optional[np.ndarray] = None,
    verbose: bool = False,
    log: Optional[logging.Logger] = None,
) -> np.ndarray:
    """Least-squares smoothing of a scalar (or vector) field over a graph.

    Minimises

        || smoothness * L_ff x_f + smoothness * L_fh x_h ||^2 + sum_i w_i (x_i - t_i)^2

    over the free nodes ``f``. Hard-constrained nodes ``h`` are substituted and
    removed from the unknowns, so the solved system has one row/column per free
    node. Only the magnitude of ``smoothness`` matters; a negative value (e.g.
    ``log(0.1)``) behaves like its absolute value.

    Parameters
    ----------
    L : (n,n) sparse matrix
        Graph Laplacian (topological or geometric).
    weak : (indices, values), optional
        Soft targets. ``values`` may be ``(k,)`` or ``(k,m)`` to solve m fields
        with one factorisation.
    hard : (indices, values), optional
        Fixed values, echoed unchanged in the result.
    smoothness : float, default 1.0
    weights : float or (k,) array, optional
        Per weak-constraint weight, default 1.
    verbose : bool, default False
    log : logging.Logger, optional

    Returns
    -------
    (n,) or (n,m) array. Nodes not touched by L and not constrained are NaN.

    Raises
    ------
    SolverError
        When a component with free nodes has no constraint, or the system is
        singular.
    """
    _log = log or logger
    S = _System(L, weak, hard, weights, smoothness)
    if S.free.shape[0] == 0:
        return S.assemble(None)
    s = S.smoothness
    nf = S.free.shape[0]
    nw = S.w_idx.shape[0]

    sq = np.sqrt(S.w_wt)
    P = sp.coo_matrix((sq, (np.arange(nw), S.pos[S.w_idx])), shape=(nw, nf))
    A = sp.vstack([s * S.Lff, P], format="csr")
    b_top = -s * np.asarray(S.Lfh @ S.h_val).reshape(nf, S.m)
    b = np.vstack([b_top, sq[:, None] * S.w_val])
    return S.assemble(S.solve(A, b, _log, verbose))


def diffuse(
    L: sp.spmatrix,
    weak: Optional[Constraint] = None,
    hard: Optional[Constraint] = None,
    smoothness: float = 1.0,
    *,
    weights: Optional[np.ndarray] = None,
    verbose: bool = False,
    log: Optional[logging.Logger] = None,
) -> np.ndarray:
    """Diffuse constrained values across a graph.

    Builds the square system ``(smoothness * L_ff + W) x_f = W t - smoothness * L_fh x_h``
    (``W`` the diagonal of weak weights) and solves it through its normal
    equations. Each column of ``values`` is one diffused field; all columns
    share a single factorisation. Unlike :func:`smooth`, the sign of
    ``smoothness`` matters here and it must be non-negative.

    Parameters and return value as for :func:`smooth`.
    """
    if smoothness < 0:
        raise ValueError("diffuse() needs a non-negative smoothness")
    _log = log or logger
    S = _System(L, weak, hard, weights, smoothness)
    if S.free.shape[0] == 0:
        return S.assemble(None)
    s = S.smoothness
    nf = S.free.shape[0]

    d = np.zeros(nf, dtype=float)
    d[S.pos[S.w_idx]] = S.w_wt
    A = (s * S.Lff + sp.diags(d)).tocsr()
    b = -s * np.asarray(S.Lfh @ S.h_val).reshape(nf, S.m)
    b[S.pos[S.w_idx]] += S.w_wt[:, None] * S.w_val
    return S.assemble(S.solve(A, b, _log, verbose))
