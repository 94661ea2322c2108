from __future__ import annotations

import logging
from typing import Optional

import numpy as np
import scipy.sparse as sp

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


def _as_faces(F) -> np.ndarray:
    F = np.asarray(F, dtype=np.int64)
    if F.ndim != 2 or F.shape[1] != 3:
        raise ValueError("faces must have shape (m,3)")
    return F


def unique_edges(F: np.ndarray) -> np.ndarray:
    """Sorted undirected edges ``(e,2)`` with ``e[:,0] < e[:,1]``."""
    F = _as_faces(F)
    E = np.concatenate([F[:, [0, 1]], F[:, [1, 2]], F[:, [2, 0]]], axis=0)
    E = np.sort(E, axis=1)
    return np.unique(E, axis=0)


def uniform_adjacency(F: np.ndarray, n: Optional[int] = None) -> sp.csr_matrix:
    """Symmetric 0/1 vertex adjacency of a triangle mesh."""
    F = _as_faces(F)
    if n is None:
        n = int(F.max()) + 1 if F.size else 0
    E = unique_edges(F)
    I = np.concatenate([E[:, 0], E[:, 1]])
    J = np.concatenate([E[:, 1], E[:, 0]])
    A = sp.coo_matrix((np.ones(I.shape[0]), (I, J)), shape=(n, n)).tocsr()
    return A


def topological_laplacian(F: np.ndarray, n: Optional[int] = None, *, verbose: bool = False) -> sp.csr_matrix:
    """Uniform (topological) Laplacian of a polygon soup's edge graph.

    L(u,u) = 1 for every vertex referenced by a face
    L(u,v) = -2/deg(u) for each undirected edge (u,v)

    ``deg(u)`` counts face-edge incidences of ``u`` (two per incident face),
    so on a closed manifold ``-2/deg(u) = -1/valence(u)`` and rows sum to zero.
    The matrix is not symmetric in general.
    """
    F = _as_faces(F)
    if n is None:
        n = int(F.max()) + 1 if F.size else 0
    if verbose:
        logger.info("Building topological Laplacian for %d vertices, %d faces", n, F.shape[0])

    deg = np.zeros(n, dtype=float)
    for k in range(3):
        np.add.at(deg, F[:, k], 2.0)
    E = unique_edges(F)
    u, v = E[:, 0], E[:, 1]

    used = np.flatnonzero(deg > 0)
    I = np.concatenate([used, u, v])
    J = np.concatenate([used, v, u])
    W = np.concatenate([np.ones(used.shape[0]), -2.0 / deg[u], -2.0 / deg[v]])
    L = sp.coo_matrix((W, (I, J)), shape=(n, n)).tocsr()
    if verbose:
        logger.info("Topological Laplacian built: nnz=%d", L.nnz)
    return L


def _cotangents(V: np.ndarray, F: np.ndarray, eps: float = 1e-12):
    # cotangent of the angle at corner k, opposite edge (k+1, k+2)
    cots = []
    for k in range(3):
        p = V[F[:, k]]
        a = V[F[:, (k + 1) % 3]] - p
        b = V[F[:, (k + 2) % 3]] - p
        cross = np.linalg.norm(np.cross(a, b), axis=1)
        dot = np.einsum("ij,ij->i", a, b)
        cot = np.zeros(F.shape[0], dtype=float)
        ok = cross > eps
        cot[ok] = dot[ok] / cross[ok]
        cots.append(cot)
    return cots


def geometric_laplacian(V: np.ndarray, F: np.ndarray, *, secure: bool = False, verbose: bool = False) -> sp.csr_matrix:
    """Cotangent-weighted Laplacian used for skin-weight diffusion.

    Every triangle adds half the cotangent of each corner to the edge facing
    that corner, with a negative sign off the diagonal; the diagonal takes the
    negated row sum so constant fields lie in the kernel. 2D vertices are
    treated as lying in z = 0 so the same matrix serves planar meshes.

    ``secure=True`` drops obtuse corners (negative cotangents) so every
    off-diagonal entry is non-positive. Zero-area triangles contribute nothing.

    Returns an (n,n) csr_matrix.
    """
    V = np.asarray(V, dtype=float)
    if V.ndim != 2 or V.shape[1] not in (2, 3):
        raise ValueError("vertices must have shape (n,3)")
    if V.shape[1] == 2:
        V = np.column_stack([V, np.zeros(V.shape[0])])
    F = _as_faces(F)
    n = V.shape[0]
    if verbose:
        logger.info("Building cotangent Laplacian for %d vertices, %d faces", n, F.shape[0])
    cot = np.column_stack(_cotangents(V, F))
    if secure:
        cot = np.maximum(cot, 0.0)

    # corner k faces the half-edge F[:, k+1] -> F[:, k+2]
    tail = F[:, [1, 2, 0]].ravel()
    head = F[:, [2, 0, 1]].ravel()
    w = 0.5 * cot.ravel()
    rows = np.concatenate([tail, head])
    cols = np.concatenate([head, tail])
    off = sp.coo_matrix((-np.concatenate([w, w]), (rows, cols)), shape=(n, n))
    diag = np.bincount(rows, weights=np.concatenate([w, w]), minlength=n)
    L = (off + sp.diags(diag)).tocsr()
    L.eliminate_zeros()
    if verbose:
        logger.info("Laplacian built: nnz=%d", L.nnz)
    return L


def laplacian_triplets(L: sp.spmatrix) -> np.ndarray:
    """Export a Laplacian as ``(weight, row, col)`` rows, shape (nnz, 3)."""
    C = sp.coo_matrix(L)
    return np.column_stack([C.data, C.row.astype(float), C.col.astype(float)])
