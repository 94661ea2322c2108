import numpy as np
import pytest
import scipy.sparse as sp

from pytubegen.errors import SolverError
from pytubegen.solver import diffuse, smooth


def path_laplacian(n: int) -> sp.csr_matrix:
    A = sp.diags([np.ones(n - 1), np.ones(n - 1)], [-1, 1], shape=(n, n))
    deg = np.asarray(A.sum(axis=1)).ravel()
    return (sp.diags(deg) - A).tocsr()


def test_diffuse_hard_ends_interpolates_linearly():
    L = path_laplacian(5)
    x = diffuse(L, hard=([0, 4], [0.0, 1.0]))
    assert np.allclose(x, np.linspace(0.0, 1.0, 5))


def test_smooth_hard_ends_interpolates_linearly():
    L = path_laplacian(6)
    x = smooth(L, hard=([0, 5], [2.0, 7.0]), smoothness=-3.0)
    assert np.allclose(x, np.linspace(2.0, 7.0, 6))


def test_hard_constraints_are_exact():
    L = path_laplacian(7)
    x = smooth(L, weak=([1, 2, 3], [5.0, -1.0, 4.0]), hard=([0, 6], [1.5, -2.5]), smoothness=0.7)
    assert x[0] == 1.5 and x[6] == -2.5


def test_multi_column_matches_single_columns():
    L = path_laplacian(8)
    idx = np.array([0, 3, 7])
    vals = np.array([[0.0, 1.0], [2.0, -1.0], [1.0, 0.5]])
    both = diffuse(L, weak=(idx, vals), smoothness=0.5)
    assert both.shape == (8, 2)
    for k in range(2):
        single = diffuse(L, weak=(idx, vals[:, k]), smoothness=0.5)
        assert np.allclose(both[:, k], single)


def test_weak_weights_pull_harder():
    L = path_laplacian(3)
    light = diffuse(L, weak=([0, 2], [0.0, 1.0]), weights=[1.0, 1.0])
    heavy = diffuse(L, weak=([0, 2], [0.0, 1.0]), weights=[1.0, 1e6])
    assert heavy[2] > light[2]
    assert abs(heavy[2] - 1.0) < 1e-4


def test_unconstrained_component_raises():
    # two disjoint edges, only the first one constrained
    L = sp.block_diag([path_laplacian(2), path_laplacian(2)]).tocsr()
    with pytest.raises(SolverError):
        diffuse(L, hard=([0], [1.0]))


def test_zero_smoothness_needs_every_node_constrained():
    L = path_laplacian(4)
    with pytest.raises(SolverError):
        smooth(L, weak=([0, 3], [0.0, 1.0]), smoothness=0.0)
    x = smooth(L, weak=(np.arange(4), [0.0, 1.0, 3.0, 2.0]), smoothness=0.0)
    assert np.allclose(x, [0.0, 1.0, 3.0, 2.0])


def test_isolated_nodes_are_nan():
    L = sp.block_diag([path_laplacian(3), sp.csr_matrix((2, 2))]).tocsr()
    x = diffuse(L, hard=([0, 2], [0.0, 2.0]))
    assert np.allclose(x[:3], [0.0, 1.0, 2.0])
    assert np.all(np.isnan(x[3:]))


def test_bad_constraints_rejected():
    L = path_laplacian(3)
    with pytest.raises(ValueError):
        diffuse(L, hard=([0, 0], [1.0, 2.0]))
    with pytest.raises(ValueError):
        diffuse(L, hard=([5], [1.0]))
    with pytest.raises(ValueError):
        diffuse(L, hard=([0], [1.0]), smoothness=-1.0)
