import numpy as np
import pytest
import trimesh as tm

from conftest import directed_edges_unique, undirected_edge_counts
from pytubegen.errors import Deadline, DeadlineExceeded
from pytubegen.remesh import edge_lengths, isometric_remesh, vertex_valences


def sphere(subdivisions: int = 2, radius: float = 10.0):
    mesh = tm.primitives.Sphere(radius=radius, subdivisions=subdivisions)
    return np.asarray(mesh.vertices), np.asarray(mesh.faces)


def test_edge_lengths_and_valences():
    V, F = sphere(1)
    lengths = edge_lengths(V, F)
    assert lengths.shape[0] == 3 * F.shape[0] // 2
    assert np.all(lengths > 0)
    val = vertex_valences(F)
    assert val.shape[0] == V.shape[0]
    assert val.sum() == 2 * lengths.shape[0]


def test_remesh_moves_edges_toward_target():
    V, F = sphere(2)
    before = edge_lengths(V, F).mean()
    target = 0.6 * before
    V2, F2 = isometric_remesh(V, F, iterations=4, length=target)
    after = edge_lengths(V2, F2)
    assert abs(after.mean() - target) < abs(before - target)
    assert after.max() < 2.5 * target


def test_remesh_keeps_closed_oriented_surface():
    V, F = sphere(2)
    V2, F2 = isometric_remesh(V, F, iterations=3, length=2.0)
    assert np.all(undirected_edge_counts(F2) == 2)
    assert directed_edges_unique(F2)
    mesh = tm.Trimesh(vertices=V2, faces=F2, process=False)
    assert mesh.euler_number == 2
    assert mesh.volume > 0
    # vertices stay close to the sphere
    r = np.linalg.norm(V2, axis=1)
    assert np.all(np.abs(r - 10.0) < 1.0)


def test_remesh_valence_stays_regular():
    V, F = sphere(2)
    V2, F2 = isometric_remesh(V, F, iterations=4, length=2.5)
    val = vertex_valences(F2, V2.shape[0])
    assert abs(val.mean() - 6.0) < 0.2
    assert np.mean(np.abs(val - 6)) < 1.0


def test_remesh_zero_iterations_is_identity():
    V, F = sphere(1)
    V2, F2 = isometric_remesh(V, F, iterations=0)
    assert np.array_equal(V2, V)
    assert np.array_equal(F2, F)


def test_remesh_deadline():
    V, F = sphere(2)
    with pytest.raises(DeadlineExceeded):
        isometric_remesh(V, F, iterations=3, deadline=Deadline(0.0))


def test_remesh_argument_checks():
    V, F = sphere(1)
    with pytest.raises(ValueError):
        isometric_remesh(V, F, iterations=-1)
    with pytest.raises(ValueError):
        isometric_remesh(V, F, length=0.0)
