import numpy as np
import pytest

from pytubegen.errors import OutlineError, TopologyError
from pytubegen.geometry2d import signed_area
from pytubegen.planar import PlanarMesh, build_planar_mesh, prune_planar_mesh


def star(points: int = 5, outer: float = 60.0, inner: float = 20.0, samples: int = 10) -> np.ndarray:
    out = []
    for k in range(2 * points):
        r = outer if k % 2 == 0 else inner
        a = np.pi * k / points
        out.append([r * np.cos(a), r * np.sin(a)])
    out = np.asarray(out)
    # densify each side so the shape survives resampling
    dense = []
    for i in range(len(out)):
        p, q = out[i], out[(i + 1) % len(out)]
        for t in np.linspace(0.0, 1.0, samples, endpoint=False):
            dense.append(p + t * (q - p))
    return np.asarray(dense)


def test_build_planar_mesh_centers_and_orients():
    outline = star() + np.array([500.0, -200.0])
    mesh = build_planar_mesh(outline[::-1], isodistance=5.0)
    assert np.allclose(mesh.origin, [500.0, -200.0], atol=1.0)
    assert np.all(np.abs(mesh.vertices.mean(axis=0)) < 5.0)
    for f in mesh.faces:
        assert signed_area(mesh.vertices[f]) > 0


def test_planar_mesh_adjacency_is_consistent(strip_mesh):
    mesh = strip_mesh
    assert mesh.edges.shape[0] == len({tuple(e) for e in mesh.edges})
    assert np.all(mesh.edges[:, 0] < mesh.edges[:, 1])
    # Euler for a disk: V - E + F = 1
    assert mesh.n_vertices - mesh.edges.shape[0] + mesh.n_faces == 1
    for f, nbrs in enumerate(mesh.face_adjacency):
        for g in nbrs:
            assert f in mesh.face_adjacency[g]
    for e in mesh.interior_edges:
        a, b = mesh.edges[e]
        assert mesh.edge_index(int(b), int(a)) == e


def test_non_manifold_planar_mesh_rejected():
    V = np.array([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0], [0.0, -1.0], [1.0, 1.0]])
    F = np.array([[0, 1, 2], [1, 0, 3], [0, 1, 4]])
    with pytest.raises(TopologyError):
        PlanarMesh(V, F)


def test_pruning_is_idempotent():
    mesh = build_planar_mesh(star(), isodistance=4.0)
    once = prune_planar_mesh(mesh, branch_min_length=25.0)
    twice = prune_planar_mesh(once, branch_min_length=25.0)
    assert once.n_faces <= mesh.n_faces
    assert twice.n_faces == once.n_faces
    assert np.array_equal(twice.faces, once.faces)


def test_pruning_zero_threshold_keeps_everything():
    mesh = build_planar_mesh(star(), isodistance=4.0)
    kept = prune_planar_mesh(mesh, branch_min_length=0.0)
    assert kept.n_faces == mesh.n_faces


def test_pruning_removes_short_side_branch():
    # a long bar with a one-triangle stub on its side
    V = np.array([
        [0.0, 0.0], [10.0, 0.0], [20.0, 0.0], [30.0, 0.0],
        [30.0, 10.0], [20.0, 10.0], [10.0, 10.0], [0.0, 10.0],
        [15.0, 14.0],
    ])
    F = np.array([
        [0, 1, 7], [1, 6, 7], [1, 2, 6], [2, 5, 6], [2, 3, 5], [3, 4, 5],
        [6, 5, 8],
    ])
    mesh = PlanarMesh(V, F)
    pruned = prune_planar_mesh(mesh, branch_min_length=3.0)
    assert pruned.n_faces == mesh.n_faces - 1
    assert not np.any(np.all(np.isin(pruned.faces, [5, 6, 8]), axis=1))


def test_build_planar_mesh_errors():
    with pytest.raises(ValueError):
        build_planar_mesh(star(), isodistance=0.0)
    with pytest.raises(OutlineError):
        build_planar_mesh([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0]], isodistance=5.0)
