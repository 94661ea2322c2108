import numpy as np
import pytest

from conftest import directed_edges_unique, undirected_edge_counts
from pytubegen.chords import build_chord_graph
from pytubegen.tube import generate_circle, generate_tube, ring_size, stitch_rings


def test_ring_size_is_even_and_bounded():
    for r in (0.1, 1.0, 3.3, 10.0, 47.0):
        n = ring_size(r, 2.0)
        assert n % 2 == 0
        assert n >= 4
    assert ring_size(10.0, 5.0) == 12


def test_generate_circle_layout():
    c = np.array([1.0, 2.0, 0.0])
    d = np.array([3.0, 4.0, 0.0])
    ring = generate_circle(c, d, 5.0, 2.0)
    n = ring.shape[0]
    assert np.allclose(np.linalg.norm(ring - c, axis=1), 5.0)
    assert np.allclose(ring[0], c + np.array([3.0, 4.0, 0.0]))
    assert np.allclose(ring[n // 2], c - np.array([3.0, 4.0, 0.0]))
    assert np.all(ring[1:n // 2, 2] > 0)
    assert np.all(ring[n // 2 + 1:, 2] < 0)


@pytest.mark.parametrize("n1,n2", [(8, 8), (6, 12), (12, 6), (10, 4), (1, 8), (8, 1)])
def test_stitch_rings_covers_each_ring_edge_once(n1, n2):
    def ring(n, x):
        if n == 1:
            return np.array([[x, 0.0, 0.0]])
        t = 2 * np.pi * np.arange(n) / n
        return np.column_stack([np.full(n, x), np.cos(t), np.sin(t)])

    F = stitch_rings(ring(n1, 0.0), ring(n2, 1.0))
    assert F.shape[0] == (n1 if n1 > 1 else 0) + (n2 if n2 > 1 else 0)
    assert directed_edges_unique(F)
    E = np.concatenate([F[:, [0, 1]], F[:, [1, 2]], F[:, [2, 0]]])
    undirected = {tuple(sorted(e)) for e in E.tolist()}
    for n, base in ((n1, 0), (n2, n1)):
        if n < 2:
            continue
        for i in range(n):
            assert tuple(sorted((base + i, base + (i + 1) % n))) in undirected


def test_strip_tube_is_closed_manifold(strip_mesh):
    chords = build_chord_graph(strip_mesh)
    tube = generate_tube(chords, 5.0)
    assert tube.diagnostics == []
    assert tube.n_chord_rings == chords.n_chords
    counts = undirected_edge_counts(tube.faces)
    assert np.all(counts == 2)
    # sphere topology: V - E + F = 2
    assert tube.n_vertices - counts.shape[0] + tube.n_faces == 2
    assert len(np.unique(tube.faces)) == tube.n_vertices


def test_y_tube_is_closed_manifold(y_mesh):
    chords = build_chord_graph(y_mesh)
    tube = generate_tube(chords, 5.0)
    assert tube.diagnostics == []
    assert tube.lid_vertices.size >= 2
    assert np.allclose(np.abs(tube.vertices[tube.lid_vertices, 2]), 1.0)
    counts = undirected_edge_counts(tube.faces)
    assert np.all(counts == 2)
    assert len(np.unique(tube.faces)) == tube.n_vertices


def test_tube_ring_bookkeeping(strip_mesh):
    chords = build_chord_graph(strip_mesh)
    tube = generate_tube(chords, 5.0)
    for i in range(tube.n_chord_rings):
        ring = tube.vertices[tube.ring(i)]
        center = chords.axis[i]
        assert np.allclose(np.linalg.norm(ring - center, axis=1), 0.5 * chords.lengths[i])
        assert tube.ring_chords[i] == i
    assert np.all(tube.ring_chords[tube.n_chord_rings:] == -1)
    idx = tube.chord_ring_indices()
    assert idx.shape[0] == int(tube.ring_sizes[:tube.n_chord_rings].sum())


def test_broken_junction_is_skipped_not_raised(y_mesh):
    chords = build_chord_graph(y_mesh)
    hub = chords.junctions[0]
    # tilt one junction chord out of the outline plane
    chords.directions[hub[0]] = np.array([0.0, 0.6, 0.8])
    tube = generate_tube(chords, 5.0)
    assert len(tube.diagnostics) == 1
    assert tube.diagnostics[0].kind == "junction"
    assert tube.n_faces > 0


def test_tube_to_trimesh(strip_mesh):
    tube = generate_tube(build_chord_graph(strip_mesh), 5.0)
    mesh = tube.to_trimesh()
    assert len(mesh.vertices) == tube.n_vertices
    assert mesh.is_watertight
