"""End-to-end checks of the planar -> chord -> tube -> skeleton stages on drawn shapes."""
import numpy as np
import pytest

from conftest import undirected_edge_counts
from pytubegen.chords import build_chord_graph, smooth_chords
from pytubegen.planar import build_planar_mesh, prune_planar_mesh
from pytubegen.skeleton import extract_skeleton
from pytubegen.tube import generate_tube


def star(outer: float = 100.0, inner: float = 35.0) -> np.ndarray:
    a = np.deg2rad(90.0 + 36.0 * np.arange(10))
    r = np.where(np.arange(10) % 2 == 0, outer, inner)
    return np.column_stack([r * np.cos(a), r * np.sin(a)])


def l_shape() -> np.ndarray:
    return np.array([[0.0, 0.0], [100.0, 0.0], [100.0, 30.0], [30.0, 30.0], [30.0, 100.0], [0.0, 100.0]])


def bar() -> np.ndarray:
    return np.array([[0.0, 0.0], [150.0, 0.0], [150.0, 30.0], [0.0, 30.0]])


OUTLINES = {
    "star": (star(), 10.0),
    "l_shape": (l_shape(), 5.0),
    "bar": (bar(), 5.0),
}


def chords_for(name: str):
    outline, iso = OUTLINES[name]
    planar = prune_planar_mesh(build_planar_mesh(outline, iso), 5.0)
    return smooth_chords(build_chord_graph(planar)), iso


@pytest.mark.parametrize("name", sorted(OUTLINES))
def test_tube_is_closed_manifold(name):
    chords, iso = chords_for(name)
    tube = generate_tube(chords, iso)
    assert tube.diagnostics == []
    assert np.all(undirected_edge_counts(tube.faces) == 2)
    assert tube.faces.min() >= 0 and tube.faces.max() < tube.n_vertices


@pytest.mark.parametrize("name", sorted(OUTLINES))
def test_skeleton_has_no_pass_through_joints(name):
    chords, _ = chords_for(name)
    skel = extract_skeleton(chords, deviation=1e6, length=1.0, pruning=30.0)
    assert skel.is_tree()
    assert skel.n_bones >= 1
    degrees = np.array([d for _, d in skel.graph.degree()])
    assert not np.any(degrees == 2)


def test_bar_skeleton_is_one_bone():
    chords, _ = chords_for("bar")
    skel = extract_skeleton(chords, deviation=1e6, length=1.0, pruning=30.0)
    assert skel.n_joints == 2
    assert skel.n_bones == 1
    # centred bar: the bone runs along x through the middle
    assert np.allclose(skel.joints[:, 1], 0.0, atol=5.0)
    assert skel.bone_lengths()[0] > 80.0
