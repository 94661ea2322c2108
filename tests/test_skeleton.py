import numpy as np
import networkx as nx

from pytubegen.chords import build_chord_graph
from pytubegen.skeleton import Skeleton, chain_deviation, extract_skeleton


def test_chain_deviation_straight_and_offset():
    p0, p1 = [0.0, 0.0, 0.0], [10.0, 0.0, 0.0]
    straight = chain_deviation([5.0, 0.0, 0.0], p0, p1, 4.0, 4.0, 4.0, [0.0, 1.0, 0.0])
    assert abs(straight) < 1e-12
    offset = chain_deviation([5.0, 1.0, 0.0], p0, p1, 4.0, 4.0, 4.0, [0.0, 1.0, 0.0])
    assert np.isclose(offset, 1.0)
    # chord sign does not matter
    flipped = chain_deviation([5.0, 1.0, 0.0], p0, p1, 4.0, 4.0, 4.0, [0.0, -1.0, 0.0])
    assert np.isclose(flipped, offset)


def test_straight_tube_gives_single_bone(strip_mesh):
    chords = build_chord_graph(strip_mesh)
    skel = extract_skeleton(chords, deviation=1e3, length=1.0, pruning=0.0)
    assert skel.n_joints == 2
    assert skel.n_bones == 1
    xs = sorted(skel.joints[:, 0])
    assert np.allclose(xs, [0.0, 60.0])
    assert np.allclose(skel.joints[:, 1:], 0.0)
    assert np.isclose(skel.bone_lengths()[0], 60.0)


def test_default_thresholds_keep_a_chain(strip_mesh):
    chords = build_chord_graph(strip_mesh)
    skel = extract_skeleton(chords)
    assert skel.is_tree()
    assert skel.n_joints >= 2
    degrees = [d for _, d in skel.graph.degree()]
    assert max(degrees) <= 2


def test_y_skeleton_has_a_hub(y_mesh):
    chords = build_chord_graph(y_mesh)
    skel = extract_skeleton(chords, deviation=1e3, length=1.0, pruning=0.0)
    assert skel.n_joints == 4
    assert skel.n_bones == 3
    assert skel.is_tree()
    G = skel.graph
    hub = max(G.degree(), key=lambda kv: kv[1])[0]
    assert G.degree(hub) == 3
    assert np.allclose(skel.joints[hub], 0.0, atol=1e-9)


def test_pruning_trims_one_arm_then_dissolves_the_hub(y_mesh):
    chords = build_chord_graph(y_mesh)
    skel = extract_skeleton(chords, deviation=1e3, length=1.0, pruning=1e3)
    assert skel.is_tree()
    # one arm is trimmed; the hub is left with two bones and collapses
    assert skel.n_joints == 2
    assert skel.n_bones == 1
    assert all(d == 1 for _, d in skel.graph.degree())


def test_short_bones_are_merged(strip_mesh):
    chords = build_chord_graph(strip_mesh)
    skel = extract_skeleton(chords, deviation=0.0, length=15.0, pruning=0.0)
    assert skel.is_tree()
    assert skel.n_bones == 1 or np.all(skel.bone_lengths() >= 15.0)


def test_skeleton_container():
    skel = Skeleton([[0, 0, 0], [1, 0, 0], [1, 1, 0]], [[0, 1], [1, 2]])
    assert skel.joints.dtype == float
    assert skel.bones.dtype == np.int64
    assert isinstance(skel.graph, nx.Graph)
    assert np.allclose(skel.bone_lengths(), [1.0, 1.0])
    assert skel.is_tree()
    assert not Skeleton([[0, 0, 0], [1, 0, 0], [1, 1, 0]], [[0, 1], [1, 2], [0, 2]]).is_tree()
