import numpy as np
import pytest
import trimesh as tm

from pytubegen import GenerationConfig, generate, loads, dumps
from pytubegen.errors import DeadlineExceeded, OutlineError, TopologyError
from pytubegen.pipeline import stage_chords, stage_fit, stage_planar, stage_remesh, stage_skeleton, stage_skin, stage_tube
from pytubegen.remesh import edge_lengths, isometric_remesh


def hexagon(radius: float = 50.0) -> np.ndarray:
    a = np.deg2rad(60.0 * np.arange(6))
    return np.column_stack([radius * np.cos(a), radius * np.sin(a)])


def check_rig(rig):
    n = rig.vertices.shape[0]
    assert n > 0 and rig.faces.shape[0] > 0
    assert rig.faces.min() >= 0 and rig.faces.max() < n
    assert np.all(np.isfinite(rig.vertices))
    assert rig.skeleton.is_tree()
    assert rig.bones.shape[0] >= 1
    assert rig.skin.indices.shape == (n, 4)
    assert np.allclose(rig.skin.weights.sum(axis=1), 1.0)
    assert np.all(np.count_nonzero(rig.skin.weights, axis=1) <= 4)
    assert np.all(rig.skin.indices < rig.bones.shape[0])


def test_hexagon_scenario():
    rig = generate(hexagon(), isodistance=10.0)
    check_rig(rig)
    assert rig.config.isodistance == 10.0
    assert np.allclose(rig.joints[:, 2], 0.0)
    assert isinstance(rig.diagnostics, list)
    # output is centred on the outline
    assert np.allclose(rig.planar.origin, 0.0, atol=1e-9)
    assert np.all(np.abs(rig.vertices[:, :2]) < 75.0)


def test_generate_without_remesh_uses_tube_vertices():
    rig = generate(hexagon(), GenerationConfig(isodistance=10.0, remesh_iterations=0))
    check_rig(rig)
    assert rig.vertices.shape[0] == rig.tube.n_vertices


def test_generate_without_fit():
    rig = generate(hexagon(), isodistance=10.0, fit=False, remesh_iterations=0)
    check_rig(rig)
    assert np.allclose(rig.vertices, rig.tube.vertices)


def test_generate_long_bar_gives_chain_skeleton():
    bar = np.array([[0.0, 0.0], [150.0, 0.0], [150.0, 30.0], [0.0, 30.0]])
    rig = generate(bar, isodistance=5.0, remesh_iterations=2)
    check_rig(rig)
    degrees = [d for _, d in rig.skeleton.graph.degree()]
    assert max(degrees) <= 3
    span = np.ptp(rig.joints[:, 0])
    assert span > 60.0


def test_generate_round_trips_through_json():
    rig = generate(hexagon(), isodistance=10.0, remesh_iterations=1)
    back = loads(dumps(rig))
    assert np.allclose(back.vertices, rig.vertices)
    assert np.array_equal(back.faces, rig.faces)
    assert np.array_equal(back.skin.indices, rig.skin.indices)
    assert np.allclose(back.skin.weights, rig.skin.weights)


def test_stages_compose():
    cfg = GenerationConfig(isodistance=10.0, remesh_iterations=1)
    planar = stage_planar(hexagon(), cfg)
    chords = stage_chords(planar, cfg)
    tube = stage_fit(stage_tube(chords, cfg), cfg)
    V, F = stage_remesh(tube.vertices, tube.faces, cfg)
    skel = stage_skeleton(chords, cfg)
    skin = stage_skin(V, F, skel, cfg)
    assert skin.n_vertices == V.shape[0]


def test_generate_rejects_bad_outlines():
    bowtie = np.array([[0.0, 0.0], [100.0, 100.0], [100.0, 0.0], [0.0, 100.0]])
    with pytest.raises(OutlineError):
        generate(bowtie, isodistance=10.0)
    with pytest.raises(OutlineError):
        generate([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0]], isodistance=10.0)
    with pytest.raises(ValueError):
        generate(hexagon(), isodistance=-1.0)


def test_generate_too_coarse_for_a_skeleton():
    # three samples, one triangle, no chords
    square = np.array([[0.0, 0.0], [15.0, 0.0], [15.0, 15.0], [0.0, 15.0]])
    with pytest.raises((TopologyError, OutlineError)):
        generate(square, isodistance=10.0)


def test_generate_timeout():
    with pytest.raises(DeadlineExceeded):
        generate(hexagon(), isodistance=10.0, timeout=0.0)


def test_default_remesh_target_is_mean_edge_length():
    mesh = tm.primitives.Sphere(radius=10.0, subdivisions=2)
    rng = np.random.default_rng(1)
    V = np.asarray(mesh.vertices) * rng.uniform(0.9, 1.1, size=(len(mesh.vertices), 1))
    F = np.asarray(mesh.faces)
    cfg = GenerationConfig(remesh_iterations=1)
    assert cfg.effective_remesh_length is None

    V1, F1 = stage_remesh(V, F, cfg)
    V2, F2 = isometric_remesh(V, F, 1, edge_lengths(V, F).mean())
    assert np.array_equal(F1, F2)
    assert np.allclose(V1, V2)

    # an explicit length wins over the mesh
    V3, _ = stage_remesh(V, F, cfg.replace(remesh_length=1.0))
    assert V3.shape[0] > V1.shape[0]
