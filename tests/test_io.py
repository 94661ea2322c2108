import json

import numpy as np
import pytest

from pytubegen.io import RiggedMesh, dumps, from_dict, loads, to_dict
from pytubegen.skin import SkinWeights, truncate_weights


def _rig(V, F, J, B, seed=0):
    rng = np.random.default_rng(seed)
    W = rng.uniform(0.0, 1.0, size=(len(V), len(B)))
    idx, wts = truncate_weights(W)
    return RiggedMesh(np.asarray(V, float), np.asarray(F), np.asarray(J, float), np.asarray(B), SkinWeights(idx, wts))


def _cases():
    tri = _rig([[0, 0, 0], [1, 0, 0], [0, 1, 0]], [[0, 1, 2]], [[0, 0, 0], [1, 0, 0]], [[0, 1]])
    quad = _rig(
        [[0, 0, 0], [1, 0, 0], [1, 1, 0], [0, 1, 0]],
        [[0, 1, 2], [0, 2, 3]],
        [[0, 0, 0], [0.5, 0.5, 0], [1, 1, 0]],
        [[0, 1], [1, 2]],
        seed=1,
    )
    pyramid = _rig(
        [[0, 0, 0], [1, 0, 0], [1, 1, 0], [0, 1, 0], [0.5, 0.5, 1]],
        [[0, 2, 1], [0, 3, 2], [0, 1, 4], [1, 2, 4], [2, 3, 4], [3, 0, 4]],
        [[0.5, 0.5, 0], [0.5, 0.5, 1]],
        [[0, 1]],
        seed=2,
    )
    far = _rig(
        np.array([[0, 0, 0], [1, 0, 0], [0, 1, 0]]) + 1e6,
        [[0, 1, 2]],
        np.array([[0, 0, 0], [1, 1, 0]]) + 1e6,
        [[0, 1]],
        seed=3,
    )
    branching = _rig(
        [[0, 0, 0], [2, 0, 0], [0, 2, 0], [-2, -2, 0], [0, 0, 1]],
        [[0, 1, 4], [0, 2, 4], [0, 3, 4]],
        [[0, 0, 0], [2, 0, 0], [0, 2, 0], [-2, -2, 0], [0, 0, 3]],
        [[0, 1], [0, 2], [0, 3], [0, 4], [1, 2]],
        seed=4,
    )
    return [tri, quad, pyramid, far, branching]


@pytest.mark.parametrize("rig", _cases())
def test_exchange_round_trip(rig):
    text = dumps(rig)
    back = loads(text)
    assert back.vertices.shape == rig.vertices.shape
    assert np.allclose(back.vertices, rig.vertices, rtol=0, atol=1e-9 * max(1.0, np.abs(rig.vertices).max()))
    assert np.array_equal(back.faces, rig.faces)
    assert np.allclose(back.joints, rig.joints)
    assert np.array_equal(back.bones, rig.bones)
    assert np.array_equal(back.skin.indices, rig.skin.indices)
    assert np.allclose(back.skin.weights, rig.skin.weights)
    assert np.allclose(back.skin.weights.sum(axis=1), 1.0)


def test_record_shape():
    rig = _cases()[0]
    data = rig.to_dict()
    assert set(data) == {"mesh3D", "skeleton", "skinWeights", "skinIndices", "version"}
    assert data["mesh3D"]["vertices"][1] == {"x": 1.0, "y": 0.0, "z": 0.0}
    assert data["skeleton"]["bones"] == [[0, 1]]
    assert len(data["skinWeights"][0]) == 4
    # plain JSON types only
    json.dumps(data)


@pytest.mark.parametrize("key", ["mesh3D", "skeleton", "skinWeights", "skinIndices"])
def test_missing_key_is_named(key):
    data = _cases()[1].to_dict()
    del data[key]
    with pytest.raises(ValueError, match=key):
        from_dict(data)


def test_inconsistent_record_rejected():
    data = _cases()[1].to_dict()
    data["skinWeights"] = data["skinWeights"][:-1]
    with pytest.raises(ValueError):
        from_dict(data)

    data = _cases()[1].to_dict()
    data["mesh3D"]["faces"][0] = [0, 1, 99]
    with pytest.raises(ValueError):
        from_dict(data)

    data = _cases()[1].to_dict()
    data["skeleton"]["joints"][0] = {"x": 1.0, "y": 2.0}
    with pytest.raises(ValueError):
        from_dict(data)


def test_to_dict_checks_skin_rows():
    rig = _cases()[0]
    with pytest.raises(ValueError):
        to_dict(rig.vertices[:2], rig.faces, rig.joints, rig.bones, rig.skin)
