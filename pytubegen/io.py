"""
JSON exchange record for a rigged mesh.

The record is plain data (dicts, lists, floats and ints) so that any front
end can store or send it::

    {
      "mesh3D":   {"vertices": [{"x":..,"y":..,"z":..}, ...], "faces": [[i,j,k], ...]},
      "skeleton": {"joints":   [{"x":..,"y":..,"z":..}, ...], "bones": [[a,b], ...]},
      "skinWeights": [[w0,w1,w2,w3], ...],
      "skinIndices": [[b0,b1,b2,b3], ...],
      "version": "..."
    }

``skinIndices`` refer to bones. No file access happens here; callers own I/O.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np
import trimesh

from . import __version__
from .config import GenerationConfig
from .errors import SkippedFeature
from .skeleton import Skeleton
from .skin import SkinWeights

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

REQUIRED_KEYS = ("mesh3D", "skeleton", "skinWeights", "skinIndices")


@dataclass(eq=False)
class RiggedMesh:
    """
    Final product of a generation run.

    Attributes:
        vertices: (n,3) mesh vertices.
        faces: (m,3) outward oriented triangles.
        joints: (k,3) skeleton joints.
        bones: (b,2) joint index pairs.
        skin: per-vertex bone influences (at most four, rows sum to 1).
        diagnostics: features that were skipped while building the tube.
        planar, chords, tube, config: intermediate stages of the run that
            produced this mesh, None when loaded from a record.
        version: package version that wrote the record.
    """

    vertices: np.ndarray
    faces: np.ndarray
    joints: np.ndarray
    bones: np.ndarray
    skin: SkinWeights
    diagnostics: List[SkippedFeature] = field(default_factory=list)
    planar: Any = None
    chords: Any = None
    tube: Any = None
    config: Optional[GenerationConfig] = None
    version: str = __version__

    @property
    def skeleton(self) -> Skeleton:
        return Skeleton(self.joints, self.bones)

    def to_trimesh(self) -> trimesh.Trimesh:
        return trimesh.Trimesh(vertices=self.vertices, faces=self.faces, process=False)

    def to_dict(self) -> Dict[str, Any]:
        return to_dict(self.vertices, self.faces, self.joints, self.bones, self.skin, version=self.version)


def _points(P: np.ndarray) -> List[Dict[str, float]]:
    return [{"x": float(x), "y": float(y), "z": float(z)} for x, y, z in np.asarray(P, dtype=float).reshape(-1, 3)]


def _read_points(items, key: str) -> np.ndarray:
    try:
        return np.array([[p["x"], p["y"], p["z"]] for p in items], dtype=float).reshape(-1, 3)
    except (KeyError, TypeError) as exc:
        raise ValueError(f"{key}: every point needs numeric x, y and z") from exc


def to_dict(vertices, faces, joints, bones, skin: SkinWeights, version: str = __version__) -> Dict[str, Any]:
    """Build the exchange record."""
    V = np.asarray(vertices, dtype=float).reshape(-1, 3)
    if skin.n_vertices != V.shape[0]:
        raise ValueError(f"skin has {skin.n_vertices} rows for {V.shape[0]} vertices")
    return {
        "mesh3D": {
            "vertices": _points(V),
            "faces": np.asarray(faces, dtype=np.int64).reshape(-1, 3).tolist(),
        },
        "skeleton": {
            "joints": _points(joints),
            "bones": np.asarray(bones, dtype=np.int64).reshape(-1, 2).tolist(),
        },
        "skinWeights": skin.weights.tolist(),
        "skinIndices": skin.indices.tolist(),
        "version": str(version),
    }


def from_dict(data: Dict[str, Any]) -> RiggedMesh:
    """Rebuild a RiggedMesh from an exchange record.

    Raises
    ------
    ValueError
        Missing key, malformed point, or inconsistent array shapes.
    """
    for key in REQUIRED_KEYS:
        if key not in data:
            raise ValueError(f"exchange record is missing '{key}'")
    mesh, skel = data["mesh3D"], data["skeleton"]
    for parent, key in (("mesh3D", "vertices"), ("mesh3D", "faces"), ("skeleton", "joints"), ("skeleton", "bones")):
        if key not in data[parent]:
            raise ValueError(f"exchange record is missing '{parent}.{key}'")

    V = _read_points(mesh["vertices"], "mesh3D.vertices")
    F = np.asarray(mesh["faces"], dtype=np.int64).reshape(-1, 3)
    J = _read_points(skel["joints"], "skeleton.joints")
    B = np.asarray(skel["bones"], dtype=np.int64).reshape(-1, 2)
    W = np.asarray(data["skinWeights"], dtype=float)
    I = np.asarray(data["skinIndices"], dtype=np.int64)
    if W.shape[0] != V.shape[0] or W.shape != I.shape:
        raise ValueError(
            f"skin arrays {W.shape} / {I.shape} do not match {V.shape[0]} vertices"
        )
    if F.size and (F.min() < 0 or F.max() >= V.shape[0]):
        raise ValueError("mesh3D.faces reference missing vertices")
    if B.size and (B.min() < 0 or B.max() >= J.shape[0]):
        raise ValueError("skeleton.bones reference missing joints")
    return RiggedMesh(
        vertices=V,
        faces=F,
        joints=J,
        bones=B,
        skin=SkinWeights(I, W),
        version=str(data.get("version", __version__)),
    )


def dumps(rigged: RiggedMesh, **kwargs) -> str:
    return json.dumps(rigged.to_dict(), **kwargs)


def loads(text: str) -> RiggedMesh:
    return from_dict(json.loads(text))
