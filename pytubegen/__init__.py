"""pytubegen: tubular 3D meshes, skeletons and skin weights from closed 2D outlines.

Public API:
- generate(outline, config=None, **overrides) -> RiggedMesh
- GenerationConfig
- build_planar_mesh(outline, isodistance), prune_planar_mesh(mesh, branch_min_length)
- build_chord_graph(mesh), smooth_chords(chords, iterations, alpha)
- generate_tube(chords, isodistance)
- fit_mesh(V, F, constrained, factor), orient_faces(V, F)
- isometric_remesh(V, F, iterations, length)
- extract_skeleton(chords, deviation, length, pruning)
- compute_skin_weights(V, F, joints, bones), truncate_weights(W)
- smooth(L, weak, hard, smoothness), diffuse(L, weak, hard, smoothness)
- topological_laplacian(F), geometric_laplacian(V, F)
- to_dict / from_dict / dumps / loads
- split_rig(rig, normal, offset), snap_merge(a, b, src, tgt)

"""
__version__ = "0.1.0"

from .chords import ChordGraph, build_chord_graph, smooth_chords
from .config import GenerationConfig
from .edit import snap_merge, split_rig
from .errors import DeadlineExceeded, OutlineError, SkippedFeature, SolverError, TopologyError, TubeGenError
from .fitting import fit_mesh, orient_faces
from .io import RiggedMesh, dumps, from_dict, loads, to_dict
from .laplacian import geometric_laplacian, topological_laplacian
from .pipeline import generate
from .planar import PlanarMesh, build_planar_mesh, prune_planar_mesh
from .remesh import isometric_remesh
from .skeleton import Skeleton, extract_skeleton
from .skin import SkinWeights, compute_skin_weights, truncate_weights
from .solver import diffuse, smooth
from .tube import TubeMesh, generate_tube

__all__ = [
    "generate",
    "GenerationConfig",
    "RiggedMesh",
    "PlanarMesh",
    "build_planar_mesh",
    "prune_planar_mesh",
    "ChordGraph",
    "build_chord_graph",
    "smooth_chords",
    "TubeMesh",
    "generate_tube",
    "fit_mesh",
    "orient_faces",
    "isometric_remesh",
    "Skeleton",
    "extract_skeleton",
    "SkinWeights",
    "compute_skin_weights",
    "truncate_weights",
    "smooth",
    "diffuse",
    "topological_laplacian",
    "geometric_laplacian",
    "to_dict",
    "from_dict",
    "dumps",
    "loads",
    "split_rig",
    "snap_merge",
    "TubeGenError",
    "OutlineError",
    "TopologyError",
    "SolverError",
    "DeadlineExceeded",
    "SkippedFeature",
]
