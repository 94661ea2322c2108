"""
Outline -> rigged mesh pipeline.

Every stage is a plain function of the previous stage's value and the
configuration, so a caller can stop after any stage, inspect it, and
continue::

    planar = stage_planar(outline, cfg)
    chords = stage_chords(planar, cfg)
    tube = stage_fit(stage_tube(chords, cfg), cfg)
    V, F = stage_remesh(tube.vertices, tube.faces, cfg)
    skel = stage_skeleton(chords, cfg)
    skin = stage_skin(V, F, skel, cfg)

:func:`generate` runs them all.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Optional, Sequence, Tuple, Union

import numpy as np

from .chords import ChordGraph, build_chord_graph, smooth_chords
from .config import GenerationConfig
from .errors import Deadline, TopologyError
from .fitting import fit_tube, orient_faces
from .io import RiggedMesh
from .planar import PlanarMesh, build_planar_mesh, prune_planar_mesh
from .remesh import isometric_remesh
from .skeleton import Skeleton, extract_skeleton
from .skin import SkinWeights, compute_skin_weights, truncate_weights
from .tube import TubeMesh, generate_tube

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


def stage_planar(outline, cfg: GenerationConfig, *, verbose: bool = False) -> PlanarMesh:
    mesh = build_planar_mesh(outline, cfg.isodistance, verbose=verbose)
    return prune_planar_mesh(mesh, cfg.effective_branch_min_length, verbose=verbose)


def stage_chords(planar: PlanarMesh, cfg: GenerationConfig, *, verbose: bool = False) -> ChordGraph:
    chords = build_chord_graph(planar, verbose=verbose)
    return smooth_chords(chords, cfg.smoothing_iterations, cfg.smoothing_alpha, verbose=verbose)


def stage_tube(chords: ChordGraph, cfg: GenerationConfig, *, verbose: bool = False) -> TubeMesh:
    return generate_tube(chords, cfg.isodistance, verbose=verbose)


def stage_fit(tube: TubeMesh, cfg: GenerationConfig, *, verbose: bool = False) -> TubeMesh:
    """Least-squares fit when enabled; faces are oriented outward either way."""
    if cfg.fit:
        return fit_tube(tube, cfg.fit_factor, verbose=verbose)
    return tube.with_vertices(tube.vertices, orient_faces(tube.vertices, tube.faces, verbose=verbose))


def stage_remesh(
    vertices: np.ndarray,
    faces: np.ndarray,
    cfg: GenerationConfig,
    deadline: Union[None, float, Deadline] = None,
    *,
    verbose: bool = False,
) -> Tuple[np.ndarray, np.ndarray]:
    if cfg.remesh_iterations == 0:
        return np.asarray(vertices, dtype=float), np.asarray(faces, dtype=np.int64)
    return isometric_remesh(
        vertices,
        faces,
        cfg.remesh_iterations,
        cfg.effective_remesh_length,
        deadline=deadline,
        verbose=verbose,
    )


def stage_skeleton(chords: ChordGraph, cfg: GenerationConfig, *, verbose: bool = False) -> Skeleton:
    return extract_skeleton(chords, cfg.bone_deviation, cfg.bone_length, cfg.bone_pruning, verbose=verbose)


def stage_skin(
    vertices: np.ndarray,
    faces: np.ndarray,
    skeleton: Skeleton,
    cfg: GenerationConfig,
    ring_groups: Optional[Sequence[np.ndarray]] = None,
    deadline: Union[None, float, Deadline] = None,
    *,
    verbose: bool = False,
) -> SkinWeights:
    """Diffuse, normalise and keep the four strongest bones per vertex."""
    W = compute_skin_weights(
        vertices, faces, skeleton.joints, skeleton.bones,
        ring_groups=ring_groups, deadline=deadline, verbose=verbose,
    )
    indices, weights = truncate_weights(W)
    return SkinWeights(indices, weights)


def generate(
    outline,
    config: Optional[GenerationConfig] = None,
    *,
    verbose: bool = False,
    log: Optional[logging.Logger] = None,
    **overrides: Any,
) -> RiggedMesh:
    """Turn a closed 2D outline into a rigged tubular mesh.

    Parameters
    ----------
    outline : (n,2) array-like
        Closed loop of points; the closing point may be repeated or omitted.
    config : GenerationConfig, optional
        Defaults to ``GenerationConfig()``.
    verbose : bool, default False
        Log a line per stage (and inside stages).
    log : logging.Logger, optional
    **overrides
        Field replacements applied on top of ``config``.

    Returns
    -------
    RiggedMesh
        Output coordinates are centred on the outline centroid; the
        translation is ``result.planar.origin``.

    Raises
    ------
    OutlineError, TopologyError, SolverError, DeadlineExceeded
    """
    cfg = config or GenerationConfig()
    if overrides:
        cfg = cfg.replace(**overrides)
    _log = log or logger
    deadline = Deadline(cfg.timeout)
    t0 = time.perf_counter()

    def mark(stage: str) -> None:
        if verbose:
            _log.info("[%s] done in %.3fs", stage, time.perf_counter() - t0)

    planar = stage_planar(outline, cfg, verbose=verbose)
    mark("planar")
    chords = stage_chords(planar, cfg, verbose=verbose)
    mark("chords")
    tube = stage_fit(stage_tube(chords, cfg, verbose=verbose), cfg, verbose=verbose)
    mark("tube")
    V, F = stage_remesh(tube.vertices, tube.faces, cfg, deadline, verbose=verbose)
    mark("remesh")
    skeleton = stage_skeleton(chords, cfg, verbose=verbose)
    mark("skeleton")
    if skeleton.n_bones == 0:
        raise TopologyError(
            f"skeleton has no bones ({skeleton.n_joints} joint); the outline is too small for isodistance={cfg.isodistance}"
        )

    # ring ids only survive when the tube was not remeshed
    rings = tube.ring_vertex_groups() if cfg.remesh_iterations == 0 else None
    skin = stage_skin(V, F, skeleton, cfg, ring_groups=rings, deadline=deadline, verbose=verbose)
    mark("skin")

    if tube.diagnostics:
        _log.warning("Generated with %d skipped feature(s)", len(tube.diagnostics))
    return RiggedMesh(
        vertices=V,
        faces=F,
        joints=skeleton.joints,
        bones=skeleton.bones,
        skin=skin,
        diagnostics=list(tube.diagnostics),
        planar=planar,
        chords=chords,
        tube=tube,
        config=cfg,
    )
