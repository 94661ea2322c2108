"""
Generation parameters.

One dataclass collects every scalar knob of the outline -> rigged mesh
pipeline. Defaults follow the values the drawing application ships with.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, replace
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class GenerationConfig:
    """
    Attributes:
        isodistance: Target spacing between outline samples and cross-section
            points. The primary resolution control.
        branch_min_length: Pruning threshold for thin branches of the planar
            triangulation. ``None`` means ``5 * isodistance``.
        smoothing_iterations: Chord smoothing iteration count.
        smoothing_alpha: Chord smoothing relaxation factor in (0, 1].
        fit: Run the least-squares mesh fit (and face re-orientation).
        fit_factor: Mesh fit factor; smoothness is ``ln(fit_factor)``.
        remesh_iterations: Isometric remeshing passes (0 disables).
        remesh_length: Target edge length. ``None`` means the mean edge length of
            the mesh entering each remeshing pass.
        bone_deviation: Chain-collapse threshold for skeleton extraction.
        bone_length: Bones shorter than this are merged.
        bone_pruning: Leaf branches shorter than this are trimmed.
        timeout: Optional wall-clock budget in seconds for remeshing and skinning.
    """

    isodistance: float = 10.0
    branch_min_length: Optional[float] = 5.0
    smoothing_iterations: int = 50
    smoothing_alpha: float = 0.5
    fit: bool = True
    fit_factor: float = 0.1
    remesh_iterations: int = 6
    remesh_length: Optional[float] = None
    bone_deviation: float = 0.1
    bone_length: float = 5.0
    bone_pruning: float = 5.0
    timeout: Optional[float] = None

    def __post_init__(self):
        if not math.isfinite(self.isodistance) or self.isodistance <= 0:
            raise ValueError("isodistance must be a positive finite number")
        if self.branch_min_length is not None and self.branch_min_length < 0:
            raise ValueError("branch_min_length must be non-negative")
        if self.smoothing_iterations < 0:
            raise ValueError("smoothing_iterations must be non-negative")
        if not (0.0 < self.smoothing_alpha <= 1.0):
            raise ValueError("smoothing_alpha must lie in (0, 1]")
        if self.fit_factor <= 0:
            raise ValueError("fit_factor must be positive (smoothness is log(fit_factor))")
        if self.remesh_iterations < 0:
            raise ValueError("remesh_iterations must be non-negative")
        if self.remesh_length is not None and self.remesh_length <= 0:
            raise ValueError("remesh_length must be positive")
        for name in ("bone_deviation", "bone_length", "bone_pruning"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative")
        if self.timeout is not None and self.timeout < 0:
            raise ValueError("timeout must be non-negative")

    @property
    def effective_branch_min_length(self) -> float:
        if self.branch_min_length is None:
            return 5.0 * self.isodistance
        return float(self.branch_min_length)

    @property
    def effective_remesh_length(self) -> Optional[float]:
        """Explicit target edge length, or None to follow the mesh."""
        if self.remesh_length is None:
            return None
        return float(self.remesh_length)

    def replace(self, **changes: Any) -> "GenerationConfig":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
