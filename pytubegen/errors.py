from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Optional, Union

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


class TubeGenError(Exception):
    """Base class for errors raised by pytubegen."""


class OutlineError(TubeGenError, ValueError):
    """The input outline cannot be turned into a planar mesh.

    Raised for fewer than 3 distinct points, non-finite coordinates, a
    degenerate (zero length or zero area) loop, or a self-intersecting loop.
    """


class TopologyError(TubeGenError):
    """The planar mesh or chord graph is inconsistent for this run."""


class SolverError(TubeGenError, RuntimeError):
    """A sparse least-squares system is singular or produced non-finite values."""


class DeadlineExceeded(TubeGenError, TimeoutError):
    """A long-running loop ran past its deadline."""


@dataclass(frozen=True)
class SkippedFeature:
    """A locally recoverable failure recorded instead of raised.

    kind   : e.g. "junction"
    index  : index of the feature in its owning list
    reason : short human readable explanation
    """

    kind: str
    index: int
    reason: str


class Deadline:
    """Wall-clock budget checked cooperatively inside long loops."""

    def __init__(self, seconds: Optional[float] = None):
        if seconds is not None and seconds < 0:
            raise ValueError("deadline seconds must be non-negative")
        self.seconds = seconds
        self._end = None if seconds is None else time.monotonic() + float(seconds)

    @classmethod
    def coerce(cls, value: Union[None, float, "Deadline"]) -> "Deadline":
        if isinstance(value, Deadline):
            return value
        return cls(value)

    def remaining(self) -> float:
        if self._end is None:
            return float("inf")
        return max(0.0, self._end - time.monotonic())

    def expired(self) -> bool:
        return self._end is not None and time.monotonic() >= self._end

    def check(self, stage: str = "") -> None:
        if self.expired():
            logger.warning("Deadline of %.3gs exceeded during %s", self.seconds, stage or "operation")
            raise DeadlineExceeded(f"deadline of {self.seconds}s exceeded during {stage or 'operation'}")
