# src/sntracker/physics/trajectories.py
from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Union
import math

import numpy as np

from .hits import GeomId, TrackerHit

TWO_PI = 2.0 * math.pi


def _vec3(v) -> np.ndarray:
    a = np.asarray(v, dtype=np.float64).reshape(3)
    return a


@dataclass(frozen=True)
class LinePattern:
    """
    Straight segment fitted to a cluster.

    first, last: endpoints [mm], shape (3,)
    """
    first: np.ndarray
    last: np.ndarray

    def __post_init__(self):
        object.__setattr__(self, "first", _vec3(self.first))
        object.__setattr__(self, "last", _vec3(self.last))

    @property
    def direction(self) -> np.ndarray:
        return self.first - self.last

    @property
    def length(self) -> float:
        return float(np.linalg.norm(self.direction))

    def with_endpoints(self, first=None, last=None) -> "LinePattern":
        return LinePattern(
            first=self.first if first is None else first,
            last=self.last if last is None else last,
        )


@dataclass(frozen=True)
class HelixPattern:
    """
    Helix with axis along z.

    The curve parameter t counts turns: angle = 2*pi*t and

        x(t) = cx + R cos(2 pi t)
        y(t) = cy + R sin(2 pi t)
        z(t) = cz + step * t

    so z is monotonic in t whenever the step (pitch per turn) is non-zero.
    The fitted arc spans [t1, t2].
    """
    center: np.ndarray
    radius: float
    step: float
    t1: float
    t2: float

    def __post_init__(self):
        object.__setattr__(self, "center", _vec3(self.center))
        object.__setattr__(self, "radius", float(self.radius))
        object.__setattr__(self, "step", float(self.step))
        object.__setattr__(self, "t1", float(self.t1))
        object.__setattr__(self, "t2", float(self.t2))

    @staticmethod
    def angle_to_t(angle: float) -> float:
        return angle / TWO_PI

    @staticmethod
    def t_to_angle(t: float) -> float:
        return t * TWO_PI

    @property
    def angle1(self) -> float:
        return self.t_to_angle(self.t1)

    @property
    def angle2(self) -> float:
        return self.t_to_angle(self.t2)

    def position(self, t: float) -> np.ndarray:
        a = self.t_to_angle(t)
        return self.center + np.array(
            [self.radius * math.cos(a), self.radius * math.sin(a), self.step * t]
        )

    def t_from_z(self, z: float) -> Optional[float]:
        """Inverse of z(t); None for a flat helix (zero step)."""
        if self.step == 0.0:
            return None
        return (z - self.center[2]) / self.step

    @property
    def first(self) -> np.ndarray:
        return self.position(self.t1)

    @property
    def last(self) -> np.ndarray:
        return self.position(self.t2)

    @property
    def length_per_t(self) -> float:
        """Arc length covered by one unit of t (one full turn)."""
        return TWO_PI * math.hypot(self.radius, self.step / TWO_PI)

    @property
    def length(self) -> float:
        return self.length_per_t * abs(self.t2 - self.t1)

    def with_bounds(self, t1: Optional[float] = None, t2: Optional[float] = None) -> "HelixPattern":
        return replace(
            self,
            t1=self.t1 if t1 is None else t1,
            t2=self.t2 if t2 is None else t2,
        )


TrajectoryPattern = Union[LinePattern, HelixPattern]


def pattern_endpoints(pattern: TrajectoryPattern) -> tuple[np.ndarray, np.ndarray]:
    if isinstance(pattern, (LinePattern, HelixPattern)):
        return pattern.first, pattern.last
    raise TypeError(f"Unsupported trajectory pattern: {type(pattern).__name__}")


@dataclass
class TrackerTrajectory:
    """
    Fitted trajectory of one cluster.

    geom_id carries the module/side addressing of the track; cluster holds the
    hits the fit was made from (None when the fitter did not keep them).
    """
    traj_id: int
    pattern: TrajectoryPattern
    geom_id: Optional[GeomId] = None
    cluster: Optional[List[TrackerHit]] = None
    is_default: bool = True
    meta: Dict[str, Any] = field(default_factory=dict)

    def has_geom_id(self) -> bool:
        return self.geom_id is not None

    def has_cluster(self) -> bool:
        return self.cluster is not None
