from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
import math


@dataclass(frozen=True, slots=True)
class GeomId:
    """
    Geometry identifier of a tracker cell or trajectory.

    Only ``type`` and ``module`` are needed for a valid id; the remaining
    addresses are optional (a trajectory is addressed by module/side only,
    a Geiger cell by module/side/layer/row).
    """
    type: int
    module: Optional[int] = None
    side: Optional[int] = None
    layer: Optional[int] = None
    row: Optional[int] = None

    def has(self, name: str) -> bool:
        return getattr(self, name, None) is not None

    def is_valid(self) -> bool:
        return self.type is not None and self.module is not None


@dataclass(eq=False, slots=True)
class TrackerHit:
    """
    Calibrated Geiger cell hit (physics layer).

    hit_id: identifier unique within an event
    geom_id: cell geometry id (module/side/layer/row)
    x_mm, y_mm: transverse position of the anode wire [mm]; both None if unknown
    z_mm: longitudinal position [mm]
    delayed: True for hits in the delayed drift regime (alpha-like)
    delayed_time_ns: delayed time [ns]; required for delayed hits
    sterile, noisy: hits to be ignored outright

    Hits compare by identity: the same cell can legitimately be hit by two
    distinct hit objects, but one object must never be referenced twice.
    """
    hit_id: int
    geom_id: Optional[GeomId] = None
    x_mm: Optional[float] = None
    y_mm: Optional[float] = None
    z_mm: float = 0.0
    delayed: bool = False
    delayed_time_ns: Optional[float] = None
    sterile: bool = False
    noisy: bool = False

    extras: Dict[str, Any] = field(default_factory=dict)

    @property
    def side(self) -> int:
        if self.geom_id is None or self.geom_id.side is None:
            return -1
        return int(self.geom_id.side)

    @property
    def layer(self) -> int:
        if self.geom_id is None or self.geom_id.layer is None:
            return -1
        return int(self.geom_id.layer)

    @property
    def row(self) -> int:
        if self.geom_id is None or self.geom_id.row is None:
            return -1
        return int(self.geom_id.row)

    def has_geom_id(self) -> bool:
        return self.geom_id is not None and self.geom_id.is_valid()

    def has_xy(self) -> bool:
        return (
            self.x_mm is not None and self.y_mm is not None
            and math.isfinite(self.x_mm) and math.isfinite(self.y_mm)
        )

    def is_prompt(self) -> bool:
        return not self.delayed

    def is_delayed(self) -> bool:
        return self.delayed

    def is_sterile(self) -> bool:
        return self.sterile

    def is_noisy(self) -> bool:
        return self.noisy

    def has_delayed_time(self) -> bool:
        return self.delayed_time_ns is not None and math.isfinite(self.delayed_time_ns)

    def get_delayed_time(self) -> float:
        if not self.has_delayed_time():
            raise ValueError(f"Hit {self.hit_id} has no delayed time")
        return float(self.delayed_time_ns)
