# src/sntracker/physics/events.py
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List

from .hits import TrackerHit
from .trajectories import TrackerTrajectory


@dataclass
class TrackerEvent:
    """
    One event record: calibrated Geiger hits plus the trajectories fitted
    upstream. Trajectory clusters reference objects from `hits`.
    """
    event_id: int
    hits: List[TrackerHit] = field(default_factory=list)
    trajectories: List[TrackerTrajectory] = field(default_factory=list)
    meta: Dict[str, Any] = field(default_factory=dict)

    def hit_index(self) -> Dict[int, int]:
        """Map id(hit) -> position in self.hits."""
        return {id(h): i for i, h in enumerate(self.hits)}

    def validate(self) -> None:
        """
        Raise ValueError if a trajectory cluster references a hit that is not
        part of this event.
        """
        index = self.hit_index()
        for traj in self.trajectories:
            for h in traj.cluster or []:
                if id(h) not in index:
                    raise ValueError(
                        f"TrackerEvent {self.event_id}: trajectory {traj.traj_id} "
                        f"references hit {h.hit_id} not owned by the event"
                    )
