from __future__ import annotations
from dataclasses import dataclass, field, replace
import logging
from typing import Dict, Iterable, List, Optional

import numpy as np

from sntracker.config.schemas import ExtrapolationCfg
from sntracker.physics.particles import ParticleTrack
from sntracker.physics.trajectories import TrackerTrajectory, TrajectoryPattern, pattern_endpoints
from sntracker.reco.vertex_extrapolation import VertexExtrapolator

logger = logging.getLogger(__name__)


def _is_shortened(old: TrajectoryPattern, new: TrajectoryPattern) -> bool:
    """True when at least one end of the pattern moved."""
    (a1, a2), (b1, b2) = pattern_endpoints(old), pattern_endpoints(new)
    return not (np.array_equal(a1, b1) and np.array_equal(a2, b2))


@dataclass
class TrackingDiagnostics:
    trajectories_in: int = 0
    skipped_not_default: int = 0
    failed_extrapolation: int = 0
    shortened: int = 0
    vertices: Dict[str, int] = field(default_factory=dict)

    def inc(self, category: str) -> None:
        self.vertices[category] = self.vertices.get(category, 0) + 1

    def merge(self, other: "TrackingDiagnostics") -> None:
        self.trajectories_in += other.trajectories_in
        self.skipped_not_default += other.skipped_not_default
        self.failed_extrapolation += other.failed_extrapolation
        self.shortened += other.shortened
        for k, v in other.vertices.items():
            self.vertices[k] = self.vertices.get(k, 0) + v


def build_particle_tracks(
    trajectories: Iterable[TrackerTrajectory],
    extrapolator: VertexExtrapolator,
    cfg: Optional[ExtrapolationCfg] = None,
    diag: Optional[TrackingDiagnostics] = None,
) -> List[ParticleTrack]:
    """
    Turn the fitted trajectories of one event into particle tracks with vertices.

    One ParticleTrack is created per processed trajectory, with sequential
    track ids. When cfg.adopt_shortened is set, the particle keeps a copy of
    the trajectory carrying the pattern shortened to its vertices; the input
    trajectories are left untouched either way, and a trajectory whose ends
    did not move keeps the original object.
    """
    cfg = cfg or extrapolator.cfg
    diag = diag if diag is not None else TrackingDiagnostics()
    particles: List[ParticleTrack] = []

    for traj in trajectories:
        diag.trajectories_in += 1
        if cfg.only_default_trajectories and not traj.is_default:
            diag.skipped_not_default += 1
            continue

        particle = ParticleTrack(track_id=len(particles), trajectory=traj)
        particles.append(particle)

        result = extrapolator.process(traj, particle)
        if not result.ok:
            diag.failed_extrapolation += 1
            continue
        for vtx in result.vertices:
            diag.inc(vtx.category)

        if result.pattern is None or not _is_shortened(traj.pattern, result.pattern):
            continue
        diag.shortened += 1
        if cfg.adopt_shortened:
            particle.trajectory = replace(traj, pattern=result.pattern)

    logger.debug(
        "[tracking] %d trajectories -> %d particles (%d failed)",
        diag.trajectories_in, len(particles), diag.failed_extrapolation,
    )
    return particles
