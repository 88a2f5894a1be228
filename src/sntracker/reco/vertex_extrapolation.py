# src/sntracker/reco/vertex_extrapolation.py
"""
Vertex extrapolation of fitted tracker trajectories.

Given a line or helix pattern, compute where it crosses the boundary
surfaces of the tracking volume (source foil, main calorimeter walls,
X-calorimeter walls, gamma-veto walls), keep the candidate closest to each
end of the trajectory and turn the accepted ones into vertices of the
particle track.

Candidate ordering is explicit: candidates are deduplicated on their key
(position for lines, helix parameter t for helices, first inserted category
wins), sorted by key, and the first candidate reaching the minimal distance
is kept. This makes the selection reproducible.
"""
from __future__ import annotations
from dataclasses import dataclass, field
import logging
import math
from typing import Dict, List, Literal, Optional, Sequence, Tuple

import numpy as np

from sntracker.config.schemas import ExtrapolationCfg
from sntracker.geometry.boundaries import (
    SIDE_BACK,
    SIDE_FRONT,
    DetectorBoundaries,
    GeigerLayout,
    Surface,
)
from sntracker.physics.hits import TrackerHit
from sntracker.physics.particles import (
    VERTEX_ON_GAMMA_VETO,
    VERTEX_ON_MAIN_CALORIMETER,
    VERTEX_ON_SOURCE_FOIL,
    VERTEX_ON_WIRE,
    VERTEX_ON_X_CALORIMETER,
    ParticleTrack,
    Vertex,
)
from sntracker.physics.trajectories import (
    HelixPattern,
    LinePattern,
    TrackerTrajectory,
    TrajectoryPattern,
)

logger = logging.getLogger(__name__)

Assignment = Literal["nearest", "closest_endpoint"]


@dataclass(frozen=True)
class UsableSurfaces:
    """Boundary categories a track may plausibly reach, given the cells it fired."""
    foil: bool = False
    calo: bool = False
    xcalo: bool = False
    gveto: bool = False

    def enabled(self, category: str) -> bool:
        return {
            VERTEX_ON_SOURCE_FOIL: self.foil,
            VERTEX_ON_MAIN_CALORIMETER: self.calo,
            VERTEX_ON_X_CALORIMETER: self.xcalo,
            VERTEX_ON_GAMMA_VETO: self.gveto,
        }.get(category, False)


def determine_usable_surfaces(
    cluster: Optional[Sequence[TrackerHit]],
    layout: GeigerLayout,
) -> UsableSurfaces:
    """
    Decide which boundaries are reachable from the layers/rows fired by the cluster:

      - source foil     if a hit sits in the first layer (layer 0),
      - main calorimeter if a hit sits in the last layer,
      - X-calorimeter    if a hit sits in one of the two outermost rows at either end.

    Gamma-veto walls are never enabled from cell information. Without a
    cluster nothing is usable and every vertex falls back to the wire.
    """
    if cluster is None:
        return UsableSurfaces()
    foil = calo = xcalo = False
    for hit in cluster:
        side, layer, row = hit.side, hit.layer, hit.row
        if side not in (SIDE_BACK, SIDE_FRONT) or layer < 0 or row < 0:
            continue
        if layer < 1:
            foil = True
        if layer >= layout.number_of_layers(side) - 1:
            calo = True
        if row <= 1 or row >= layout.number_of_rows(side) - 1:
            xcalo = True
    return UsableSurfaces(foil=foil, calo=calo, xcalo=xcalo, gveto=False)


# ---------------------------------------------------------------------------
# Candidate intersections
# ---------------------------------------------------------------------------

def line_intersections(
    pattern: LinePattern,
    surfaces: Sequence[Surface],
) -> List[Tuple[np.ndarray, str]]:
    """
    Intersect the infinite line through the pattern endpoints with each surface.

    The line is p(s) = first + s * (first - last); for a plane fixed at v along
    axis i, s = (v - first[i]) / d[i]. A line parallel to the plane (d[i] == 0)
    yields no candidate. Returns (position, category) pairs sorted by position.
    """
    first = pattern.first
    d = pattern.direction
    cands: Dict[Tuple[float, float, float], str] = {}
    for surf in surfaces:
        i = surf.axis_index
        if d[i] == 0.0:
            continue
        s = (surf.value - first[i]) / d[i]
        p = first + s * d
        p[i] = surf.value
        if not np.all(np.isfinite(p)):
            continue
        cands.setdefault((float(p[0]), float(p[1]), float(p[2])), surf.category)
    return [(np.array(k), cands[k]) for k in sorted(cands)]


def helix_intersections(
    pattern: HelixPattern,
    surfaces: Sequence[Surface],
) -> List[Tuple[float, str]]:
    """
    Helix parameter values at which the helix crosses each surface.

    x planes: cos(a) = (x - cx) / R gives a = +/- acos;
    y planes: sin(a) = (y - cy) / R gives asin and its reflection about the
              side of the arc (pi - a, or -pi - a when the mean angle of the
              arc is negative);
    z planes: direct inverse t(z).
    |cos| or |sin| above 1 means the plane is out of reach. Returns (t,
    category) pairs sorted by t.
    """
    R = pattern.radius
    has_radius = math.isfinite(R) and R > 0.0
    mean_angle = 0.5 * (pattern.angle1 + pattern.angle2)
    cands: Dict[float, str] = {}
    for surf in surfaces:
        ts: List[float] = []
        if surf.axis == "z":
            t = pattern.t_from_z(surf.value)
            if t is not None and math.isfinite(t):
                ts.append(t)
        elif has_radius:
            c = (surf.value - pattern.center[surf.axis_index]) / R
            if abs(c) > 1.0:
                continue
            if surf.axis == "x":
                a = math.acos(c)
                ts.extend((HelixPattern.angle_to_t(+a), HelixPattern.angle_to_t(-a)))
            else:
                a = math.asin(c)
                mirror = (-math.pi - a) if mean_angle < 0.0 else (math.pi - a)
                ts.extend((HelixPattern.angle_to_t(a), HelixPattern.angle_to_t(mirror)))
        for t in ts:
            cands.setdefault(float(t), surf.category)
    return [(t, cands[t]) for t in sorted(cands)]


def select_endpoint_candidates(
    d_first: np.ndarray,
    d_last: np.ndarray,
    policy: Assignment = "closest_endpoint",
) -> Tuple[Optional[int], Optional[int]]:
    """
    Pick one candidate index per trajectory end from the distance arrays.

    "closest_endpoint": a candidate only competes for the end it is closer
    to (ties go to the last end), then each end keeps its closest one.
    "nearest": each end keeps its closest candidate; when both ends pick the
    same one it stays with the closer end (ties to the last end) and the
    other end falls back to its next closest candidate.

    np.argmin returns the first minimal entry, so ties resolve to the first
    candidate in sorted order. None means no candidate for that end. The two
    ends never share an index.
    """
    d_first = np.asarray(d_first, dtype=np.float64)
    d_last = np.asarray(d_last, dtype=np.float64)
    if d_first.size == 0:
        return None, None
    if policy == "nearest":
        i1, i2 = int(np.argmin(d_first)), int(np.argmin(d_last))
        if i1 != i2:
            return i1, i2
        if d_first.size == 1:
            return (i1, None) if d_first[i1] < d_last[i1] else (None, i2)
        if d_first[i1] < d_last[i1]:
            i2 = int(np.argmin(np.where(np.arange(d_last.size) == i1, np.inf, d_last)))
        else:
            i1 = int(np.argmin(np.where(np.arange(d_first.size) == i2, np.inf, d_first)))
        return i1, i2
    if policy == "closest_endpoint":
        to_first = d_first < d_last
        i1 = int(np.argmin(np.where(to_first, d_first, np.inf))) if to_first.any() else None
        i2 = int(np.argmin(np.where(~to_first, d_last, np.inf))) if (~to_first).any() else None
        return i1, i2
    raise ValueError(f"Unknown endpoint assignment policy {policy!r}")


# ---------------------------------------------------------------------------
# Driver
# ---------------------------------------------------------------------------

@dataclass
class ExtrapolationResult:
    """
    vertices: vertices appended to the particle by this call (0 or 2)
    pattern: trajectory pattern shortened to the accepted vertices
             (the input pattern when nothing was accepted or on failure)
    usable: reachable boundary categories for this track
    """
    vertices: List[Vertex] = field(default_factory=list)
    pattern: Optional[TrajectoryPattern] = None
    usable: UsableSurfaces = field(default_factory=UsableSurfaces)
    ok: bool = True


class VertexExtrapolator:
    """
    Build the vertices of a particle track from its fitted trajectory.

    Parameters
    ----------
    boundaries : DetectorBoundaries
        Boundary plane coordinates (read-only, safe to share).
    layout : GeigerLayout
        Layer/row counts used to decide which boundaries are reachable.
    cfg : ExtrapolationCfg, optional
        Endpoint assignment policy.
    """

    def __init__(
        self,
        boundaries: DetectorBoundaries,
        layout: GeigerLayout,
        cfg: Optional[ExtrapolationCfg] = None,
    ) -> None:
        self.boundaries = boundaries
        self.layout = layout
        self.cfg = cfg or ExtrapolationCfg()

    def process(self, trajectory: TrackerTrajectory, particle: ParticleTrack) -> ExtrapolationResult:
        """
        Extrapolate `trajectory` and append its vertices to `particle`.

        Failures specific to this trajectory (no geometry id, no module/side
        address) are logged and produce no vertex; they never raise.
        """
        if not trajectory.has_geom_id():
            logger.error("[VED] Tracker trajectory %s has no geom_id! Abort!", trajectory.traj_id)
            return ExtrapolationResult(pattern=trajectory.pattern, ok=False)
        gid = trajectory.geom_id
        if not gid.has("module") or not gid.has("side") or gid.side not in (SIDE_BACK, SIDE_FRONT):
            logger.error(
                "[VED] Trajectory %s geom_id %s has no valid 'module' or 'side' address!",
                trajectory.traj_id, gid,
            )
            return ExtrapolationResult(pattern=trajectory.pattern, ok=False)
        side = int(gid.side)

        usable = determine_usable_surfaces(trajectory.cluster, self.layout)
        surfaces = self.boundaries.surfaces(side)

        pattern = trajectory.pattern
        if isinstance(pattern, LinePattern):
            found, new_pattern = self._extrapolate_line(pattern, surfaces, usable)
        elif isinstance(pattern, HelixPattern):
            found, new_pattern = self._extrapolate_helix(pattern, surfaces, usable)
        else:
            raise TypeError(f"Unsupported trajectory pattern: {type(pattern).__name__}")

        result = ExtrapolationResult(pattern=new_pattern, usable=usable)
        for category, position in found:
            if (side == SIDE_BACK and position[0] > 0.0) or (side == SIDE_FRONT and position[0] < 0.0):
                logger.debug(
                    "[VED] Trajectory %s: closest vertex is on the opposite side! (%s at x=%.3f)",
                    trajectory.traj_id, category, position[0],
                )
            result.vertices.append(particle.add_vertex(position, category))
        return result

    def _extrapolate_line(
        self,
        pattern: LinePattern,
        surfaces: Sequence[Surface],
        usable: UsableSurfaces,
    ) -> Tuple[List[Tuple[str, np.ndarray]], LinePattern]:
        cands = line_intersections(pattern, surfaces)
        ends = (pattern.first, pattern.last)
        if cands:
            pts = np.stack([p for p, _ in cands], axis=0)
            d_first = np.linalg.norm(pts - ends[0], axis=1)
            d_last = np.linalg.norm(pts - ends[1], axis=1)
            picks = select_endpoint_candidates(d_first, d_last, self.cfg.endpoint_assignment)
        else:
            picks = (None, None)

        found: List[Tuple[str, np.ndarray]] = []
        new_ends = list(ends)
        for k, idx in enumerate(picks):
            if idx is not None and usable.enabled(cands[idx][1]):
                position, category = cands[idx]
                new_ends[k] = position
                found.append((category, position))
            else:
                found.append((VERTEX_ON_WIRE, ends[k]))
        return found, pattern.with_endpoints(first=new_ends[0], last=new_ends[1])

    def _extrapolate_helix(
        self,
        pattern: HelixPattern,
        surfaces: Sequence[Surface],
        usable: UsableSurfaces,
    ) -> Tuple[List[Tuple[str, np.ndarray]], HelixPattern]:
        cands = helix_intersections(pattern, surfaces)
        bounds = (pattern.t1, pattern.t2)
        if cands:
            ts = np.array([t for t, _ in cands])
            picks = select_endpoint_candidates(
                np.abs(bounds[0] - ts), np.abs(bounds[1] - ts), self.cfg.endpoint_assignment
            )
        else:
            picks = (None, None)

        # A truncation longer than the whole fitted arc is not physical
        length = pattern.length
        length_per_t = pattern.length_per_t

        found: List[Tuple[str, np.ndarray]] = []
        new_bounds = list(bounds)
        for k, idx in enumerate(picks):
            if idx is not None:
                t_new, category = cands[idx]
                new_length = length_per_t * abs(t_new - bounds[k])
                if usable.enabled(category) and new_length < length:
                    new_bounds[k] = t_new
                    found.append((category, pattern.position(t_new)))
                    continue
            found.append((VERTEX_ON_WIRE, pattern.position(bounds[k])))
        return found, pattern.with_bounds(t1=new_bounds[0], t2=new_bounds[1])
