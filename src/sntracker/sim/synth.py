from __future__ import annotations
import math
import numpy as np
from typing import List, Literal

from ..geometry.boundaries import SIDE_BACK, SIDE_FRONT
from ..physics.events import TrackerEvent
from ..physics.hits import GeomId, TrackerHit
from ..physics.trajectories import TWO_PI, HelixPattern, LinePattern, TrackerTrajectory

CELL_GID_TYPE = 1204
TRAJECTORY_GID_TYPE = 1234

# Distance between the source foil and the first Geiger layer [mm]
FOIL_GAP_MM = 30.0


def layer_x_mm(side: int, layer: int, cell_size_mm: float) -> float:
    sign = -1.0 if side == SIDE_BACK else 1.0
    return sign * (FOIL_GAP_MM + (layer + 0.5) * cell_size_mm)


def row_y_mm(row: int, n_rows: int, cell_size_mm: float) -> float:
    return (row - 0.5 * (n_rows - 1)) * cell_size_mm


def row_from_y(y_mm: float, n_rows: int, cell_size_mm: float) -> int:
    r = int(round(y_mm / cell_size_mm + 0.5 * (n_rows - 1)))
    return min(max(r, 0), n_rows - 1)


def _cell_hit(hit_id: int, side: int, layer: int, row: int, z_mm: float,
              n_rows: int, cell_size_mm: float, **flags) -> TrackerHit:
    return TrackerHit(
        hit_id=hit_id,
        geom_id=GeomId(type=CELL_GID_TYPE, module=0, side=side, layer=layer, row=row),
        x_mm=layer_x_mm(side, layer, cell_size_mm),
        y_mm=row_y_mm(row, n_rows, cell_size_mm),
        z_mm=float(z_mm),
        **flags,
    )


def synth_tracker_event(
    event_id: int = 0,
    *,
    side: int = SIDE_FRONT,
    kind: Literal["line", "helix"] = "line",
    n_delayed: int = 0,
    n_sterile: int = 0,
    n_noisy: int = 0,
    cell_size_mm: float = 44.0,
    n_layers: int = 9,
    n_rows: int = 113,
    delayed_spread_ns: float = 2000.0,
    rng: np.random.Generator | None = None,
) -> TrackerEvent:
    """
    Generate one event with a single prompt track crossing every layer of `side`:
      - "line": straight segment, one hit per layer, random slope in (x,y) and (x,z)
      - "helix": arc of radius 1-3 m leaving the foil side, one hit per layer
    The fitted trajectory's `first` end sits on layer 0 (foil side) and its
    `last` end on the outermost layer, and its cluster is the track hits.

    Optional extra hits on the same side:
      - n_delayed delayed hits within `delayed_spread_ns` of a random burst time
      - n_sterile / n_noisy flagged hits on random cells
    """
    if side not in (SIDE_BACK, SIDE_FRONT):
        raise ValueError(f"Invalid side {side!r}")
    rng = rng or np.random.default_rng()
    hits: List[TrackerHit] = []

    z0 = rng.uniform(-800.0, 800.0)
    dz = rng.uniform(-40.0, 40.0)  # per layer

    if kind == "line":
        r0 = rng.uniform(10.0, n_rows - 11.0)
        dr = rng.uniform(-1.0, 1.0)  # rows per layer
        for layer in range(n_layers):
            row = min(max(int(round(r0 + dr * layer)), 0), n_rows - 1)
            hits.append(_cell_hit(len(hits), side, layer, row, z0 + dz * layer, n_rows, cell_size_mm))
        y_first = row_y_mm(0, n_rows, cell_size_mm) + r0 * cell_size_mm
        y_last = y_first + dr * (n_layers - 1) * cell_size_mm
        pattern = LinePattern(
            first=(layer_x_mm(side, 0, cell_size_mm), y_first, z0),
            last=(layer_x_mm(side, n_layers - 1, cell_size_mm), y_last, z0 + dz * (n_layers - 1)),
        )
    elif kind == "helix":
        R = rng.uniform(1000.0, 3000.0)
        x_a = layer_x_mm(side, 0, cell_size_mm)
        x_b = layer_x_mm(side, n_layers - 1, cell_size_mm)
        y_a = row_y_mm(0, n_rows, cell_size_mm) + rng.uniform(20.0, n_rows - 21.0) * cell_size_mm
        # Start close to the point where the tangent is along x, moving away from the foil
        u = rng.uniform(-0.3, 0.3)
        a1 = (-0.5 * math.pi + u) if side == SIDE_FRONT else (0.5 * math.pi + u)
        cx = x_a - R * math.cos(a1)
        cy = y_a - R * math.sin(a1)

        def angle_at(x: float) -> float:
            c = (x - cx) / R
            return -math.acos(c) if side == SIDE_FRONT else math.acos(c)

        a2 = angle_at(x_b)
        t1, t2 = a1 / TWO_PI, a2 / TWO_PI
        # choose the pitch so that z runs z0 -> z0 + dz*(n_layers-1) over [t1, t2]
        step = dz * (n_layers - 1) / (t2 - t1)
        cz = z0 - step * t1
        pattern = HelixPattern(center=(cx, cy, cz), radius=R, step=step, t1=t1, t2=t2)
        for layer in range(n_layers):
            t = angle_at(layer_x_mm(side, layer, cell_size_mm)) / TWO_PI
            p = pattern.position(t)
            row = row_from_y(float(p[1]), n_rows, cell_size_mm)
            hits.append(_cell_hit(len(hits), side, layer, row, p[2], n_rows, cell_size_mm))
    else:
        raise ValueError(f"Unknown track kind {kind!r}")

    cluster = list(hits)

    t_burst = rng.uniform(1000.0, 100000.0)
    for _ in range(n_delayed):
        hits.append(_cell_hit(
            len(hits), side, int(rng.integers(0, n_layers)), int(rng.integers(0, n_rows)),
            rng.uniform(-1000.0, 1000.0), n_rows, cell_size_mm,
            delayed=True, delayed_time_ns=t_burst + rng.uniform(0.0, delayed_spread_ns),
        ))
    for _ in range(n_sterile):
        hits.append(_cell_hit(
            len(hits), side, int(rng.integers(0, n_layers)), int(rng.integers(0, n_rows)),
            0.0, n_rows, cell_size_mm, sterile=True,
        ))
    for _ in range(n_noisy):
        hits.append(_cell_hit(
            len(hits), side, int(rng.integers(0, n_layers)), int(rng.integers(0, n_rows)),
            0.0, n_rows, cell_size_mm, noisy=True,
        ))

    traj = TrackerTrajectory(
        traj_id=0,
        pattern=pattern,
        geom_id=GeomId(type=TRAJECTORY_GID_TYPE, module=0, side=side),
        cluster=cluster,
        is_default=True,
    )
    return TrackerEvent(event_id=event_id, hits=hits, trajectories=[traj], meta={"kind": kind})


def synth_tracker_events(
    n_events: int,
    rng: np.random.Generator | None = None,
    **kw,
) -> list[TrackerEvent]:
    """Alternate sides and line/helix tracks over `n_events` synthetic events."""
    rng = rng or np.random.default_rng()
    events: list[TrackerEvent] = []
    for i in range(n_events):
        side = SIDE_FRONT if i % 2 == 0 else SIDE_BACK
        kind = "line" if (i // 2) % 2 == 0 else "helix"
        events.append(synth_tracker_event(i, side=side, kind=kind, rng=rng, **kw))
    return events
