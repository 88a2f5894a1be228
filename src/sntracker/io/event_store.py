# src/sntracker/io/event_store.py
"""
HDF5 storage of tracker events and reconstruction products.

Variable multiplicities (hits per event, trajectories per event, hits per
cluster, vertices per particle) are stored CSR-style: a flat column plus a
`*_ptr` array of length N+1 such that rows [ptr[i], ptr[i+1]) belong to item i.

Input file
----------
/hits/event_ptr          (N+1,) int64
/hits/{hit_id, gid_type, module, side, layer, row}   int32  (-1 = absent)
/hits/{x_mm, y_mm, z_mm, delayed_time_ns}            float64 (NaN = absent)
/hits/{delayed, sterile, noisy}                      uint8
/trajectories/event_ptr  (N+1,) int64
/trajectories/{traj_id, kind (0=line,1=helix), gid_type, module, side, is_default, has_cluster}
/trajectories/{first_mm, last_mm, center_mm}          (M,3) float64
/trajectories/{radius_mm, step_mm, t1, t2}            (M,)  float64
/trajectories/cluster_ptr (M+1,) int64, cluster_hit_index: hit rows local to the event
/events/event_id         (N,) int64

Output file
-----------
root attrs: format_version, created_utc, software, config_text
/meta attrs: boundary coordinates
/clusters/{event_ptr, kind (0=prompt,1=delayed), hit_ptr, hit_index}
/clusters/ignored/{event_ptr, hit_index}
/particles/{event_ptr, track_id, traj_id, vertex_ptr}
/particles/pattern/{kind (-1=none,0=line,1=helix), first_mm, last_mm, center_mm, radius_mm, step_mm, t1, t2}
/particles/vertices/{hit_id, position_mm, category}
"""
from __future__ import annotations
from datetime import datetime, timezone
from typing import Dict, List, Sequence, Tuple

import h5py
import numpy as np

from sntracker.config.load import snapshot_config_toml
from sntracker.config.schemas import Config
from sntracker.physics.events import TrackerEvent
from sntracker.physics.hits import GeomId, TrackerHit
from sntracker.physics.particles import ParticleTrack
from sntracker.physics.trajectories import (
    HelixPattern,
    LinePattern,
    TrackerTrajectory,
    TrajectoryPattern,
    pattern_endpoints,
)
from sntracker.reco.pre_clusterizer import PreClusterOutput

FORMAT_VERSION = "1.0"
SOFTWARE = "sn-tracker 0.1.0"

KIND_NONE = -1
KIND_LINE = 0
KIND_HELIX = 1

CLUSTER_PROMPT = 0
CLUSTER_DELAYED = 1


def _replace_or_create(grp: h5py.Group, name: str, data: np.ndarray, **kw) -> None:
    if name in grp:
        del grp[name]
    grp.create_dataset(name, data=data, **kw)


def _opt_int(v) -> int:
    return -1 if v is None else int(v)


def _from_opt_int(v) -> int | None:
    v = int(v)
    return None if v < 0 else v


def _ptr_from_counts(counts: Sequence[int]) -> np.ndarray:
    ptr = np.zeros(len(counts) + 1, dtype=np.int64)
    if len(counts):
        ptr[1:] = np.cumsum(np.asarray(counts, dtype=np.int64))
    return ptr


def _pattern_columns(patterns: Sequence[TrajectoryPattern | None]) -> Dict[str, np.ndarray]:
    """
    Column arrays describing trajectory patterns. Line rows leave the helix
    columns NaN; a None pattern gets kind -1 and all-NaN geometry.
    """
    M = len(patterns)
    cols = {
        "kind": np.full(M, KIND_NONE, dtype=np.int8),
        "first_mm": np.full((M, 3), np.nan),
        "last_mm": np.full((M, 3), np.nan),
        "center_mm": np.full((M, 3), np.nan),
        "radius_mm": np.full(M, np.nan),
        "step_mm": np.full(M, np.nan),
        "t1": np.full(M, np.nan),
        "t2": np.full(M, np.nan),
    }
    for w, pat in enumerate(patterns):
        if pat is None:
            continue
        if isinstance(pat, LinePattern):
            cols["kind"][w] = KIND_LINE
        elif isinstance(pat, HelixPattern):
            cols["kind"][w] = KIND_HELIX
            cols["center_mm"][w] = pat.center
            cols["radius_mm"][w], cols["step_mm"][w] = pat.radius, pat.step
            cols["t1"][w], cols["t2"][w] = pat.t1, pat.t2
        else:
            raise TypeError(f"Unsupported trajectory pattern: {type(pat).__name__}")
        cols["first_mm"][w], cols["last_mm"][w] = pattern_endpoints(pat)
    return cols


def _pattern_from_row(g: Dict[str, np.ndarray], j: int) -> TrajectoryPattern | None:
    kind = int(g["kind"][j])
    if kind == KIND_HELIX:
        return HelixPattern(
            center=g["center_mm"][j],
            radius=float(g["radius_mm"][j]),
            step=float(g["step_mm"][j]),
            t1=float(g["t1"][j]),
            t2=float(g["t2"][j]),
        )
    if kind == KIND_LINE:
        return LinePattern(first=g["first_mm"][j], last=g["last_mm"][j])
    return None


# ---------------------------------------------------------------------------
# Input events
# ---------------------------------------------------------------------------

def write_input_events(path: str, events: Sequence[TrackerEvent]) -> None:
    """Write events (hits + fitted trajectories) in the ragged input layout."""
    all_hits: List[TrackerHit] = [h for ev in events for h in ev.hits]
    all_trajs: List[TrackerTrajectory] = [t for ev in events for t in ev.trajectories]
    M = len(all_trajs)

    with h5py.File(path, "w") as f:
        f.attrs["format_version"] = FORMAT_VERSION
        f.attrs["created_utc"] = datetime.now(timezone.utc).isoformat()
        f.attrs["software"] = SOFTWARE

        g_ev = f.require_group("events")
        g_ev.create_dataset("event_id", data=np.array([ev.event_id for ev in events], dtype=np.int64))

        g_hits = f.require_group("hits")
        g_hits.create_dataset("event_ptr", data=_ptr_from_counts([len(ev.hits) for ev in events]))
        g_hits.create_dataset("hit_id", data=np.array([h.hit_id for h in all_hits], dtype=np.int32))
        for key in ("type", "module", "side", "layer", "row"):
            col = np.array(
                [_opt_int(getattr(h.geom_id, key)) if h.geom_id is not None else -1 for h in all_hits],
                dtype=np.int32,
            )
            g_hits.create_dataset("gid_type" if key == "type" else key, data=col)
        nan = float("nan")
        g_hits.create_dataset("x_mm", data=np.array([nan if h.x_mm is None else h.x_mm for h in all_hits], dtype=np.float64))
        g_hits.create_dataset("y_mm", data=np.array([nan if h.y_mm is None else h.y_mm for h in all_hits], dtype=np.float64))
        g_hits.create_dataset("z_mm", data=np.array([h.z_mm for h in all_hits], dtype=np.float64))
        g_hits.create_dataset(
            "delayed_time_ns",
            data=np.array([nan if h.delayed_time_ns is None else h.delayed_time_ns for h in all_hits], dtype=np.float64),
        )
        for key in ("delayed", "sterile", "noisy"):
            g_hits.create_dataset(key, data=np.array([getattr(h, key) for h in all_hits], dtype=np.uint8))

        g_tr = f.require_group("trajectories")
        g_tr.create_dataset("event_ptr", data=_ptr_from_counts([len(ev.trajectories) for ev in events]))

        traj_id = np.zeros(M, dtype=np.int32)
        gid = np.full((M, 3), -1, dtype=np.int32)  # type, module, side
        is_default = np.zeros(M, dtype=np.uint8)
        has_cluster = np.zeros(M, dtype=np.uint8)
        cluster_counts: List[int] = []
        cluster_index: List[int] = []

        w = 0
        for ev in events:
            index = ev.hit_index()
            for tr in ev.trajectories:
                traj_id[w] = tr.traj_id
                is_default[w] = tr.is_default
                if tr.has_geom_id():
                    gid[w] = (_opt_int(tr.geom_id.type), _opt_int(tr.geom_id.module), _opt_int(tr.geom_id.side))
                if tr.has_cluster():
                    has_cluster[w] = 1
                    cluster_index.extend(index[id(h)] for h in tr.cluster)
                    cluster_counts.append(len(tr.cluster))
                else:
                    cluster_counts.append(0)
                w += 1

        g_tr.create_dataset("traj_id", data=traj_id)
        g_tr.create_dataset("gid_type", data=gid[:, 0])
        g_tr.create_dataset("module", data=gid[:, 1])
        g_tr.create_dataset("side", data=gid[:, 2])
        g_tr.create_dataset("is_default", data=is_default)
        g_tr.create_dataset("has_cluster", data=has_cluster)
        for name, col in _pattern_columns([t.pattern for t in all_trajs]).items():
            g_tr.create_dataset(name, data=col)
        g_tr.create_dataset("cluster_ptr", data=_ptr_from_counts(cluster_counts))
        g_tr.create_dataset("cluster_hit_index", data=np.asarray(cluster_index, dtype=np.int64))


def _hit_from_row(g: Dict[str, np.ndarray], i: int) -> TrackerHit:
    gid = None
    if g["gid_type"][i] >= 0:
        gid = GeomId(
            type=int(g["gid_type"][i]),
            module=_from_opt_int(g["module"][i]),
            side=_from_opt_int(g["side"][i]),
            layer=_from_opt_int(g["layer"][i]),
            row=_from_opt_int(g["row"][i]),
        )
    x, y, dt = float(g["x_mm"][i]), float(g["y_mm"][i]), float(g["delayed_time_ns"][i])
    return TrackerHit(
        hit_id=int(g["hit_id"][i]),
        geom_id=gid,
        x_mm=None if np.isnan(x) else x,
        y_mm=None if np.isnan(y) else y,
        z_mm=float(g["z_mm"][i]),
        delayed=bool(g["delayed"][i]),
        delayed_time_ns=None if np.isnan(dt) else dt,
        sterile=bool(g["sterile"][i]),
        noisy=bool(g["noisy"][i]),
    )


def read_input_events(path: str, max_events: int | None = None) -> List[TrackerEvent]:
    """Read events written by write_input_events; clusters point back to the event's hits."""
    with h5py.File(str(path), "r") as f:
        event_ids = f["events/event_id"][...]
        gh = {k: f["hits"][k][...] for k in f["hits"].keys()}
        gt = {k: f["trajectories"][k][...] for k in f["trajectories"].keys()}

    n_events = len(event_ids) if max_events is None else min(len(event_ids), max_events)
    events: List[TrackerEvent] = []
    hptr, tptr, cptr = gh["event_ptr"], gt["event_ptr"], gt["cluster_ptr"]
    for e in range(n_events):
        hits = [_hit_from_row(gh, i) for i in range(int(hptr[e]), int(hptr[e + 1]))]
        trajs: List[TrackerTrajectory] = []
        for j in range(int(tptr[e]), int(tptr[e + 1])):
            pattern = _pattern_from_row(gt, j)
            gid = None
            if gt["gid_type"][j] >= 0:
                gid = GeomId(
                    type=int(gt["gid_type"][j]),
                    module=_from_opt_int(gt["module"][j]),
                    side=_from_opt_int(gt["side"][j]),
                )
            cluster = None
            if gt["has_cluster"][j]:
                cluster = [hits[int(k)] for k in gt["cluster_hit_index"][int(cptr[j]):int(cptr[j + 1])]]
            trajs.append(
                TrackerTrajectory(
                    traj_id=int(gt["traj_id"][j]),
                    pattern=pattern,
                    geom_id=gid,
                    cluster=cluster,
                    is_default=bool(gt["is_default"][j]),
                )
            )
        events.append(TrackerEvent(event_id=int(event_ids[e]), hits=hits, trajectories=trajs))
    return events


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------

def write_init(path: str, cfg_path: str, cfg: Config) -> h5py.File:
    f = h5py.File(path, "w")
    # Root attrs
    f.attrs["format_version"] = FORMAT_VERSION
    f.attrs["created_utc"] = datetime.now(timezone.utc).isoformat()
    f.attrs["software"] = SOFTWARE
    f.attrs["config_text"] = snapshot_config_toml(cfg_path)

    # /meta
    geo = cfg.geometry
    meta = f.create_group("meta")
    meta.attrs["geometry.foil_x_mm"] = geo.foil_x_mm
    meta.attrs["geometry.calo_wall_x_mm"] = np.asarray(geo.calo_wall_x_mm, dtype=np.float64)
    meta.attrs["geometry.xcalo_wall_y_mm"] = np.asarray(geo.xcalo_wall_y_mm, dtype=np.float64)
    meta.attrs["geometry.gveto_wall_z_mm"] = np.asarray(geo.gveto_wall_z_mm, dtype=np.float64)
    meta.attrs["geometry.n_layers"] = np.asarray(geo.n_layers, dtype=np.int32)
    meta.attrs["geometry.n_rows"] = np.asarray(geo.n_rows, dtype=np.int32)
    meta.attrs["preclustering.split_chamber"] = cfg.preclustering.split_chamber
    meta.attrs["extrapolation.endpoint_assignment"] = cfg.extrapolation.endpoint_assignment
    return f


def write_clusters(
    f: h5py.File,
    events: Sequence[TrackerEvent],
    outputs: Sequence[PreClusterOutput | None],
) -> None:
    """
    Store pre-clustering results, hits referenced by their row in the event.
    Events whose output is None (rejected input) contribute no rows.
    """
    grp = f.require_group("clusters")
    g_ign = grp.require_group("ignored")

    clusters_per_event: List[int] = []
    kind: List[int] = []
    hit_counts: List[int] = []
    hit_index: List[int] = []
    ignored_counts: List[int] = []
    ignored_index: List[int] = []

    for ev, out in zip(events, outputs):
        if out is None:
            clusters_per_event.append(0)
            ignored_counts.append(0)
            continue
        index = ev.hit_index()
        tagged: List[Tuple[int, list]] = [(CLUSTER_PROMPT, cl) for cl in out.prompt_clusters]
        tagged += [(CLUSTER_DELAYED, cl) for cl in out.delayed_clusters]
        clusters_per_event.append(len(tagged))
        for k, cl in tagged:
            kind.append(k)
            hit_counts.append(len(cl))
            hit_index.extend(index[id(h)] for h in cl)
        ignored_counts.append(len(out.ignored_hits))
        ignored_index.extend(index[id(h)] for h in out.ignored_hits)

    _replace_or_create(grp, "event_ptr", _ptr_from_counts(clusters_per_event))
    _replace_or_create(grp, "kind", np.asarray(kind, dtype=np.uint8))
    _replace_or_create(grp, "hit_ptr", _ptr_from_counts(hit_counts))
    _replace_or_create(grp, "hit_index", np.asarray(hit_index, dtype=np.int64), compression="gzip")
    _replace_or_create(g_ign, "event_ptr", _ptr_from_counts(ignored_counts))
    _replace_or_create(g_ign, "hit_index", np.asarray(ignored_index, dtype=np.int64), compression="gzip")


def write_particles(f: h5py.File, particles_per_event: Sequence[Sequence[ParticleTrack]]) -> None:
    """
    Store particle tracks, the trajectory pattern each one carries (the
    shortened one when the pipeline adopted it) and their vertices.
    """
    grp = f.require_group("particles")
    g_vtx = grp.require_group("vertices")

    particles = [p for evp in particles_per_event for p in evp]
    vertices = [v for p in particles for v in p.vertices]

    _replace_or_create(grp, "event_ptr", _ptr_from_counts([len(evp) for evp in particles_per_event]))
    _replace_or_create(grp, "track_id", np.array([p.track_id for p in particles], dtype=np.int32))
    _replace_or_create(
        grp, "traj_id",
        np.array([p.trajectory.traj_id if p.trajectory is not None else -1 for p in particles], dtype=np.int32),
    )
    _replace_or_create(grp, "vertex_ptr", _ptr_from_counts([len(p.vertices) for p in particles]))
    g_pat = grp.require_group("pattern")
    patterns = [p.trajectory.pattern if p.trajectory is not None else None for p in particles]
    for name, col in _pattern_columns(patterns).items():
        _replace_or_create(g_pat, name, col)

    pos = np.stack([v.position for v in vertices], axis=0) if vertices else np.zeros((0, 3))
    _replace_or_create(g_vtx, "hit_id", np.array([v.hit_id for v in vertices], dtype=np.int32))
    _replace_or_create(g_vtx, "position_mm", pos.astype(np.float64), compression="gzip")
    _replace_or_create(
        g_vtx, "category",
        np.array([v.category or "" for v in vertices], dtype=h5py.string_dtype()),
    )


def read_vertices(path: str) -> List[List[List[Tuple[str, np.ndarray]]]]:
    """
    Read back vertices as [event][particle] -> list of (category, position_mm).
    """
    with h5py.File(str(path), "r") as f:
        grp = f["particles"]
        ev_ptr = grp["event_ptr"][...]
        vtx_ptr = grp["vertex_ptr"][...]
        pos = grp["vertices/position_mm"][...]
        cat = grp["vertices/category"].asstr()[...]

    out: List[List[List[Tuple[str, np.ndarray]]]] = []
    for e in range(len(ev_ptr) - 1):
        ev_particles = []
        for p in range(int(ev_ptr[e]), int(ev_ptr[e + 1])):
            rows = range(int(vtx_ptr[p]), int(vtx_ptr[p + 1]))
            ev_particles.append([(str(cat[k]), pos[k].copy()) for k in rows])
        out.append(ev_particles)
    return out


def read_particle_patterns(path: str) -> List[List[TrajectoryPattern | None]]:
    """Read back the stored trajectory pattern of every particle, as [event][particle]."""
    with h5py.File(str(path), "r") as f:
        ev_ptr = f["particles/event_ptr"][...]
        g = {k: f["particles/pattern"][k][...] for k in f["particles/pattern"].keys()}
    return [
        [_pattern_from_row(g, p) for p in range(int(ev_ptr[e]), int(ev_ptr[e + 1]))]
        for e in range(len(ev_ptr) - 1)
    ]
