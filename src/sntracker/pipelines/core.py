from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional
import typer

from sntracker.config.load import load_config
from sntracker.errors import InputError
from sntracker.geometry.boundaries import DetectorBoundaries, GeigerLayout
from sntracker.io.event_store import (
    read_input_events,
    write_init,
    write_clusters,
    write_particles,
)
from sntracker.physics.particles import ParticleTrack
from sntracker.reco.pre_clusterizer import PreClusterizer, PreClusterOutput
from sntracker.reco.tracking import TrackingDiagnostics, build_particle_tracks
from sntracker.reco.vertex_extrapolation import VertexExtrapolator

logger = logging.getLogger(__name__)

_LEVELS = {0: logging.WARNING, 1: logging.INFO, 2: logging.DEBUG}


def setup_logging(diagnostics_level: int) -> None:
    """Map the [run].diagnostics_level (0/1/2) onto the root logging level."""
    logging.basicConfig(
        level=_LEVELS.get(diagnostics_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("sntracker").setLevel(_LEVELS.get(diagnostics_level, logging.INFO))


def run_pipeline(
    cfg_path: str,
    *,
    split_chamber: Optional[bool] = None,
    diagnostics_level: Optional[int] = None,
) -> Path:
    """
    Orchestrate pre-clustering and vertex extrapolation from a TOML config file.

    CLI flags (--split-chamber/--no-split-chamber, --diagnostics) override the
    corresponding TOML fields when not None.

    An event whose hits break the input contract (InputError) is skipped with
    a warning; an unusable setup (SetupError) aborts the run before any event
    is processed.

    Returns
    -------
    Path to written HDF5 file.
    """
    overrides: dict = {}
    if split_chamber is not None:
        overrides.setdefault("preclustering", {})["split_chamber"] = split_chamber
    if diagnostics_level is not None:
        overrides.setdefault("run", {})["diagnostics_level"] = diagnostics_level
    cfg = load_config(cfg_path, overrides=overrides)
    setup_logging(cfg.run.diagnostics_level)

    logger.info("[run] config = %s", cfg_path)
    logger.info("[run] input=%s -> output=%s", cfg.io.input_path, cfg.io.output_path)
    logger.info(
        "[run] split_chamber=%s prompt=%s delayed=%s endpoint_assignment=%s",
        cfg.preclustering.split_chamber,
        cfg.preclustering.processing_prompt_hits,
        cfg.preclustering.processing_delayed_hits,
        cfg.extrapolation.endpoint_assignment,
    )

    # Algorithms; PreClusterizer raises SetupError here
    clusterizer = PreClusterizer(cfg.preclustering)
    extrapolator = VertexExtrapolator(
        DetectorBoundaries.from_cfg(cfg.geometry),
        GeigerLayout.from_cfg(cfg.geometry),
        cfg.extrapolation,
    )

    events = read_input_events(cfg.io.input_path, max_events=cfg.run.max_events)
    logger.info("[pipeline] Got %d events", len(events))

    outputs: List[Optional[PreClusterOutput]] = []
    particles: List[List[ParticleTrack]] = []
    diag = TrackingDiagnostics()
    n_rejected = 0
    for ev in events:
        try:
            out = clusterizer.process(ev.hits)
        except InputError as exc:
            logger.warning("[preclustering] Skipping event %d: %s", ev.event_id, exc)
            outputs.append(None)
            particles.append([])
            n_rejected += 1
            continue
        outputs.append(out)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("[preclustering] event %d\n%s", ev.event_id, out.dump())
        particles.append(build_particle_tracks(ev.trajectories, extrapolator, cfg.extrapolation, diag))

    logger.info(
        "[pipeline] %d events processed, %d rejected; %d trajectories, %d failed, vertices=%s",
        len(events) - n_rejected, n_rejected,
        diag.trajectories_in, diag.failed_extrapolation, dict(sorted(diag.vertices.items())),
    )

    # HDF5 output
    out_path = Path(cfg.io.output_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    f = write_init(str(out_path), cfg_path, cfg)
    try:
        write_clusters(f, events, outputs)
        write_particles(f, particles)
    finally:
        f.close()
    logger.info("[pipeline] Wrote %s", out_path)
    return out_path


# ---------------------------------------------------------------------------
# Unified CLI entry point
# ---------------------------------------------------------------------------

app = typer.Typer(help="Tracker pre-clustering and vertex extrapolation (sntracker.pipelines.core)")


@app.command()
def main(
    cfg_path: str = typer.Argument(
        ...,
        help="Path to TOML config file",
    ),
    split_chamber: Optional[bool] = typer.Option(
        None,
        "--split-chamber / --no-split-chamber",
        help="Cluster each half-chamber separately; overrides [preclustering].split_chamber when set",
    ),
    diagnostics: Optional[int] = typer.Option(
        None,
        "--diagnostics",
        "-d",
        help="Override [run].diagnostics_level (0=warnings, 1=info, 2=debug)",
    ),
):
    """
    Run pre-clustering and vertex extrapolation for a single config.
    """
    out_path = run_pipeline(cfg_path, split_chamber=split_chamber, diagnostics_level=diagnostics)
    typer.echo(str(out_path))


if __name__ == "__main__":
    app()
