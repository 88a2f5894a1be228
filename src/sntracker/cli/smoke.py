# src/sntracker/cli/smoke.py
'''
A small CLI that runs:
synthetic events → input HDF5 → pre-clustering + vertex extrapolation → output HDF5 (+ PNG).
It writes a minimal TOML config next to the output so the run goes through
core.run_pipeline exactly like a production run.
'''
from __future__ import annotations
import argparse
from collections import Counter
from pathlib import Path

import numpy as np

from sntracker.io.event_store import read_vertices, write_input_events
from sntracker.pipelines.core import run_pipeline
from sntracker.sim.synth import synth_tracker_events

_CFG_TEMPLATE = """\
[run]
diagnostics_level = {diag}

[io]
input_path = "{input_path}"
output_path = "{output_path}"

[preclustering]
cell_size_mm = {cell_size}
split_chamber = {split}
"""


def main():
    ap = argparse.ArgumentParser(description="Synthetic tracker smoke pipeline")
    ap.add_argument("-n", "--n-events", type=int, default=20, help="Number of synthetic events")
    ap.add_argument("-o", "--out", type=Path, default=Path("sntracker_smoke.h5"), help="Output HDF5")
    ap.add_argument("--seed", type=int, default=1234)
    ap.add_argument("--n-delayed", type=int, default=3, help="Delayed hits per event")
    ap.add_argument("--n-noisy", type=int, default=1, help="Noisy hits per event")
    ap.add_argument("--split-chamber", action="store_true")
    ap.add_argument("--cell-size", type=float, default=44.0)
    ap.add_argument("--diagnostics", type=int, default=1, choices=[0, 1, 2])
    ap.add_argument("--png", action="store_true", help="Render event 0 to PNG")
    args = ap.parse_args()

    out = args.out
    in_path = out.with_name(out.stem + "_input.h5")
    cfg_path = out.with_suffix(".toml")

    rng = np.random.default_rng(args.seed)
    events = synth_tracker_events(
        args.n_events, rng=rng,
        n_delayed=args.n_delayed, n_noisy=args.n_noisy, cell_size_mm=args.cell_size,
    )
    write_input_events(str(in_path), events)
    print(f"[smoke] Wrote {len(events)} synthetic events to {in_path}")

    cfg_path.write_text(_CFG_TEMPLATE.format(
        diag=args.diagnostics,
        input_path=in_path.as_posix(),
        output_path=out.as_posix(),
        cell_size=args.cell_size,
        split="true" if args.split_chamber else "false",
    ))
    out_path = run_pipeline(str(cfg_path))

    counts = Counter(cat for ev in read_vertices(str(out_path)) for track in ev for cat, _ in track)
    print(f"[smoke] Vertices per category: {dict(sorted(counts.items()))}")

    if args.png:
        from sntracker.vis.hdf import save_vertices_png
        png = save_vertices_png(str(out_path), event=0, input_path=str(in_path))
        print(f"[smoke] PNG saved to {png}")

if __name__ == "__main__":
    main()
