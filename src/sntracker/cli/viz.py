from __future__ import annotations

import typer
from typing import Optional

from sntracker.vis.hdf import save_vertices_png

app = typer.Typer(help="Tracker reconstruction visualization tools")

@app.command("h5-to-png")
def h5_to_png(
    h5_path: str = typer.Argument(..., help="Path to reconstruction HDF5 file containing /particles"),
    event: int = typer.Option(0, "--event", "-e", help="Event row to render"),
    input_path: Optional[str] = typer.Option(None, "--input", "-i", help="Input events file, to overlay hits"),
    out: Optional[str] = typer.Option(None, "--out", "-o", help="Output PNG path (defaults to file_ev<N>.png)"),
):
    """Render the vertices (and optionally hits) of one event to a PNG."""
    out_png = save_vertices_png(h5_path, out_png=out, event=event, input_path=input_path)
    typer.echo(f"Wrote {out_png}")

if __name__ == "__main__":
    app()
