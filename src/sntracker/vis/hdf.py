import h5py
import numpy as np
import matplotlib.pyplot as plt
from pathlib import Path

from sntracker.io.event_store import read_vertices

_CATEGORY_MARKERS = {
    "foil": ("o", "tab:green"),
    "calo": ("s", "tab:red"),
    "xcalo": ("D", "tab:orange"),
    "gveto": ("^", "tab:purple"),
    "wire": ("x", "tab:gray"),
}


def _event_hits_xy(input_path: str, event: int) -> np.ndarray:
    with h5py.File(input_path, "r") as f:
        ptr = f["hits/event_ptr"][...]
        if event >= len(ptr) - 1:
            raise KeyError(f"event {event} not found in {input_path}")
        lo, hi = int(ptr[event]), int(ptr[event + 1])
        return np.stack([f["hits/x_mm"][lo:hi], f["hits/y_mm"][lo:hi]], axis=1)


def save_vertices_png(
    h5_path: str,
    out_png: str | None = None,
    event: int = 0,
    input_path: str | None = None,
):
    """
    Top view (x, y) of one event: particle vertices by category, joined per
    track, plus the event's hit cells when the input events file is given.
    """
    h5_path = str(h5_path)
    vertices = read_vertices(h5_path)
    if event >= len(vertices):
        raise KeyError(f"event {event} not found in {h5_path}")

    if out_png is None:
        out_png = str(Path(h5_path).with_name(f"{Path(h5_path).stem}_ev{event}.png"))

    plt.figure()
    if input_path is not None:
        xy = _event_hits_xy(str(input_path), event)
        plt.scatter(xy[:, 0], xy[:, 1], s=12, facecolors="none", edgecolors="k", label="hits")
    seen = set()
    for track in vertices[event]:
        if not track:
            continue
        pts = np.stack([p for _, p in track], axis=0)
        plt.plot(pts[:, 0], pts[:, 1], "-", color="tab:blue", lw=0.8)
        for cat, p in track:
            marker, color = _CATEGORY_MARKERS.get(cat, ("+", "k"))
            plt.scatter([p[0]], [p[1]], marker=marker, color=color,
                        label=None if cat in seen else cat)
            seen.add(cat)
    plt.axvline(0.0, color="0.6", lw=0.8, ls="--")
    plt.xlabel("x [mm]")
    plt.ylabel("y [mm]")
    plt.title(Path(h5_path).name + f" : event {event}")
    plt.legend(loc="best", fontsize="small")
    plt.tight_layout()
    plt.savefig(out_png, dpi=150)
    plt.close()
    return out_png
