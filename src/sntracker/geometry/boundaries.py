from __future__ import annotations
from dataclasses import dataclass
from typing import List, Literal, Tuple

from sntracker.config.schemas import GeometryCfg
from sntracker.physics.particles import (
    VERTEX_ON_GAMMA_VETO,
    VERTEX_ON_MAIN_CALORIMETER,
    VERTEX_ON_SOURCE_FOIL,
    VERTEX_ON_X_CALORIMETER,
)

Axis = Literal["x", "y", "z"]

SIDE_BACK = 0
SIDE_FRONT = 1
NSIDES = 2

XCALO_WALL_LEFT = 0
XCALO_WALL_RIGHT = 1
GVETO_WALL_BOTTOM = 0
GVETO_WALL_TOP = 1
NWALLS_PER_SIDE = 2

AXIS_INDEX = {"x": 0, "y": 1, "z": 2}


@dataclass(frozen=True)
class Surface:
    """Plane fixed at `value` along `axis`, tagged with the vertex category it yields."""
    category: str
    axis: Axis
    value: float
    wall: int = 0

    @property
    def axis_index(self) -> int:
        return AXIS_INDEX[self.axis]


def _check_side(side: int) -> None:
    if side not in (SIDE_BACK, SIDE_FRONT):
        raise ValueError(f"Invalid side {side!r}; expected 0 (back) or 1 (front)")


def _check_wall(wall: int) -> None:
    if wall not in (0, 1):
        raise ValueError(f"Invalid wall {wall!r}; expected 0 or 1")


@dataclass(frozen=True)
class DetectorBoundaries:
    """
    Boundary planes of the tracking volume [mm].

    calo_wall_x: main calorimeter entrance window x, per side (back, front)
    xcalo_wall_y: X-calorimeter window y, per side, per wall (left, right)
    gveto_wall_z: gamma-veto window z, per side, per wall (bottom, top)
    """
    foil_x: float
    calo_wall_x: Tuple[float, float]
    xcalo_wall_y: Tuple[Tuple[float, float], Tuple[float, float]]
    gveto_wall_z: Tuple[Tuple[float, float], Tuple[float, float]]

    @classmethod
    def from_cfg(cls, cfg: GeometryCfg) -> "DetectorBoundaries":
        return cls(
            foil_x=float(cfg.foil_x_mm),
            calo_wall_x=(float(cfg.calo_wall_x_mm[0]), float(cfg.calo_wall_x_mm[1])),
            xcalo_wall_y=tuple(
                (float(w[0]), float(w[1])) for w in cfg.xcalo_wall_y_mm
            ),
            gveto_wall_z=tuple(
                (float(w[0]), float(w[1])) for w in cfg.gveto_wall_z_mm
            ),
        )

    def wall_window_x(self, side: int) -> float:
        _check_side(side)
        return self.calo_wall_x[side]

    def xcalo_wall_y_at(self, side: int, wall: int) -> float:
        _check_side(side)
        _check_wall(wall)
        return self.xcalo_wall_y[side][wall]

    def gveto_wall_z_at(self, side: int, wall: int) -> float:
        _check_side(side)
        _check_wall(wall)
        return self.gveto_wall_z[side][wall]

    def surfaces(self, side: int) -> List[Surface]:
        """
        Candidate surfaces for a track on `side`, in insertion order:
        source foil, both main calorimeter walls, the two X-calorimeter walls
        and the two gamma-veto walls of that side.
        """
        _check_side(side)
        out = [Surface(VERTEX_ON_SOURCE_FOIL, "x", self.foil_x)]
        for iside in range(NSIDES):
            out.append(Surface(VERTEX_ON_MAIN_CALORIMETER, "x", self.wall_window_x(iside), wall=iside))
        for iwall in range(NWALLS_PER_SIDE):
            out.append(Surface(VERTEX_ON_X_CALORIMETER, "y", self.xcalo_wall_y_at(side, iwall), wall=iwall))
        for iwall in range(NWALLS_PER_SIDE):
            out.append(Surface(VERTEX_ON_GAMMA_VETO, "z", self.gveto_wall_z_at(side, iwall), wall=iwall))
        return out


@dataclass(frozen=True)
class GeigerLayout:
    """Number of drift-cell layers and rows per side of the tracking chamber."""
    n_layers: Tuple[int, int]
    n_rows: Tuple[int, int]

    @classmethod
    def from_cfg(cls, cfg: GeometryCfg) -> "GeigerLayout":
        return cls(
            n_layers=(int(cfg.n_layers[0]), int(cfg.n_layers[1])),
            n_rows=(int(cfg.n_rows[0]), int(cfg.n_rows[1])),
        )

    def number_of_layers(self, side: int) -> int:
        _check_side(side)
        return self.n_layers[side]

    def number_of_rows(self, side: int) -> int:
        _check_side(side)
        return self.n_rows[side]
