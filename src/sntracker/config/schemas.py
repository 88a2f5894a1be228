from __future__ import annotations
from pydantic import BaseModel, Field, field_validator
from typing import Literal, Optional, List
import math

from sntracker.errors import SetupError


class RunCfg(BaseModel):
    """
    Global run controls.

    diagnostics_level maps onto logging levels: 0=WARNING, 1=INFO, 2=DEBUG.
    """

    diagnostics_level: int = 1
    max_events: Optional[int] = None

    @field_validator("diagnostics_level")
    def _diag_range(cls, v: int) -> int:
        if v not in (0, 1, 2):
            raise ValueError("diagnostics_level must be 0, 1, or 2")
        return v


class IOCfg(BaseModel):
    """
    I/O paths.

    TOML:

    [io]
    input_path  = "events.h5"     # written by sntracker.io.event_store.write_input_events
    output_path = "reco.h5"
    """

    input_path: str
    output_path: str


class PreClusteringCfg(BaseModel):
    """
    Setup of the tracker pre-clusterizer.

    TOML:

    [preclustering]
    cell_size_mm = 44.0
    delayed_hit_cluster_time_ns = 10000.0
    processing_prompt_hits = true
    processing_delayed_hits = true
    split_chamber = false

    The cell size is deliberately optional at construction time; check()
    rejects an undefined or non-positive value before any processing.
    """

    cell_size_mm: Optional[float] = None
    delayed_hit_cluster_time_ns: float = 10000.0
    processing_prompt_hits: bool = True
    processing_delayed_hits: bool = True
    split_chamber: bool = False

    def check(self) -> None:
        """Raise SetupError if the setup cannot be used for processing."""
        if self.cell_size_mm is None or math.isnan(self.cell_size_mm):
            raise SetupError("PreClusteringCfg.check: Undefined cell size !")
        if self.cell_size_mm <= 0.0:
            raise SetupError(
                f"PreClusteringCfg.check: Negative cell size makes no sense ! "
                f"(cell_size_mm={self.cell_size_mm})"
            )


class GeometryCfg(BaseModel):
    """
    Fixed boundary coordinates of the detector, as served by the geometry
    locators. Index 0 is the back side (x < 0), index 1 the front side (x > 0).

    TOML:

    [geometry]
    foil_x_mm = 0.0
    calo_wall_x_mm = [-435.0, 435.0]
    xcalo_wall_y_mm = [[-2505.5, 2505.5], [-2505.5, 2505.5]]   # per side: [left, right]
    gveto_wall_z_mm = [[-1550.0, 1550.0], [-1550.0, 1550.0]]   # per side: [bottom, top]
    n_layers = [9, 9]
    n_rows = [113, 113]
    """

    foil_x_mm: float = 0.0
    calo_wall_x_mm: List[float] = Field(default_factory=lambda: [-435.0, 435.0])
    xcalo_wall_y_mm: List[List[float]] = Field(
        default_factory=lambda: [[-2505.5, 2505.5], [-2505.5, 2505.5]]
    )
    gveto_wall_z_mm: List[List[float]] = Field(
        default_factory=lambda: [[-1550.0, 1550.0], [-1550.0, 1550.0]]
    )
    n_layers: List[int] = Field(default_factory=lambda: [9, 9])
    n_rows: List[int] = Field(default_factory=lambda: [113, 113])

    @field_validator("calo_wall_x_mm", "n_layers", "n_rows")
    def _two_sides(cls, v: list) -> list:
        if len(v) != 2:
            raise ValueError("expected exactly two values (back side, front side)")
        return v

    @field_validator("xcalo_wall_y_mm", "gveto_wall_z_mm")
    def _two_sides_two_walls(cls, v: List[List[float]]) -> List[List[float]]:
        if len(v) != 2 or any(len(walls) != 2 for walls in v):
            raise ValueError("expected a 2x2 table: two sides with two walls each")
        return v


class ExtrapolationCfg(BaseModel):
    """
    Vertex extrapolation controls.

    endpoint_assignment:
      "closest_endpoint" each candidate is first attributed to the closer endpoint
                         (ties to the last one), then each endpoint keeps its closest
      "nearest"          each endpoint keeps its closest candidate; a candidate
                         claimed by both ends stays with the closer one
    """

    endpoint_assignment: Literal["nearest", "closest_endpoint"] = "closest_endpoint"
    adopt_shortened: bool = True
    only_default_trajectories: bool = True


class Config(BaseModel):
    """
    Top-level TOML configuration.
    """

    run: RunCfg = Field(default_factory=RunCfg)
    io: IOCfg
    preclustering: PreClusteringCfg
    geometry: GeometryCfg = Field(default_factory=GeometryCfg)
    extrapolation: ExtrapolationCfg = Field(default_factory=ExtrapolationCfg)
