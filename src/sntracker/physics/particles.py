from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional

import numpy as np

from .trajectories import TrackerTrajectory

VertexCategory = Literal["foil", "calo", "xcalo", "gveto", "wire"]

VERTEX_ON_SOURCE_FOIL: VertexCategory = "foil"
VERTEX_ON_MAIN_CALORIMETER: VertexCategory = "calo"
VERTEX_ON_X_CALORIMETER: VertexCategory = "xcalo"
VERTEX_ON_GAMMA_VETO: VertexCategory = "gveto"
VERTEX_ON_WIRE: VertexCategory = "wire"

VERTEX_CATEGORIES: tuple[VertexCategory, ...] = (
    VERTEX_ON_SOURCE_FOIL,
    VERTEX_ON_MAIN_CALORIMETER,
    VERTEX_ON_X_CALORIMETER,
    VERTEX_ON_GAMMA_VETO,
    VERTEX_ON_WIRE,
)

VERTEX_TYPE_KEY = "vertex.type"


@dataclass(slots=True)
class Vertex:
    """
    Positioned 3D marker attached to a particle track.

    The boundary category is stored under auxiliaries["vertex.type"].
    """
    hit_id: int
    position: np.ndarray
    dimension: int = 3
    auxiliaries: Dict[str, Any] = field(default_factory=dict)

    @property
    def category(self) -> Optional[str]:
        return self.auxiliaries.get(VERTEX_TYPE_KEY)


@dataclass
class ParticleTrack:
    track_id: int
    trajectory: Optional[TrackerTrajectory] = None
    vertices: List[Vertex] = field(default_factory=list)

    def _make_vertex(self, position, category: str) -> Vertex:
        if category not in VERTEX_CATEGORIES:
            raise ValueError(f"Unknown vertex category {category!r}")
        return Vertex(
            hit_id=len(self.vertices),
            position=np.asarray(position, dtype=np.float64).reshape(3).copy(),
            dimension=3,
            auxiliaries={VERTEX_TYPE_KEY: category},
        )

    def add_vertex(self, position, category: str) -> Vertex:
        vtx = self._make_vertex(position, category)
        self.vertices.append(vtx)
        return vtx

    def prepend_vertex(self, position, category: str) -> Vertex:
        """
        Insert a vertex ahead of the existing ones (e.g. a common vertex shared
        with another track). hit_id stays equal to the position in `vertices`:
        the new vertex gets 0 and the others shift by one.
        """
        vtx = self._make_vertex(position, category)
        self.vertices.insert(0, vtx)
        for i, v in enumerate(self.vertices):
            v.hit_id = i
        return vtx

    def vertices_of(self, category: str) -> List[Vertex]:
        return [v for v in self.vertices if v.category == category]
