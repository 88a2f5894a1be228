# src/sntracker/reco/pre_clusterizer.py
"""
Tracker pre-clustering.

Groups the Geiger hits of one event using simple criteria:

  - prompt hits are grouped within a single prompt cluster per half-chamber,
  - delayed hits are grouped within delayed clusters per half-chamber when
    they fall in a time coincidence window (~10 us) opened by the earliest
    hit of the cluster.

At most one prompt cluster exists per half-chamber (two in total when the
chamber is split). There is no limit on the number of delayed clusters.
"""
from __future__ import annotations
from dataclasses import dataclass, field
import logging
from typing import Iterator, List, Sequence

from sntracker.config.schemas import PreClusteringCfg
from sntracker.errors import InputError
from sntracker.physics.hits import TrackerHit

logger = logging.getLogger(__name__)

Cluster = List[TrackerHit]


@dataclass
class PreClusterOutput:
    ignored_hits: List[TrackerHit] = field(default_factory=list)
    prompt_clusters: List[Cluster] = field(default_factory=list)
    delayed_clusters: List[Cluster] = field(default_factory=list)

    def all_hits(self) -> Iterator[TrackerHit]:
        yield from self.ignored_hits
        for cl in self.prompt_clusters:
            yield from cl
        for cl in self.delayed_clusters:
            yield from cl

    def dump(self) -> str:
        lines = ["PreClusterOutput:"]
        lines.append(f"|-- Ignored hits : {len(self.ignored_hits)}")
        lines.append(f"|-- Prompt clusters: {len(self.prompt_clusters)}")
        for i, cl in enumerate(self.prompt_clusters):
            tag = "|   `-- " if i == len(self.prompt_clusters) - 1 else "|   |-- "
            lines.append(f"{tag}Prompt cluster #{i}  size : {len(cl)}")
        lines.append(f"`-- Delayed clusters: {len(self.delayed_clusters)}")
        for i, cl in enumerate(self.delayed_clusters):
            tag = "    `-- " if i == len(self.delayed_clusters) - 1 else "    |-- "
            lines.append(f"{tag}Delayed cluster #{i}  size : {len(cl)}")
        return "\n".join(lines)


def check_input(hits: Sequence[TrackerHit]) -> None:
    """
    Raise InputError if the hit collection breaks the input contract:
    null or doubly referenced hits, missing geometry id or xy position,
    delayed hits without a delayed time.
    """
    seen: set[int] = set()
    for i, hit in enumerate(hits):
        if hit is None:
            raise InputError(f"check_input: Null hit at index {i} !")
        if id(hit) in seen:
            raise InputError(f"check_input: Double referenced hit (hit_id={hit.hit_id}) !")
        seen.add(id(hit))
        if not hit.has_geom_id():
            raise InputError(f"check_input: Missing GID (hit_id={hit.hit_id}) !")
        if not hit.has_xy():
            raise InputError(f"check_input: Missing XY position (hit_id={hit.hit_id}) !")
        if hit.is_delayed() and not hit.has_delayed_time():
            raise InputError(f"check_input: Missing delayed time (hit_id={hit.hit_id}) !")


class PreClusterizer:
    """
    Pre-clusterizer of Geiger hits.

    The setup is checked once at construction (SetupError on failure); each
    call to process() works on freshly allocated buckets so instances can be
    shared between events.
    """

    def __init__(self, setup: PreClusteringCfg) -> None:
        setup.check()
        self.setup = setup

    @property
    def n_effective_sides(self) -> int:
        return 2 if self.setup.split_chamber else 1

    def _effective_side(self, side: int) -> int:
        return side if self.setup.split_chamber else 0

    def process(self, hits: Sequence[TrackerHit]) -> PreClusterOutput:
        check_input(hits)
        out = PreClusterOutput()

        prompt_hits: List[List[TrackerHit]] = [[] for _ in range(self.n_effective_sides)]
        delayed_hits: List[List[TrackerHit]] = [[] for _ in range(self.n_effective_sides)]

        for hit in hits:
            if hit.is_sterile() or hit.is_noisy():
                out.ignored_hits.append(hit)
                continue
            side = hit.side
            if side not in (0, 1):
                out.ignored_hits.append(hit)
                continue
            if hit.is_prompt():
                if self.setup.processing_prompt_hits:
                    prompt_hits[self._effective_side(side)].append(hit)
                else:
                    out.ignored_hits.append(hit)
            else:
                if self.setup.processing_delayed_hits:
                    delayed_hits[self._effective_side(side)].append(hit)
                else:
                    out.ignored_hits.append(hit)

        for side_hits in prompt_hits:
            self._cluster_prompt(side_hits, out)
        for side_hits in delayed_hits:
            self._cluster_delayed(side_hits, out)

        logger.debug(
            "[preclustering] %d hits -> %d prompt / %d delayed clusters, %d ignored",
            len(hits), len(out.prompt_clusters), len(out.delayed_clusters), len(out.ignored_hits),
        )
        return out

    @staticmethod
    def _cluster_prompt(side_hits: List[TrackerHit], out: PreClusterOutput) -> None:
        # All or nothing: a lone prompt hit cannot make a cluster
        if len(side_hits) == 1:
            out.ignored_hits.append(side_hits[0])
        elif len(side_hits) > 1:
            out.prompt_clusters.append(list(side_hits))

    def _cluster_delayed(self, side_hits: List[TrackerHit], out: PreClusterOutput) -> None:
        if len(side_hits) < 2:
            out.ignored_hits.extend(side_hits)
            return

        window = self.setup.delayed_hit_cluster_time_ns
        ordered = sorted(side_hits, key=lambda h: h.get_delayed_time())

        # The reference is the earliest hit of the cluster being built; it only
        # moves when a hit falls outside its window.
        reference = ordered[0]
        current: Cluster | None = None
        for hit in ordered[1:]:
            if hit.get_delayed_time() > reference.get_delayed_time() + window:
                if current is None:
                    out.ignored_hits.append(reference)
                reference = hit
                current = None
                continue
            if current is None:
                current = [reference]
                out.delayed_clusters.append(current)
            current.append(hit)

        if current is None:
            out.ignored_hits.append(reference)
