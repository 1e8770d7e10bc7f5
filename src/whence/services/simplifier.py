"""Viewport read path: optional filtering stages plus Douglas-Peucker."""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from whence.models.location import BBox, PathPoint
from whence.models.path import Path
from whence.services.geometry import simplify_path, tolerance_for_viewport
from whence.services.spikes import remove_spikes
from whence.services.stationary import prune_stationary

STAGE_STATIONARY = "stationary"
STAGE_SPIKES = "spikes"
STAGES = (STAGE_STATIONARY, STAGE_SPIKES)
DEFAULT_ORDER = (STAGE_STATIONARY, STAGE_SPIKES)


@dataclass
class SimplifyOptions:
    """Filtering stages applied before viewport simplification.

    A stage with a threshold of 0 is disabled.
    """

    prune_meters: float = 0.0
    spike_meters: float = 0.0
    order: Tuple[str, ...] = DEFAULT_ORDER

    def __post_init__(self):
        unknown = [stage for stage in self.order if stage not in STAGES]
        if unknown:
            raise ValueError(f"unknown simplification stage(s): {', '.join(unknown)}")

    @classmethod
    def from_query(
        cls,
        prune: Optional[float] = None,
        spikes: Optional[float] = None,
        order: Optional[str] = None,
    ) -> "SimplifyOptions":
        """Build options from query parameters; negative thresholds are ignored.

        Raises:
            ValueError: If ``order`` names an unknown stage
        """
        stages: Sequence[str] = DEFAULT_ORDER
        if order:
            stages = [s.strip() for s in order.split(",") if s.strip()]
        return cls(
            prune_meters=prune if prune and prune > 0 else 0.0,
            spike_meters=spikes if spikes and spikes > 0 else 0.0,
            order=tuple(stages),
        )


@dataclass
class RemovedPoints:
    stationary: List[PathPoint] = field(default_factory=list)
    spikes: List[PathPoint] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "stationary": [p.to_dict() for p in self.stationary],
            "spikes": [p.to_dict() for p in self.spikes],
        }


@dataclass
class PathsResult:
    paths: List[Path] = field(default_factory=list)
    removed: RemovedPoints = field(default_factory=RemovedPoints)


def apply_stages(points: List[PathPoint], options: SimplifyOptions, removed: RemovedPoints) -> List[PathPoint]:
    """Run the enabled stages in the requested order, collecting removed points."""
    for stage in options.order:
        if stage == STAGE_STATIONARY and options.prune_meters > 0:
            pruned = prune_stationary(points, options.prune_meters)
            points = pruned.points
            removed.stationary.extend(pruned.removed)
        elif stage == STAGE_SPIKES and options.spike_meters > 0:
            filtered = remove_spikes(points, options.spike_meters)
            points = filtered.points
            removed.spikes.extend(filtered.removed)
    return points


class PathSimplifier:
    """Loads stored paths for a viewport and simplifies them for rendering."""

    def __init__(self, store):
        self.store = store

    def query(
        self,
        bbox: BBox,
        start: Optional[int] = None,
        end: Optional[int] = None,
        options: Optional[SimplifyOptions] = None,
    ) -> PathsResult:
        """Paths intersecting ``bbox`` with points simplified for its zoom level.

        Args:
            bbox: Map viewport
            start: Optional lower time bound (unix seconds)
            end: Optional upper time bound (unix seconds)
            options: Filtering stages, defaults to none enabled

        Returns:
            PathsResult with simplified paths and per-stage removed points
        """
        options = options or SimplifyOptions()
        tolerance = tolerance_for_viewport(bbox)

        result = PathsResult()
        for path in self.store.query_paths_intersecting(bbox, start, end):
            points = self.store.get_path_points(path.id)
            points = apply_stages(points, options, result.removed)
            path.points = simplify_path(points, tolerance)
            result.paths.append(path)

        return result
