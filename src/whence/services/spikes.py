"""Removal of single-point GPS outliers."""

from dataclasses import dataclass, field
from typing import List

from whence.models.location import PathPoint
from whence.services.geometry import distance_meters


@dataclass
class SpikeResult:
    """Output of :func:`remove_spikes`."""

    points: List[PathPoint] = field(default_factory=list)
    removed: List[PathPoint] = field(default_factory=list)


def remove_spikes(points: List[PathPoint], threshold_meters: float) -> SpikeResult:
    """Drop points that stick out while their neighbours stay close.

    Point B between the last kept point A and the next point C is a spike
    when ``d(A,B) > t``, ``d(B,C) > t`` and ``d(A,C) <= t``. Comparing
    against the last kept point lets consecutive spikes be judged against
    the same anchor. First and last points are always kept.
    """
    if len(points) < 3:
        return SpikeResult(points=points)

    kept = [points[0]]
    removed: List[PathPoint] = []

    for i in range(1, len(points) - 1):
        a = kept[-1]
        b = points[i]
        c = points[i + 1]

        if (
            distance_meters(a, b) > threshold_meters
            and distance_meters(b, c) > threshold_meters
            and distance_meters(a, c) <= threshold_meters
        ):
            removed.append(b)
        else:
            kept.append(b)

    kept.append(points[-1])
    return SpikeResult(points=kept, removed=removed)
