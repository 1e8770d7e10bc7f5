"""Pruning of stationary points into anchor-fixed clusters."""

from dataclasses import dataclass, field
from typing import List

from whence.models.location import PathPoint
from whence.models.path import StationaryCluster
from whence.services.geometry import haversine_meters


@dataclass
class PruneResult:
    """Output of :func:`prune_stationary`."""

    points: List[PathPoint] = field(default_factory=list)
    removed: List[PathPoint] = field(default_factory=list)
    clusters: List[StationaryCluster] = field(default_factory=list)


def _open_cluster(point: PathPoint) -> StationaryCluster:
    return StationaryCluster(
        lat=point.lat,
        lon=point.lon,
        start_ts=point.timestamp,
        end_ts=point.timestamp,
        point_count=1,
    )


def _representative(cluster: StationaryCluster) -> PathPoint:
    return PathPoint(lat=cluster.lat, lon=cluster.lon, timestamp=cluster.start_ts)


def prune_stationary(points: List[PathPoint], min_dist_meters: float) -> PruneResult:
    """Fold points that stay near a cluster anchor into that cluster.

    The anchor is the first point of a cluster and never moves. Every
    following point strictly closer than ``min_dist_meters`` to the anchor
    is absorbed; the first point at or beyond the threshold closes the
    cluster and anchors a new one. Each closed cluster is represented by
    one point at the anchor position and the cluster start time.

    Args:
        points: Points ordered by timestamp
        min_dist_meters: Cluster radius in meters

    Returns:
        PruneResult with kept points, absorbed points and the clusters
    """
    if not points:
        return PruneResult()
    if len(points) == 1:
        return PruneResult(points=points, clusters=[_open_cluster(points[0])])

    kept: List[PathPoint] = []
    removed: List[PathPoint] = []
    clusters: List[StationaryCluster] = []

    cluster = _open_cluster(points[0])
    for point in points[1:]:
        dist = haversine_meters(cluster.lat, cluster.lon, point.lat, point.lon)
        if dist < min_dist_meters:
            cluster.end_ts = point.timestamp
            cluster.point_count += 1
            removed.append(point)
        else:
            kept.append(_representative(cluster))
            clusters.append(cluster)
            cluster = _open_cluster(point)

    kept.append(_representative(cluster))
    clusters.append(cluster)

    return PruneResult(points=kept, removed=removed, clusters=clusters)
