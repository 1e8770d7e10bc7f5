"""Geometry helpers: haversine distance and Douglas-Peucker simplification."""

import math
from typing import List

from whence.models.location import BBox, PathPoint

EARTH_RADIUS_M = 6371000

MIN_TOLERANCE_DEG = 0.00001  # ~1 m
MAX_TOLERANCE_DEG = 0.001  # ~100 m


def haversine_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters between two points given in degrees.

    No range validation is done; NaN input yields NaN.
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)

    a = math.sin(dlat / 2) ** 2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_M * c


def distance_meters(p1, p2) -> float:
    """Haversine distance between two objects with ``lat``/``lon`` attributes."""
    return haversine_meters(p1.lat, p1.lon, p2.lat, p2.lon)


def perpendicular_distance_deg(point: PathPoint, start: PathPoint, end: PathPoint) -> float:
    """Distance from ``point`` to the line through ``start`` and ``end``.

    Computed in raw lat/lon degree space. If the line degenerates to a
    single point, the plain Euclidean distance to it is returned.
    """
    dx = end.lon - start.lon
    dy = end.lat - start.lat

    if dx == 0 and dy == 0:
        return math.hypot(point.lon - start.lon, point.lat - start.lat)

    num = abs(dy * point.lon - dx * point.lat + end.lon * start.lat - end.lat * start.lon)
    return num / math.hypot(dx, dy)


def simplify_path(points: List[PathPoint], tolerance: float) -> List[PathPoint]:
    """Simplify a path with the Douglas-Peucker algorithm.

    Args:
        points: Points ordered by timestamp
        tolerance: Maximum allowed deviation in degrees

    Returns:
        ``points`` itself if it has at most two points, otherwise a new list
        that is a subsequence of ``points`` keeping the first and last point
    """
    if len(points) <= 2:
        return points

    keep = [False] * len(points)
    keep[0] = keep[-1] = True

    # Explicit stack of (first, last) index ranges instead of recursion
    stack = [(0, len(points) - 1)]
    while stack:
        first, last = stack.pop()
        if last - first < 2:
            continue

        max_dist = 0.0
        max_idx = first
        for i in range(first + 1, last):
            dist = perpendicular_distance_deg(points[i], points[first], points[last])
            if dist > max_dist:
                max_dist = dist
                max_idx = i

        if max_dist > tolerance and max_idx > first:
            keep[max_idx] = True
            stack.append((max_idx, last))
            stack.append((first, max_idx))

    return [p for p, k in zip(points, keep) if k]


def tolerance_for_viewport(bbox: BBox) -> float:
    """Simplification tolerance for a map viewport.

    0.1 % of the smaller viewport span, clamped to [1e-5, 1e-3] degrees.
    """
    min_span = min(bbox.lat_span, bbox.lon_span)
    tolerance = min_span * 0.001
    return min(max(tolerance, MIN_TOLERANCE_DEG), MAX_TOLERANCE_DEG)
