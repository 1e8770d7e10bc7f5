"""Grouping of photo locations into map clusters for a viewport."""

import math
from dataclasses import dataclass, field
from typing import List, Sequence

from whence.models.location import BBox, PhotoLocation
from whence.models.timeline import TimelinePhoto
from whence.services.timeline_builder import thumbnail_url

RADIUS_VIEWPORT_FRACTION = 0.02
MIN_RADIUS_DEG = 0.0005  # ~50 m
MAX_RADIUS_DEG = 0.1  # ~10 km


@dataclass
class PhotoCluster:
    """Photos taken close to each other; the newest one represents the cluster."""

    lat: float
    lon: float
    photos: List[PhotoLocation] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.photos)

    @property
    def key_photo(self) -> PhotoLocation:
        return self.photos[-1]

    def to_dict(self) -> dict:
        key = self.key_photo
        return {
            "lat": key.lat,
            "lon": key.lon,
            "count": self.count,
            "thumbnail_url": thumbnail_url(key),
            "photos": [
                TimelinePhoto(source_id=p.source_id, thumbnail_url=thumbnail_url(p), filename=p.filename).to_dict()
                for p in self.photos
            ],
        }


def cluster_radius(viewport: BBox) -> float:
    """Cluster radius in degrees: 2 % of the shorter viewport span, clamped."""
    radius = min(viewport.lat_span, viewport.lon_span) * RADIUS_VIEWPORT_FRACTION
    return max(MIN_RADIUS_DEG, min(MAX_RADIUS_DEG, radius))


def cluster_photos(photos: Sequence[PhotoLocation], radius: float) -> List[PhotoCluster]:
    """Greedy clustering by planar distance in degrees.

    Each photo joins the first cluster whose running centroid is closer
    than ``radius``, otherwise it starts a new one. Photos keep their input
    order inside a cluster, so for time-sorted input the key photo is the
    most recent one.
    """
    clusters: List[PhotoCluster] = []
    for photo in photos:
        for cluster in clusters:
            if math.hypot(photo.lat - cluster.lat, photo.lon - cluster.lon) < radius:
                n = cluster.count
                cluster.lat = (cluster.lat * n + photo.lat) / (n + 1)
                cluster.lon = (cluster.lon * n + photo.lon) / (n + 1)
                cluster.photos.append(photo)
                break
        else:
            clusters.append(PhotoCluster(lat=photo.lat, lon=photo.lon, photos=[photo]))
    return clusters
