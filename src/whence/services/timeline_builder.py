"""Building a day timeline of stops and travel segments."""

from dataclasses import replace
from typing import List, Optional, Sequence

from whence.core.logger import log_call, log_result, log_warning
from whence.models.location import PathPoint, PhotoLocation
from whence.models.path import StationaryCluster
from whence.models.timeline import ENTRY_STOP, ENTRY_TRAVEL, TimelineEntry, TimelinePhoto
from whence.services.geometry import haversine_meters
from whence.services.stationary import prune_stationary

STOP_RADIUS_M = 50.0
MERGE_DISTANCE_M = 500.0
MERGE_MAX_GAP_S = 30 * 60
MIN_STOP_DURATION_S = 10 * 60
MIN_TRAVEL_DURATION_S = 60
PHOTO_BUFFER_S = 5 * 60

IMMICH_THUMBNAIL_URL = "/api/immich/assets/{}/thumbnail"


def merge_clusters(
    clusters: Sequence[StationaryCluster],
    max_distance_m: float = MERGE_DISTANCE_M,
    max_gap_s: int = MERGE_MAX_GAP_S,
) -> List[StationaryCluster]:
    """Merge neighbouring clusters split by GPS drift.

    Each cluster is compared with the last merged one; it is folded in when
    it lies within ``max_distance_m`` and starts at most ``max_gap_s`` after
    the merged cluster ended. The merged position is the point-count
    weighted average. Input clusters are left untouched.
    """
    merged: List[StationaryCluster] = []
    for cluster in clusters:
        if not merged:
            merged.append(replace(cluster))
            continue

        last = merged[-1]
        dist = haversine_meters(last.lat, last.lon, cluster.lat, cluster.lon)
        gap = cluster.start_ts - last.end_ts

        if dist <= max_distance_m and gap <= max_gap_s:
            total = last.point_count + cluster.point_count
            last.lat = (last.lat * last.point_count + cluster.lat * cluster.point_count) / total
            last.lon = (last.lon * last.point_count + cluster.lon * cluster.point_count) / total
            last.end_ts = cluster.end_ts
            last.point_count = total
        else:
            merged.append(replace(cluster))

    return merged


def select_stops(clusters: Sequence[StationaryCluster], min_duration_s: int = MIN_STOP_DURATION_S) -> List[StationaryCluster]:
    """Clusters lasting at least ``min_duration_s``."""
    return [c for c in clusters if c.duration >= min_duration_s]


def travel_distance(points: Sequence[PathPoint], start_ts: int, end_ts: int) -> float:
    """Length of the raw track between two timestamps (inclusive), in meters."""
    distance = 0.0
    previous: Optional[PathPoint] = None
    for point in points:
        if start_ts <= point.timestamp <= end_ts:
            if previous is not None:
                distance += haversine_meters(previous.lat, previous.lon, point.lat, point.lon)
            previous = point
    return distance


def thumbnail_url(photo: PhotoLocation) -> str:
    if photo.source_type == "immich":
        return IMMICH_THUMBNAIL_URL.format(photo.source_id)
    return photo.web_url or ""


def _photos_for_stop(stop: StationaryCluster, photos: Sequence[PhotoLocation]) -> List[TimelinePhoto]:
    start = stop.start_ts - PHOTO_BUFFER_S
    end = stop.end_ts + PHOTO_BUFFER_S
    return [
        TimelinePhoto(source_id=p.source_id, thumbnail_url=thumbnail_url(p), filename=p.filename)
        for p in photos
        if start <= p.timestamp <= end
    ]


class TimelineBuilder:
    """Turns raw points of one day into alternating stops and travels.

    Stops are stationary clusters (50 m radius) merged across short drift
    gaps and kept when they last at least 10 minutes. A travel entry links
    two consecutive stops when more than a minute passes between them.
    """

    def __init__(self, store=None, geocoder=None):
        """
        Args:
            store: Store used by build_day()
            geocoder: Optional Geocoder for stop place names
        """
        self.store = store
        self.geocoder = geocoder

    def build_day(self, user_id: str, date: str) -> List[TimelineEntry]:
        """Build the timeline of a user's local date ("YYYY-MM-DD")."""
        log_call("TimelineBuilder", "build_day", user_id=user_id, date=date)

        samples = self.store.query_samples_for_user_date(user_id, date)
        if not samples:
            return []

        points = [s.to_point() for s in samples]
        start_ts = min(p.timestamp for p in points)
        end_ts = max(p.timestamp for p in points)
        photos = self.store.query_photo_locations(start_ts, end_ts)

        return self.build(points, photos)

    def build(self, points: List[PathPoint], photos: Sequence[PhotoLocation] = ()) -> List[TimelineEntry]:
        """Build timeline entries from points ordered by timestamp.

        Args:
            points: Raw points of the day
            photos: Photo locations to attach to stops

        Returns:
            Stop and travel entries in chronological order
        """
        clusters = prune_stationary(points, STOP_RADIUS_M).clusters
        stops = select_stops(merge_clusters(clusters))

        entries: List[TimelineEntry] = []
        for i, stop in enumerate(stops):
            if i > 0:
                previous = stops[i - 1]
                if stop.start_ts - previous.end_ts > MIN_TRAVEL_DURATION_S:
                    entries.append(
                        TimelineEntry(
                            entry_type=ENTRY_TRAVEL,
                            timestamp=previous.end_ts,
                            end_timestamp=stop.start_ts,
                            lat=previous.lat,
                            lon=previous.lon,
                            end_lat=stop.lat,
                            end_lon=stop.lon,
                            distance_meters=travel_distance(points, previous.end_ts, stop.start_ts),
                        )
                    )

            entries.append(
                TimelineEntry(
                    entry_type=ENTRY_STOP,
                    timestamp=stop.start_ts,
                    end_timestamp=stop.end_ts,
                    lat=stop.lat,
                    lon=stop.lon,
                    photos=_photos_for_stop(stop, photos),
                )
            )

        if self.geocoder is not None:
            self._apply_place_names(entries)

        log_result("TimelineBuilder", "build", f"{len(stops)} stops, {len(entries) - len(stops)} travels")
        return entries

    def _apply_place_names(self, entries: List[TimelineEntry]) -> None:
        stop_indices = [i for i, e in enumerate(entries) if e.entry_type == ENTRY_STOP]
        if not stop_indices:
            return

        try:
            places = self.geocoder.resolve_batch([(entries[i].lat, entries[i].lon) for i in stop_indices])
        except Exception as e:
            log_warning(f"Geokódování zastávek selhalo: {e}")
            return

        for geo_index, entry_index in enumerate(stop_indices):
            place = places.get(geo_index)
            if place is not None:
                entries[entry_index].place_name = place.place_name
