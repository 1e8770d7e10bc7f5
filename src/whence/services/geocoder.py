"""Reverse geocoding using the Nominatim API."""

import threading
import time
from typing import Dict, List, Optional, Sequence, Tuple

import requests

from whence import __version__
from whence.core.logger import log_call, log_info, log_result, log_warning
from whence.models.location import BBox, GeocodedPlace


def extract_place_name(data: dict) -> Optional[str]:
    """Pick the most useful place name from a Nominatim response.

    Named places win, then address parts from the most specific (amenity,
    shop, ...) to the most general (city, town, village).
    """
    if data.get("name"):
        return data["name"]

    address = data.get("address") or {}

    for key in ("amenity", "shop", "tourism", "leisure"):
        if address.get(key):
            return address[key]

    # "yes" just means "there is a building here"
    building = address.get("building")
    if building and building != "yes":
        return building

    road = address.get("road")
    if road:
        house_number = address.get("house_number")
        return f"{house_number} {road}" if house_number else road

    for key in ("neighbourhood", "suburb", "city", "town", "village"):
        if address.get(key):
            return address[key]

    return None


def _cache_bbox(data: dict, lat: float, lon: float) -> Optional[BBox]:
    """Nominatim bounding box expanded to contain the query point."""
    raw = data.get("boundingbox")
    if not raw or len(raw) != 4:
        return None
    try:
        min_lat, max_lat, min_lon, max_lon = (float(v) for v in raw)
    except (TypeError, ValueError):
        return None
    return BBox(
        sw_lat=min(min_lat, lat),
        ne_lat=max(max_lat, lat),
        sw_lon=min(min_lon, lon),
        ne_lon=max(max_lon, lon),
    )


class Geocoder:
    """Reverse geocoding using the OpenStreetMap Nominatim API.

    Results are cached in the store by the bounding box Nominatim reports
    for the place, so later points inside that box skip the network.
    """

    NOMINATIM_URL = "https://nominatim.openstreetmap.org/reverse"
    USER_AGENT = f"Whence/{__version__} (location-history-app)"
    MIN_REQUEST_INTERVAL = 1.0  # Nominatim allows max 1 request/s

    def __init__(self, store=None, session: Optional[requests.Session] = None, timeout: float = 30):
        """
        Args:
            store: Store with ``lookup_place``/``cache_place``, or None for no cache
            session: HTTP session (defaults to plain ``requests``)
            timeout: HTTP timeout in seconds
        """
        self.store = store
        self.http = session or requests
        self.timeout = timeout
        self._last_request_time: float = 0
        self._rate_lock = threading.Lock()

    def resolve(self, lat: float, lon: float) -> Optional[GeocodedPlace]:
        """Gets the place for the given coordinates.

        Args:
            lat: Latitude
            lon: Longitude

        Returns:
            GeocodedPlace, or None if the place cannot be resolved
        """
        log_call("Geocoder", "resolve", lat=lat, lon=lon)

        if self.store is not None:
            cached = self.store.lookup_place(lat, lon)
            if cached is not None:
                log_info(f"cache hit: {cached.place_name}")
                return cached

        self._wait_for_rate_limit()

        try:
            response = self.http.get(
                self.NOMINATIM_URL,
                params={
                    "lat": f"{lat:.6f}",
                    "lon": f"{lon:.6f}",
                    "format": "jsonv2",
                    "zoom": 18,  # building-level detail
                    "addressdetails": 1,
                },
                headers={"User-Agent": self.USER_AGENT},
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            log_warning(f"Nominatim request failed for ({lat:.6f}, {lon:.6f}): {e}")
            return None

        place_name = extract_place_name(data or {})
        if not place_name:
            log_result("Geocoder", "resolve", None)
            return None

        place = GeocodedPlace(
            place_name=place_name,
            place_type=data.get("type"),
            display_name=data.get("display_name"),
            lat=lat,
            lon=lon,
        )

        bbox = _cache_bbox(data, lat, lon)
        if self.store is not None and bbox is not None:
            self.store.cache_place(bbox, place)

        log_result("Geocoder", "resolve", place_name)
        return place

    def resolve_batch(self, points: Sequence[Tuple[float, float]]) -> Dict[int, GeocodedPlace]:
        """Resolve several points; unresolved ones are left out.

        Args:
            points: (lat, lon) pairs

        Returns:
            Mapping of input index to place
        """
        results: Dict[int, GeocodedPlace] = {}
        for i, (lat, lon) in enumerate(points):
            place = self.resolve(lat, lon)
            if place is not None:
                results[i] = place
        return results

    def _wait_for_rate_limit(self) -> None:
        """Waits to comply with the rate limit (shared across threads)."""
        with self._rate_lock:
            elapsed = time.monotonic() - self._last_request_time
            if elapsed < self.MIN_REQUEST_INTERVAL:
                time.sleep(self.MIN_REQUEST_INTERVAL - elapsed)
            self._last_request_time = time.monotonic()
