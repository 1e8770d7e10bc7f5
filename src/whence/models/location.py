"""Models for raw location samples and path geometry."""

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class PathPoint:
    """A single point of a path: position and unix timestamp."""

    lat: float
    lon: float
    timestamp: int

    def to_dict(self) -> dict:
        return {"lat": self.lat, "lon": self.lon, "timestamp": self.timestamp}


@dataclass
class Sample:
    """One raw GPS observation.

    Uniquely identified by (timestamp, device_id); inserting the same key
    twice is a no-op.
    """

    timestamp: int  # unix seconds
    user_id: str
    device_id: str
    lat: float
    lon: float
    accuracy_m: Optional[float] = None
    altitude_m: Optional[float] = None
    speed_kmh: Optional[float] = None
    source: Optional[str] = None  # "GPS", "WIFI", "owntracks", ...

    @property
    def key(self) -> tuple:
        return (self.timestamp, self.device_id)

    def to_point(self) -> PathPoint:
        return PathPoint(lat=self.lat, lon=self.lon, timestamp=self.timestamp)

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "user_id": self.user_id,
            "device_id": self.device_id,
            "lat": self.lat,
            "lon": self.lon,
            "accuracy_m": self.accuracy_m,
            "altitude_m": self.altitude_m,
            "speed_kmh": self.speed_kmh,
            "source": self.source,
        }


@dataclass
class LocationSource:
    """Provenance of a sample (e.g. the photo it was read from)."""

    timestamp: int
    device_id: str
    source_type: str  # "immich", "local"
    source_id: str
    metadata: dict = field(default_factory=dict)


@dataclass
class PhotoLocation:
    """A sample joined with its photo provenance."""

    timestamp: int
    lat: float
    lon: float
    source_type: str
    source_id: str
    web_url: Optional[str] = None
    filename: Optional[str] = None


@dataclass
class BBox:
    """Geographic bounding box in degrees."""

    sw_lat: float
    sw_lon: float
    ne_lat: float
    ne_lon: float

    @property
    def lat_span(self) -> float:
        return self.ne_lat - self.sw_lat

    @property
    def lon_span(self) -> float:
        return self.ne_lon - self.sw_lon

    @classmethod
    def from_string(cls, value: str) -> "BBox":
        """Parse the query-string form "sw_lng,sw_lat,ne_lng,ne_lat".

        Raises:
            ValueError: If the string does not contain four numbers
        """
        parts = value.split(",")
        if len(parts) != 4:
            raise ValueError(f"bbox must have 4 comma-separated values, got {len(parts)}")
        sw_lon, sw_lat, ne_lon, ne_lat = (float(p.strip()) for p in parts)
        return cls(sw_lat=sw_lat, sw_lon=sw_lon, ne_lat=ne_lat, ne_lon=ne_lon)

    def to_dict(self) -> dict:
        return {
            "min_lat": self.sw_lat,
            "max_lat": self.ne_lat,
            "min_lon": self.sw_lon,
            "max_lon": self.ne_lon,
        }

    def __str__(self) -> str:
        return f"{self.sw_lon},{self.sw_lat},{self.ne_lon},{self.ne_lat}"


@dataclass
class GeocodedPlace:
    """Result of reverse geocoding a point."""

    place_name: str
    place_type: Optional[str] = None
    display_name: Optional[str] = None
    lat: float = 0.0
    lon: float = 0.0

    def to_dict(self) -> dict:
        return {
            "place_name": self.place_name,
            "place_type": self.place_type,
            "display_name": self.display_name,
            "lat": self.lat,
            "lon": self.lon,
        }
