"""Model pro položky časové osy (zastávky a přesuny)."""

from dataclasses import dataclass, field
from typing import List, Optional

ENTRY_STOP = "stop"
ENTRY_TRAVEL = "travel"


@dataclass
class TimelinePhoto:
    """Fotka připojená k zastávce."""

    source_id: str
    thumbnail_url: str
    filename: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"source_id": self.source_id, "thumbnail_url": self.thumbnail_url}
        if self.filename:
            data["filename"] = self.filename
        return data


@dataclass
class TimelineEntry:
    """Zastávka nebo přesun. Nikdy se neukládá, počítá se pro každý dotaz."""

    entry_type: str  # "stop" nebo "travel"
    timestamp: int
    end_timestamp: int
    lat: float
    lon: float
    end_lat: Optional[float] = None  # cíl přesunu
    end_lon: Optional[float] = None
    distance_meters: Optional[float] = None  # jen pro přesuny
    photos: List[TimelinePhoto] = field(default_factory=list)
    place_name: Optional[str] = None

    @property
    def duration(self) -> int:
        return self.end_timestamp - self.timestamp

    def to_dict(self) -> dict:
        data = {
            "type": self.entry_type,
            "timestamp": self.timestamp,
            "end_timestamp": self.end_timestamp,
            "lat": self.lat,
            "lon": self.lon,
            "duration_seconds": self.duration,
        }
        if self.end_lat is not None and self.end_lon is not None:
            data["end_lat"] = self.end_lat
            data["end_lon"] = self.end_lon
        if self.distance_meters is not None:
            data["distance_meters"] = self.distance_meters
        if self.place_name:
            data["place_name"] = self.place_name
        if self.photos:
            data["photos"] = [p.to_dict() for p in self.photos]
        return data
