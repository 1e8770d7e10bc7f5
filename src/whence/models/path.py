"""Modely pro denní trasy a stacionární clustery."""

from dataclasses import dataclass, field
from typing import List, Optional

from whence.models.location import PathPoint


@dataclass
class Path:
    """Trasa jednoho uživatele za jeden lokální den.

    Bounding boxy jsou vždy těsnou obálkou aktuálních bodů.
    """

    user_id: str
    date: str  # YYYY-MM-DD
    start_ts: int = 0
    end_ts: int = 0
    min_lat: float = 0.0
    max_lat: float = 0.0
    min_lon: float = 0.0
    max_lon: float = 0.0
    point_count: int = 0
    points: List[PathPoint] = field(default_factory=list)
    id: Optional[int] = None

    @property
    def key(self) -> tuple:
        return (self.user_id, self.date)

    def add_point(self, point: PathPoint) -> None:
        """Přidá bod a rozšíří obálky."""
        if not self.points:
            self.start_ts = self.end_ts = point.timestamp
            self.min_lat = self.max_lat = point.lat
            self.min_lon = self.max_lon = point.lon
        else:
            self.start_ts = min(self.start_ts, point.timestamp)
            self.end_ts = max(self.end_ts, point.timestamp)
            self.min_lat = min(self.min_lat, point.lat)
            self.max_lat = max(self.max_lat, point.lat)
            self.min_lon = min(self.min_lon, point.lon)
            self.max_lon = max(self.max_lon, point.lon)
        self.points.append(point)
        self.point_count = len(self.points)

    def to_dict(self, include_points: bool = True) -> dict:
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "date": self.date,
            "start_ts": self.start_ts,
            "end_ts": self.end_ts,
            "min_lat": self.min_lat,
            "max_lat": self.max_lat,
            "min_lon": self.min_lon,
            "max_lon": self.max_lon,
            "point_count": self.point_count,
        }
        if include_points:
            data["points"] = [p.to_dict() for p in self.points]
        return data


@dataclass
class StationaryCluster:
    """Skupina bodů v okolí kotvy.

    Kotva je první bod clusteru a během růstu se neposouvá.
    """

    lat: float
    lon: float
    start_ts: int
    end_ts: int
    point_count: int = 1

    @property
    def duration(self) -> int:
        return self.end_ts - self.start_ts

    def to_dict(self) -> dict:
        return {
            "lat": self.lat,
            "lon": self.lon,
            "start_ts": self.start_ts,
            "end_ts": self.end_ts,
            "point_count": self.point_count,
        }
