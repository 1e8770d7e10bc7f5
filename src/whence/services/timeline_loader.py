"""Loading and parsing Android Timeline JSON."""

import json
from pathlib import Path
from typing import IO, List, Tuple

from whence.core.exceptions import TimelineParseError
from whence.core.logger import log_call, log_result
from whence.models.location import Sample
from whence.services.timezone import parse_iso8601, validate_sample_values

DEFAULT_DEVICE_ID = "google-timeline"

MPS_TO_KMH = 3.6


def parse_lat_lng(value: str) -> Tuple[float, float]:
    """Parse a position string like "37.422°, -122.084°".

    Raises:
        ValueError: If the string is not two comma separated numbers
    """
    parts = (value or "").replace("°", "").split(",")
    if len(parts) != 2:
        raise ValueError(f"invalid LatLng format: {value!r}")
    try:
        lat = float(parts[0].strip())
        lon = float(parts[1].strip())
    except ValueError as e:
        raise ValueError(f"invalid coordinates in {value!r}") from e
    return lat, lon


class TimelineLoader:
    """Loads raw position signals from the on-device Timeline export.

    Only ``rawSignals[].position`` entries are used; visits and activities
    are derived data and the raw signals already cover them.
    """

    def __init__(self, user_id: str, device_id: str = DEFAULT_DEVICE_ID):
        self.user_id = user_id
        self.device_id = device_id

    def load(self, path: Path) -> Tuple[List[Sample], List[str]]:
        """Loads timeline JSON from a file.

        Args:
            path: Path to the JSON file

        Returns:
            (samples, errors) where errors describe skipped signals

        Raises:
            TimelineParseError: If the file cannot be read or is not a timeline
        """
        log_call("TimelineLoader", "load", path=str(path))

        try:
            with open(path, "r", encoding="utf-8") as f:
                return self.read(f)
        except FileNotFoundError:
            raise TimelineParseError(f"File not found: {path}")
        except OSError as e:
            raise TimelineParseError(f"Error reading file: {e}")

    def read(self, stream: IO[str]) -> Tuple[List[Sample], List[str]]:
        """Same as load(), for an open text stream (e.g. an upload)."""
        try:
            data = json.load(stream)
        except json.JSONDecodeError as e:
            raise TimelineParseError(f"Invalid JSON format: {e}")
        return self.parse(data)

    def parse(self, data) -> Tuple[List[Sample], List[str]]:
        """Convert decoded timeline JSON into samples.

        Signals without a position are ignored; signals with an unreadable
        position or timestamp are reported in the error list.
        """
        if not isinstance(data, dict):
            raise TimelineParseError("Expected an object with rawSignals in timeline JSON")

        signals = data.get("rawSignals") or []
        if not isinstance(signals, list):
            raise TimelineParseError("rawSignals must be a list")

        samples: List[Sample] = []
        errors: List[str] = []

        for i, signal in enumerate(signals):
            position = signal.get("position") if isinstance(signal, dict) else None
            if not position:
                continue

            try:
                lat, lon = parse_lat_lng(position.get("LatLng"))
            except ValueError as e:
                errors.append(f"signal {i}: {e}")
                continue

            taken_at = parse_iso8601(position.get("timestamp"))
            if taken_at is None:
                errors.append(f"signal {i}: invalid timestamp {position.get('timestamp')!r}")
                continue

            timestamp = int(taken_at.timestamp())
            try:
                validate_sample_values(timestamp, lat, lon)
            except ValueError as e:
                errors.append(f"signal {i}: {e}")
                continue

            # Zero means "not reported" in the export
            speed = position.get("speedMetersPerSecond") or 0
            samples.append(
                Sample(
                    timestamp=timestamp,
                    user_id=self.user_id,
                    device_id=self.device_id,
                    lat=lat,
                    lon=lon,
                    accuracy_m=position.get("accuracyMeters") or None,
                    altitude_m=position.get("altitudeMeters") or None,
                    speed_kmh=speed * MPS_TO_KMH if speed else None,
                    source=position.get("source") or None,
                )
            )

        log_result("TimelineLoader", "parse", f"{len(samples)} samples, {len(errors)} errors")
        return samples, errors
