"""Time helpers: local date from longitude and ISO 8601 parsing.

Local dates use a fixed 15 degrees per hour offset instead of a timezone database, so
samples close to local midnight can land on a neighbouring day.
"""

import math
import re
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

MIN_OFFSET_HOURS = -12
MAX_OFFSET_HOURS = 14

_FRACTION_RE = re.compile(r"^(.*T\d{2}:\d{2}:\d{2})\.(\d+)(.*)$")

# Lokální datum musí existovat i při posunu o -12/+14 h
MIN_TIMESTAMP = int(datetime(1, 1, 2, tzinfo=timezone.utc).timestamp())
MAX_TIMESTAMP = int(datetime(9999, 12, 30, tzinfo=timezone.utc).timestamp())


def _round_half_away(value: float) -> int:
    # round() in Python rounds half to even, 7.5 must become 8
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def timezone_offset_hours(lon: float) -> int:
    """UTC offset in whole hours estimated from longitude."""
    offset = _round_half_away(lon / 15.0)
    return max(MIN_OFFSET_HOURS, min(MAX_OFFSET_HOURS, offset))


def local_date(timestamp: int, lat: float, lon: float) -> str:
    """Local calendar date (YYYY-MM-DD) of a unix timestamp at a position."""
    tz = timezone(timedelta(hours=timezone_offset_hours(lon)))
    return datetime.fromtimestamp(timestamp, tz).strftime("%Y-%m-%d")


def try_local_date(timestamp: int, lat: float, lon: float) -> Optional[str]:
    """Like local_date(), but None for values without a calendar date."""
    try:
        return local_date(timestamp, lat, lon)
    except (ValueError, OverflowError, OSError):
        return None


def validate_sample_values(timestamp: int, lat: float, lon: float) -> None:
    """Check that a local date can be computed for a sample.

    Raises:
        ValueError: For non-finite coordinates or a timestamp outside the
            range of calendar dates (e.g. milliseconds instead of seconds)
    """
    if not (math.isfinite(lat) and math.isfinite(lon)):
        raise ValueError(f"coordinates must be finite numbers, got {lat}, {lon}")
    if not MIN_TIMESTAMP <= timestamp <= MAX_TIMESTAMP:
        raise ValueError(f"timestamp {timestamp} out of range, expected unix seconds")


def date_window(date: str) -> Tuple[int, int]:
    """Unix timestamp window that covers ``date`` in every supported offset.

    Returns (start, end) spanning date-36h to date+48h from UTC midnight.
    """
    midnight = datetime.strptime(date, "%Y-%m-%d").replace(tzinfo=timezone.utc)
    start = midnight - timedelta(hours=36)
    end = midnight + timedelta(hours=48)
    return int(start.timestamp()), int(end.timestamp())


def parse_iso8601(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO 8601 / RFC 3339 timestamp into an aware datetime.

    Accepts a trailing "Z" and fractional seconds of any length. Naive
    values are taken as UTC. Returns None for empty or invalid input.
    """
    if not value:
        return None

    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"

    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        # Older interpreters only accept 3 or 6 fractional digits
        match = _FRACTION_RE.match(text)
        if not match:
            return None
        head, fraction, tail = match.groups()
        try:
            dt = datetime.fromisoformat(f"{head}.{(fraction + '000000')[:6]}{tail}")
        except ValueError:
            return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt
