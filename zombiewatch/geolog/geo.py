"""
Geodesy and formatting helpers shared by the store, the windowed query
engine and the distance aggregator.
"""

import math
from datetime import datetime, timezone


MIN_LATITUDE = -85.05112878
MAX_LATITUDE = 85.05112878
MIN_LONGITUDE = -180.0
MAX_LONGITUDE = 180.0

# Same radius the geo index engine uses for GEODIST.
EARTH_RADIUS_M = 6372797.560856


def haversine_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lng = math.radians(lng2 - lng1)

    a = math.sin(delta_lat / 2) ** 2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(delta_lng / 2) ** 2
    a = min(1.0, a)
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(a))


def floor_to(value: float, digits: int) -> float:
    scale = 10 ** digits
    return math.floor(value * scale) / scale


def to_millimeters(meters: float) -> int:
    return int(math.floor(meters * 1000))


def timestamp_as_iso(ts: int) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')


def parse_iso_timestamp(value: str) -> int:
    """Parse an RFC 3339 string into Unix seconds.

    Raises ValueError for anything without an explicit offset.
    """
    text = value.strip()
    if text.endswith(('Z', 'z')):
        text = text[:-1] + '+00:00'
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        raise ValueError(f"timestamp {value!r} has no UTC offset")
    return int(parsed.timestamp())
