"""Great-circle distance and the reverse-geocode gate."""

from __future__ import annotations

import math
from typing import Optional

from fieldsales_tracker.models import Position

EARTH_RADIUS_M = 6_371_000.0

# Minimum movement, in meters, before the address is looked up again.
DEFAULT_GEOCODE_THRESHOLD_M = 500.0


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Return the haversine distance in meters between two coordinates."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)

    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1))
        * math.cos(math.radians(lat2))
        * math.sin(d_lon / 2) ** 2
    )

    # rounding can push a just past 1 for near-antipodal points
    a = min(1.0, max(0.0, a))

    return 2 * EARTH_RADIUS_M * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def distance_between(a: Position, b: Position) -> float:
    """:func:`haversine_distance` for two :class:`Position` values."""
    return haversine_distance(a.latitude, a.longitude, b.latitude, b.longitude)


def should_geocode(
    previous: Optional[Position],
    current: Position,
    threshold_m: float = DEFAULT_GEOCODE_THRESHOLD_M,
) -> bool:
    """Decide whether *current* moved far enough from *previous*.

    There is nothing to compare the first sample with, so it never
    qualifies.  The comparison is strict: exactly *threshold_m* does not
    trigger a lookup.
    """
    if previous is None:
        return False
    return distance_between(previous, current) > threshold_m
