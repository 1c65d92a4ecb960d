"""Great-circle distances between stations."""

import math
from typing import Any

EARTH_RADIUS_METRES = 6_371_000


def haversine_metres(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two (lat, lon) points in metres."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    return 2 * EARTH_RADIUS_METRES * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def station_distance_metres(a: dict[str, Any], b: dict[str, Any]) -> float | None:
    """Distance between two public-shape stations, or None if either has no location."""
    loc_a, loc_b = a.get("location"), b.get("location")
    if loc_a is None or loc_b is None:
        return None
    return haversine_metres(
        loc_a["latitude"], loc_a["longitude"], loc_b["latitude"], loc_b["longitude"]
    )


def station_distance_km(a: dict[str, Any], b: dict[str, Any]) -> float | None:
    metres = station_distance_metres(a, b)
    if metres is None:
        return None
    return round(metres / 1000, 2)
