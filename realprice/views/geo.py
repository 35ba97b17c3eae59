"""Great-circle distance."""

import math
from dataclasses import dataclass

from realprice.config import settings


@dataclass(frozen=True)
class Coordinate:
    """A point in degrees."""

    latitude: float
    longitude: float


def haversine_km(origin: Coordinate, target: Coordinate, radius_km: float | None = None) -> float:
    """
    Haversine distance between two coordinates.

    Args:
        origin: Start point in degrees
        target: End point in degrees
        radius_km: Sphere radius (defaults to settings.earth_radius_km, 6371)

    Returns:
        Distance in kilometres
    """
    radius = radius_km if radius_km is not None else settings.earth_radius_km

    lat1 = math.radians(origin.latitude)
    lat2 = math.radians(target.latitude)
    d_lat = math.radians(target.latitude - origin.latitude)
    d_lon = math.radians(target.longitude - origin.longitude)

    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(lat1) * math.cos(lat2) * math.sin(d_lon / 2) ** 2
    )
    # Rounding can push a past 1.0 for antipodal points
    a = min(1.0, max(0.0, a))
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return radius * c
