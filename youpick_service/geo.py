"""
Great-circle distance helpers. All distances are in miles.
"""
from typing import Optional
import math

from .config import settings
from .schemas import GeoPoint


def haversine_distance(
    a: GeoPoint,
    b: GeoPoint,
    radius: Optional[float] = None
) -> float:
    """Haversine distance between two points, in miles by default"""
    if radius is None:
        radius = settings.EARTH_RADIUS_MILES

    lat1 = math.radians(a.latitude)
    lat2 = math.radians(b.latitude)
    d_lat = lat2 - lat1
    d_lon = math.radians(b.longitude - a.longitude)

    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(lat1) * math.cos(lat2) * math.sin(d_lon / 2) ** 2
    )
    # Rounding can push h just outside [0, 1] near antipodes
    h = min(1.0, max(0.0, h))
    return radius * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def distance_or_none(
    origin: Optional[GeoPoint],
    latitude: Optional[float],
    longitude: Optional[float]
) -> Optional[float]:
    """Distance from origin, or None when either side has no coordinates"""
    if origin is None or latitude is None or longitude is None:
        return None
    return haversine_distance(origin, GeoPoint(latitude=latitude, longitude=longitude))


def within_radius(
    center: GeoPoint,
    radius: float,
    latitude: Optional[float],
    longitude: Optional[float]
) -> bool:
    """Radius check that keeps points with unknown location"""
    distance = distance_or_none(center, latitude, longitude)
    if distance is None:
        return True
    return distance <= radius
