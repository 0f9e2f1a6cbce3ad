import math

from app.core.tracking_config import EARTH_RADIUS_KM
from app.schemas.geo import GeoPoint


def haversine_km(lat1, lng1, lat2, lng2):
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lng2 - lng1)

    # sin^2 of the half-difference wraps longitude across the antimeridian
    a = (
        math.sin(dphi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    )
    # rounding can push a a hair past 1 for antipodal points
    a = min(1.0, a)
    return 2 * EARTH_RADIUS_KM * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def distance_km(a: GeoPoint, b: GeoPoint) -> float:
    """Great-circle distance between two points, rounded to 10 m for display."""
    return round(haversine_km(a.latitude, a.longitude, b.latitude, b.longitude), 2)
