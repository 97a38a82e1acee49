# utils/geoutils.py
import math
from typing import Optional, Tuple

# (latitude, longitude) in degrees, WGS84
Coordinate = Tuple[float, float]

EARTH_RADIUS_KM = 6371.0


# Haversine distance
def haversine_km(a: Coordinate, b: Coordinate) -> float:
    """
    Great-circle distance in kilometres between two (lat, lng) pairs on a
    sphere of radius 6371 km.

    Symmetric, never negative, and 0.0 for identical points. Out-of-range
    degrees are used as given. Behaviour for NaN or infinite input is
    undefined; callers must reject such coordinates first (see
    ``is_finite_coordinate``).
    """
    lat1, lng1 = a
    lat2, lng2 = b
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lng2 - lng1)
    h = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    # rounding can push h a hair past 1 for antipodal points
    h = min(1.0, max(0.0, h))
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def is_finite_coordinate(coord: Optional[Coordinate]) -> bool:
    """True when coord is a pair of finite numbers."""
    if coord is None:
        return False
    try:
        lat, lng = coord
        return math.isfinite(float(lat)) and math.isfinite(float(lng))
    except (TypeError, ValueError):
        return False


def format_coordinate(lat: float, lng: float) -> str:
    """Fallback location label, e.g. '40.8800, 29.2000'."""
    return f"{lat:.4f}, {lng:.4f}"
