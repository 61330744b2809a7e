"""
Geo helpers for the tracking view: great-circle distance, coordinate
rounding and navigation deep links.
"""
import math
from decimal import Decimal
from numbers import Real
from typing import Optional
from urllib.parse import urlencode

EARTH_RADIUS_KM = 6371.0
COORDINATE_PRECISION = 6
DISTANCE_PRECISION = 2

_NAVIGATION_BASE_URL = "https://www.google.com/maps/dir/"


def _as_float(value) -> Optional[float]:
    """Numeric coordinate as float, None for anything else (bool included)"""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (Real, Decimal)):
        as_float = float(value)
        return as_float if math.isfinite(as_float) else None
    return None


def round_coord(value) -> Optional[float]:
    """Round a coordinate to 6 decimal places; None if missing or not numeric"""
    as_float = _as_float(value)
    if as_float is None:
        return None
    return round(as_float, COORDINATE_PRECISION)


def map_point(lat, lng) -> Optional[dict[str, float]]:
    """{lat, lng} block for the tracking map, or None when either is missing"""
    lat_r, lng_r = round_coord(lat), round_coord(lng)
    if lat_r is None or lng_r is None:
        return None
    return {"lat": lat_r, "lng": lng_r}


def distance_km(lat1, lng1, lat2, lng2) -> Optional[float]:
    """
    Haversine distance between two points in kilometers, rounded to 2 places.

    Returns None when any coordinate is missing or not numeric.
    """
    coords = [_as_float(v) for v in (lat1, lng1, lat2, lng2)]
    if any(c is None for c in coords):
        return None
    lat1_f, lng1_f, lat2_f, lng2_f = coords

    phi1, phi2 = math.radians(lat1_f), math.radians(lat2_f)
    d_phi = math.radians(lat2_f - lat1_f)
    d_lambda = math.radians(lng2_f - lng1_f)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    c = 2 * math.asin(min(1.0, math.sqrt(a)))
    return round(EARTH_RADIUS_KM * c, DISTANCE_PRECISION)


def estimate_eta_minutes(distance: Optional[float], speed_kmph: float) -> Optional[int]:
    """Whole minutes to cover ``distance`` at ``speed_kmph``, rounded up"""
    if distance is None or speed_kmph <= 0:
        return None
    return int(math.ceil(distance / speed_kmph * 60))


def build_navigation_url(lat, lng) -> Optional[str]:
    """Google Maps driving directions to (lat, lng), or None without a destination"""
    point = map_point(lat, lng)
    if point is None:
        return None
    query = urlencode({
        "api": 1,
        "destination": f"{point['lat']},{point['lng']}",
        "travelmode": "driving",
    })
    return f"{_NAVIGATION_BASE_URL}?{query}"
