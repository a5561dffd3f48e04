# scrapbridge/services/geo.py
from math import asin, cos, radians, sin, sqrt
from typing import Optional

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1, lng1, lat2, lng2) -> float:
    dlat = radians(lat2 - lat1)
    dlng = radians(lng2 - lng1)
    a = sin(dlat/2)**2 + cos(radians(lat1)) * cos(radians(lat2)) * sin(dlng/2)**2
    c = 2 * asin(sqrt(a))
    return EARTH_RADIUS_KM * c


def distance_between(a: Optional[dict], b: Optional[dict]) -> Optional[float]:
    """a, b: {"lat": float, "lng": float} or None; None when either side is unknown."""
    if not a or not b:
        return None
    return haversine_km(float(a["lat"]), float(a["lng"]), float(b["lat"]), float(b["lng"]))
