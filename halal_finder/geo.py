"""Geospatial helpers."""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Optional

from . import config


@dataclass(frozen=True)
class CoordinateValidation:
    valid: bool
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.valid


def validate_coordinates(lat: Any, lon: Any) -> CoordinateValidation:
    """Gate a coordinate before it enters the query pipeline.

    Both values may be 0 (equator / prime meridian); bools and non-numeric
    values are rejected outright.
    """
    if isinstance(lat, bool) or isinstance(lon, bool):
        return CoordinateValidation(False, "Coordinates contain invalid numeric values")
    try:
        lat_f = float(lat)
        lon_f = float(lon)
    except (TypeError, ValueError):
        return CoordinateValidation(False, "Coordinates contain invalid numeric values")

    if math.isnan(lat_f) or math.isnan(lon_f):
        return CoordinateValidation(False, "Coordinates contain invalid numeric values")
    if math.isinf(lat_f) or math.isinf(lon_f):
        return CoordinateValidation(False, "Coordinates must be finite numbers")
    if lat_f < -90 or lat_f > 90:
        return CoordinateValidation(False, "Latitude must be between -90 and 90 degrees")
    if lon_f < -180 or lon_f > 180:
        return CoordinateValidation(False, "Longitude must be between -180 and 180 degrees")
    return CoordinateValidation(True)


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    r = config.EARTH_RADIUS_M
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)

    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return r * c


def rounded_distance_m(lat1: float, lon1: float, lat2: float, lon2: float) -> int:
    return int(round(haversine_m(lat1, lon1, lat2, lon2)))
