"""IP-based geolocation and city-name geocoding through the proxy."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from . import config
from .errors import HalalFinderError, InvalidInputError, ProxyExhaustedError
from .geo import validate_coordinates
from .proxy import exhausted_error, is_proxy_error

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IpLocation:
    latitude: float
    longitude: float
    city: Optional[str] = None
    country: Optional[str] = None


class IpLookupError(HalalFinderError):
    pass


def parse_ip_geolocation(data: Dict[str, Any]) -> IpLocation:
    """Zero is a valid latitude/longitude; only missing values are errors."""
    if not isinstance(data, dict):
        raise IpLookupError("IP geolocation returned an unexpected payload")
    if data.get("status") != "success":
        raise IpLookupError(data.get("message") or "IP geolocation failed")
    lat = data.get("lat")
    lon = data.get("lon")
    if lat is None or lon is None:
        raise IpLookupError("IP geolocation response is missing coordinates")
    check = validate_coordinates(lat, lon)
    if not check.valid:
        raise IpLookupError(check.reason or "invalid coordinates")
    return IpLocation(float(lat), float(lon), data.get("city") or None, data.get("country") or None)


def _load_json(text: str, what: str) -> Any:
    if is_proxy_error(text):
        raise exhausted_error(text)
    try:
        return json.loads(text)
    except ValueError as exc:
        raise ProxyExhaustedError(f"service unavailable: non-JSON {what} response ({exc})") from exc


class IpLocator:
    """One lookup per call; retries belong to whoever wraps this."""

    def __init__(self, proxy: Any) -> None:
        self.proxy = proxy

    def lookup(self) -> IpLocation:
        location = parse_ip_geolocation(_load_json(self.proxy.ip_geolocation(), "IP geolocation"))
        logger.info("IP geolocation resolved to %s, %s", location.city, location.country)
        return location


@dataclass(frozen=True)
class GeocodeResult:
    name: str
    latitude: float
    longitude: float


def parse_nominatim_response(data: Any, query: str) -> List[GeocodeResult]:
    results: List[GeocodeResult] = []
    if not isinstance(data, list):
        return results
    for item in data:
        if not isinstance(item, dict):
            continue
        try:
            lat = float(item.get("lat"))
            lon = float(item.get("lon"))
        except (TypeError, ValueError):
            continue
        if not validate_coordinates(lat, lon):
            continue
        results.append(GeocodeResult(item.get("display_name") or query, lat, lon))
    return results


class CityGeocoder:
    def __init__(self, proxy: Any, url: Optional[str] = None) -> None:
        self.proxy = proxy
        self.url = url or config.NOMINATIM_SEARCH_URL

    def geocode(self, city: str) -> Optional[GeocodeResult]:
        city = (city or "").strip()
        if not city:
            raise InvalidInputError("Please enter a city name")
        url = f"{self.url}?{urlencode({'q': city, 'format': 'json', 'limit': 1})}"
        results = parse_nominatim_response(_load_json(self.proxy.proxy_get(url), "geocoding"), city)
        return results[0] if results else None
