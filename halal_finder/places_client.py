"""Foursquare Places client with strict/broad querying and response parsing."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from . import config
from .errors import ProxyExhaustedError, SourceNotConfiguredError
from .geo import validate_coordinates
from .models import Place
from .proxy import exhausted_error, is_proxy_error

logger = logging.getLogger(__name__)


class PlacesClient:
    def __init__(self, proxy: Any, url: Optional[str] = None) -> None:
        self.proxy = proxy
        self.url = url or config.PLACES_SEARCH_URL

    def search_text(
        self,
        query: str,
        latitude: float,
        longitude: float,
        radius_m: int,
        category: Optional[str] = None,
    ) -> Dict[str, Any]:
        url = build_search_url(self.url, query, latitude, longitude, radius_m, category)
        text = self.proxy.place_index_search(url)
        if text == config.NOT_CONFIGURED_MARKER:
            raise SourceNotConfiguredError("Foursquare API key is not configured")
        if is_proxy_error(text):
            raise exhausted_error(text)
        try:
            return json.loads(text)
        except ValueError as exc:
            raise ProxyExhaustedError(f"service unavailable: non-JSON places response ({exc})") from exc

    def search(self, latitude: float, longitude: float, radius_m: int) -> List[Place]:
        """Strict category+keyword search, widened by one broad query when sparse.

        Strict failures propagate; a failing broad query only costs its
        extra results.
        """
        strict = parse_places_response(
            self.search_text(
                config.PLACES_STRICT_QUERY,
                latitude,
                longitude,
                radius_m,
                category=config.PLACES_RESTAURANT_CATEGORY,
            )
        )
        if len(strict) >= config.PLACES_SPARSE_THRESHOLD:
            return strict

        try:
            broad = parse_places_response(
                self.search_text(config.PLACES_BROAD_QUERY, latitude, longitude, radius_m)
            )
        except Exception as exc:
            logger.warning("Broad places query failed, keeping %s strict results: %s", len(strict), exc)
            return strict

        seen = {p.id for p in strict}
        merged = list(strict)
        for place in broad:
            if place.id in seen:
                continue
            seen.add(place.id)
            merged.append(place)
        logger.info("Places broad query added %s venues", len(merged) - len(strict))
        return merged


def build_search_url(
    base_url: str,
    query: str,
    latitude: float,
    longitude: float,
    radius_m: int,
    category: Optional[str] = None,
) -> str:
    params: Dict[str, Any] = {
        "ll": f"{latitude},{longitude}",
        "query": query,
        "limit": config.PLACES_RESULT_LIMIT,
        "radius": int(min(radius_m, config.MAX_SEARCH_RADIUS_M)),
    }
    if category:
        params["categories"] = category
    return f"{base_url}?{urlencode(params)}"


# Adapter/mapper for Places response fields

def parse_places_response(response: Dict[str, Any]) -> List[Place]:
    venues = response.get("results") if isinstance(response, dict) else None
    if not isinstance(venues, list):
        return []
    parsed: List[Place] = []
    for v in venues:
        if not isinstance(v, dict):
            continue
        venue_id = v.get("fsq_id") or v.get("id")
        if not venue_id:
            continue
        main = (v.get("geocodes") or {}).get("main") or {}
        lat = main.get("latitude")
        lon = main.get("longitude")
        if lat is None or lon is None or not validate_coordinates(lat, lon):
            continue
        location = v.get("location") or {}
        categories = v.get("categories") or []
        category = categories[0].get("name") if categories and isinstance(categories[0], dict) else None
        distance = v.get("distance")
        parsed.append(
            Place(
                id=f"fsq-{venue_id}",
                name=v.get("name") or "Unnamed Place",
                category=category or "Restaurant",
                address=location.get("address")
                or location.get("formatted_address")
                or "Address not available",
                city=location.get("locality") or "",
                country=location.get("country") or "",
                latitude=float(lat),
                longitude=float(lon),
                rating=v.get("rating"),
                phone=v.get("tel"),
                website=v.get("website"),
                distance_m=float(distance) if distance is not None else None,
            )
        )
    return parsed
