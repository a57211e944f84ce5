"""Overpass (OpenStreetMap tag filter) query builder and response parser."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from . import config
from .errors import ProxyExhaustedError
from .geo import rounded_distance_m, validate_coordinates
from .models import Place
from .proxy import exhausted_error, is_proxy_error

logger = logging.getLogger(__name__)

_ELEMENT_TYPES = ("node", "way", "relation")


def _halal_filters() -> List[str]:
    cuisines = "|".join(config.OVERPASS_ETHNIC_CUISINES)
    return [
        '["cuisine"~"halal",i]',
        '["diet:halal"="yes"]',
        '["diet:halal"="only"]',
        '["halal"="yes"]',
        '["halal"="only"]',
        '["amenity"="restaurant"]["cuisine"~"halal",i]',
        '["amenity"="fast_food"]["cuisine"~"halal",i]',
        '["amenity"="cafe"]["diet:halal"="yes"]',
        '["shop"="butcher"]["halal"="yes"]',
        '["shop"="halal"]',
        '["shop"="supermarket"]["halal"="yes"]',
        '["shop"="convenience"]["halal"="yes"]',
        f'["cuisine"~"{cuisines}",i]["diet:halal"="yes"]',
    ]


def build_overpass_query(latitude: float, longitude: float, radius_m: int) -> str:
    around = f"(around:{int(radius_m)},{latitude},{longitude})"
    lines = [f"[out:json][timeout:{config.OVERPASS_TIMEOUT_SECONDS}];", "("]
    for tag_filter in _halal_filters():
        for element_type in _ELEMENT_TYPES:
            lines.append(f"  {element_type}{tag_filter}{around};")
    lines.append(");")
    lines.append("out center;")
    return "\n".join(lines)


def _element_coordinates(element: Dict[str, Any]) -> Optional[tuple]:
    element_type = element.get("type")
    if element_type == "node":
        lat, lon = element.get("lat"), element.get("lon")
    elif element_type in ("way", "relation"):
        center = element.get("center") or {}
        lat, lon = center.get("lat"), center.get("lon")
    else:
        return None
    if lat is None or lon is None:
        return None
    if not validate_coordinates(lat, lon):
        return None
    return float(lat), float(lon)


def derive_category(tags: Dict[str, str]) -> str:
    if tags.get("cuisine"):
        return tags["cuisine"]
    if tags.get("amenity") in ("restaurant", "fast_food", "cafe"):
        return "Restaurant"
    shop = tags.get("shop")
    if shop == "butcher":
        return "Halal Butcher"
    if shop == "halal":
        return "Halal Shop"
    if shop == "supermarket":
        return "Halal Supermarket"
    if shop:
        return "Halal Shop"
    return "Halal"


def parse_overpass_response(
    response: Dict[str, Any], origin_lat: float, origin_lon: float
) -> List[Place]:
    elements = response.get("elements") if isinstance(response, dict) else None
    if not isinstance(elements, list):
        return []

    places: List[Place] = []
    for element in elements:
        if not isinstance(element, dict):
            continue
        coords = _element_coordinates(element)
        if coords is None:
            continue
        lat, lon = coords
        tags = element.get("tags") or {}

        address_parts = [p for p in (tags.get("addr:housenumber"), tags.get("addr:street")) if p]
        address = " ".join(address_parts) if address_parts else "Address not available"

        places.append(
            Place(
                id=f"osm-{element.get('type')}-{element.get('id')}",
                name=tags.get("name") or "Unnamed Place",
                category=derive_category(tags),
                address=address,
                city=tags.get("addr:city") or "",
                country=tags.get("addr:country") or "",
                latitude=lat,
                longitude=lon,
                phone=tags.get("phone") or tags.get("contact:phone"),
                website=tags.get("website") or tags.get("contact:website"),
                distance_m=rounded_distance_m(origin_lat, origin_lon, lat, lon),
            )
        )
    return places


class OverpassClient:
    def __init__(self, proxy: Any, url: Optional[str] = None) -> None:
        self.proxy = proxy
        self.url = url or config.OVERPASS_URL

    def search(self, latitude: float, longitude: float, radius_m: int) -> List[Place]:
        """Raises on proxy failure; the query engine decides how to degrade."""
        query = build_overpass_query(latitude, longitude, radius_m)
        text = self.proxy.proxy_post(self.url, query)
        if is_proxy_error(text):
            raise exhausted_error(text)
        try:
            data = json.loads(text)
        except ValueError as exc:
            raise ProxyExhaustedError(f"service unavailable: non-JSON Overpass response ({exc})") from exc
        places = parse_overpass_response(data, latitude, longitude)
        logger.info("Overpass returned %s places within %sm", len(places), radius_m)
        return places
