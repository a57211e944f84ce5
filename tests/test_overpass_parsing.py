import pytest

from halal_finder import config
from halal_finder.errors import ErrorKind, ProxyExhaustedError
from halal_finder.overpass_client import (
    OverpassClient,
    build_overpass_query,
    derive_category,
    parse_overpass_response,
)


class FakeProxy:
    def __init__(self, text):
        self.text = text
        self.posts = []

    def proxy_post(self, url, body):
        self.posts.append((url, body))
        return self.text


def test_build_overpass_query_covers_all_element_types():
    query = build_overpass_query(51.5, -0.1, 10000)

    assert query.startswith("[out:json][timeout:25];")
    assert query.rstrip().endswith("out center;")
    assert '  node["diet:halal"="yes"](around:10000,51.5,-0.1);' in query
    assert '  way["shop"="halal"](around:10000,51.5,-0.1);' in query
    assert '  relation["halal"="only"](around:10000,51.5,-0.1);' in query


def test_parse_overpass_response_normalizes_elements():
    response = {
        "elements": [
            {
                "type": "node",
                "id": 1,
                "lat": 0.0,
                "lon": 0.0,
                "tags": {
                    "name": "Zero Grill",
                    "cuisine": "turkish",
                    "addr:housenumber": "12",
                    "addr:street": "High St",
                    "addr:city": "Null Island",
                    "contact:phone": "+1 555",
                },
            },
            {
                "type": "way",
                "id": 2,
                "center": {"lat": 0.001, "lon": 0.0},
                "tags": {"shop": "butcher"},
            },
            {"type": "way", "id": 3, "tags": {"name": "No center"}},
            {"type": "node", "id": 4, "lat": 91.0, "lon": 0.0, "tags": {"name": "Bad"}},
            {"type": "area", "id": 5, "lat": 1.0, "lon": 1.0},
        ]
    }

    places = parse_overpass_response(response, 0.0, 0.0)

    assert [p.id for p in places] == ["osm-node-1", "osm-way-2"]
    first, second = places
    assert first.name == "Zero Grill"
    assert first.category == "turkish"
    assert first.address == "12 High St"
    assert first.city == "Null Island"
    assert first.phone == "+1 555"
    assert first.distance_m == 0
    assert second.name == "Unnamed Place"
    assert second.category == "Halal Butcher"
    assert second.address == "Address not available"
    assert second.distance_m == 111


def test_parse_overpass_response_tolerates_garbage():
    assert parse_overpass_response({}, 0.0, 0.0) == []
    assert parse_overpass_response({"elements": "nope"}, 0.0, 0.0) == []
    assert parse_overpass_response([], 0.0, 0.0) == []


def test_derive_category_priority():
    assert derive_category({"cuisine": "pakistani", "amenity": "restaurant"}) == "pakistani"
    assert derive_category({"amenity": "fast_food"}) == "Restaurant"
    assert derive_category({"shop": "supermarket"}) == "Halal Supermarket"
    assert derive_category({"shop": "convenience"}) == "Halal Shop"
    assert derive_category({}) == "Halal"


def test_overpass_client_posts_query_and_parses():
    proxy = FakeProxy('{"elements": [{"type": "node", "id": 9, "lat": 1.0, "lon": 1.0, "tags": {}}]}')
    places = OverpassClient(proxy).search(1.0, 1.0, 20000)

    assert [p.id for p in places] == ["osm-node-9"]
    url, body = proxy.posts[0]
    assert url == config.OVERPASS_URL
    assert "around:20000,1.0,1.0" in body


def test_overpass_client_raises_on_proxy_failure():
    with pytest.raises(ProxyExhaustedError):
        OverpassClient(FakeProxy(f"{config.PROXY_ERROR_MARKER} POST x failed")).search(1.0, 1.0, 10000)
    with pytest.raises(ProxyExhaustedError) as excinfo:
        OverpassClient(FakeProxy(f"{config.PROXY_ERROR_MARKER}timeout: POST x failed")).search(1.0, 1.0, 10000)
    assert excinfo.value.kind is ErrorKind.TIMEOUT
    with pytest.raises(ProxyExhaustedError):
        OverpassClient(FakeProxy("<html>busy</html>")).search(1.0, 1.0, 10000)
