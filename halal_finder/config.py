"""Project configuration.

Loads optional overrides from search_config.json when available, falling
back to sensible defaults. Keep provider request shapes and resilience
thresholds centralized here.
"""
from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

_REPO_ROOT = Path(__file__).resolve().parent.parent

# --- API endpoints ---

OVERPASS_URL = "https://overpass-api.de/api/interpreter"
PLACES_SEARCH_URL = "https://api.foursquare.com/v3/places/search"
IP_GEOLOCATION_URL = "http://ip-api.com/json"
NOMINATIM_SEARCH_URL = "https://nominatim.openstreetmap.org/search"

HTTP_USER_AGENT = "HalalFinder/1.0"

# --- Overpass query shape ---

OVERPASS_TIMEOUT_SECONDS = 25
OVERPASS_ETHNIC_CUISINES: List[str] = [
    "turkish",
    "middle_eastern",
    "pakistani",
    "indian",
    "indonesian",
    "malaysian",
    "arabic",
]

# --- Foursquare query shape ---

PLACES_RESTAURANT_CATEGORY = "13065"
PLACES_STRICT_QUERY = "halal"
PLACES_BROAD_QUERY = "halal food"
PLACES_RESULT_LIMIT = 50
PLACES_SPARSE_THRESHOLD = 5
PLACES_API_VERSION_HEADER = "2023-06-01"

# --- Search ---

LOCATION_SEARCH_RADIUS_M = 10000
CITY_SEARCH_RADIUS_M = 15000
RADIUS_TIERS_M: List[int] = [20000, 30000]
MAX_SEARCH_RADIUS_M = 30000
MIN_RESULTS_THRESHOLD = 5

# --- Dedup ---

NAME_SIMILARITY_THRESHOLD = 0.75
PROXIMITY_THRESHOLD_M = 50.0
EARTH_RADIUS_M = 6371000.0

# --- Client retry ---

MAX_AUTO_RETRIES = 2
RETRY_DELAY_SECONDS = 2.0

# --- Geolocation ---

GPS_HIGH_ACCURACY_TIMEOUT_S = 8.0
GPS_LOW_ACCURACY_TIMEOUT_S = 6.0
GPS_LOW_ACCURACY_MAX_AGE_S = 60.0
TRACKING_MIN_INTERVAL_S = 10.0
TRACKING_MOVEMENT_THRESHOLD_DEG = 0.0005
TRACKING_WATCH_TIMEOUT_S = 10.0
# None disables the overall deadline on the acquisition chain.
GEO_ACQUISITION_DEADLINE_S: Optional[float] = None

# --- Proxy ---

PROXY_ERROR_MARKER = "PROXY_ERROR:"
NOT_CONFIGURED_MARKER = "PROXY_NOT_CONFIGURED"
PROXY_MAX_ATTEMPTS = 3
PROXY_CONSECUTIVE_ERROR_RESET = 10
CACHE_TTL_SECONDS = 300
ERROR_LOG_CAPACITY = 100
ERROR_LOG_MAX_AGE_SECONDS = 24 * 60 * 60

# --- HTTP ---

HTTP_TIMEOUT_SECONDS = 20
HTTP_BACKOFF_BASE = 0.5
HTTP_BACKOFF_MAX = 8.0

# --- Cache and outputs ---

CACHE_DB_PATH = ":memory:"
OUTPUT_DIR = "out"
PROXY_SERVER_PORT = 8000


def load_search_config(path: Optional[str] = None) -> bool:
    """Load configuration overrides from a JSON file.

    Updates module-level globals with values from the config file.
    Returns True if config was loaded, False if file not found.
    """
    if path is None:
        path = str(_REPO_ROOT / "search_config.json")

    config_path = Path(path)
    if not config_path.exists():
        return False

    with open(config_path, "r", encoding="utf-8") as f:
        data = json.load(f)

    globals_ref = globals()

    search = data.get("search", {})
    if "location_radius_m" in search:
        globals_ref["LOCATION_SEARCH_RADIUS_M"] = int(search["location_radius_m"])
    if "city_radius_m" in search:
        globals_ref["CITY_SEARCH_RADIUS_M"] = int(search["city_radius_m"])
    if "min_results" in search:
        globals_ref["MIN_RESULTS_THRESHOLD"] = int(search["min_results"])

    places = data.get("places", {})
    if places.get("strict_query"):
        globals_ref["PLACES_STRICT_QUERY"] = str(places["strict_query"])
    if places.get("broad_query"):
        globals_ref["PLACES_BROAD_QUERY"] = str(places["broad_query"])
    if places.get("category"):
        globals_ref["PLACES_RESTAURANT_CATEGORY"] = str(places["category"])

    cuisines = data.get("overpass_cuisines", [])
    if cuisines:
        globals_ref["OVERPASS_ETHNIC_CUISINES"] = list(cuisines)

    endpoints: Dict[str, Any] = data.get("endpoints", {})
    if endpoints.get("overpass"):
        globals_ref["OVERPASS_URL"] = str(endpoints["overpass"])
    if endpoints.get("ip_geolocation"):
        globals_ref["IP_GEOLOCATION_URL"] = str(endpoints["ip_geolocation"])

    cache_db = data.get("cache_db_path")
    if cache_db:
        globals_ref["CACHE_DB_PATH"] = str(cache_db)

    return True


def env_admin_tokens() -> List[str]:
    raw = os.environ.get("ADMIN_TOKENS") or ""
    return [t.strip() for t in raw.split(",") if t.strip()]
