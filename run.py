"""CLI entrypoint."""
from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv as _load_dotenv

from halal_finder import config
from halal_finder.cache import Cache
from halal_finder.geo import validate_coordinates
from halal_finder.geocoding import IpLocator
from halal_finder.geolocation import DeviceLocator, GeoAcquisition, GeoStatus
from halal_finder.notifications import Notifier
from halal_finder.proxy import AllowAllGate, ResilienceProxy
from halal_finder.proxy_client import ProxyHttpClient
from halal_finder.reporting import ensure_dir, write_results_csv, write_results_json
from halal_finder.search import SearchOutcome, SearchService, SearchStatus

logger = logging.getLogger(__name__)


def _repo_root() -> Path:
    return Path(__file__).resolve().parent


def load_env(path: str = ".env", root_dir: Optional[Path] = None) -> None:
    """Load a repo-root .env file without overriding real env vars."""
    root = Path(root_dir) if root_dir else _repo_root()
    env_path = (root / path).resolve()
    if not env_path.exists():
        return
    _load_dotenv(dotenv_path=env_path, override=False)


def _env_len(name: str) -> int:
    return len((os.environ.get(name) or "").strip())


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Find halal restaurants near a location")
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--preflight", action="store_true", help="Run offline checks only")
    group.add_argument("--city", type=str, default=None, help="Search by city name")
    group.add_argument("--detect", action="store_true", help="Detect the location (IP fallback) and search")
    parser.add_argument("--lat", type=float, default=None)
    parser.add_argument("--lon", type=float, default=None)
    parser.add_argument("--radius", type=int, default=None, help="Initial search radius in meters")
    parser.add_argument(
        "--proxy-url",
        type=str,
        default=os.environ.get("PROXY_URL") or None,
        help="Use a remote proxy_server.py instead of an in-process proxy",
    )
    parser.add_argument("--cache-path", type=str, default=config.CACHE_DB_PATH)
    parser.add_argument("--out", type=str, default=config.OUTPUT_DIR)
    return parser.parse_args(argv)


def build_backend(proxy_url: Optional[str], cache_path: str) -> Any:
    if proxy_url:
        logger.info("Using remote proxy at %s", proxy_url)
        return ProxyHttpClient(proxy_url)
    proxy = ResilienceProxy(cache=Cache(cache_path), gate=AllowAllGate())
    api_key = (os.environ.get("FOURSQUARE_API_KEY") or "").strip()
    if api_key:
        proxy.set_place_index_key(None, api_key)
    else:
        logger.warning("FOURSQUARE_API_KEY is not set; only OpenStreetMap results will be returned")
    return proxy


def run_preflight(proxy_url: Optional[str], cache_path: str) -> int:
    ok = True

    key_len = _env_len("FOURSQUARE_API_KEY")
    if proxy_url:
        print(f"Proxy: remote ({proxy_url})")
    else:
        print("Proxy: in-process")
        print(f"FOURSQUARE_API_KEY length: {key_len}" if key_len else "FOURSQUARE_API_KEY: MISSING (OSM only)")

    print(f"ADMIN_TOKENS configured: {len(config.env_admin_tokens())}")

    try:
        Cache(cache_path).close()
        print(f"Cache: OK ({cache_path})")
    except Exception as exc:
        print(f"Cache: FAIL ({exc})")
        ok = False

    print(
        "Search radii: location={loc}m, city={city}m, tiers={tiers}, min_results={min_results}".format(
            loc=config.LOCATION_SEARCH_RADIUS_M,
            city=config.CITY_SEARCH_RADIUS_M,
            tiers=config.RADIUS_TIERS_M,
            min_results=config.MIN_RESULTS_THRESHOLD,
        )
    )
    print("Preflight: PASS" if ok else "Preflight: FAIL")
    return 0 if ok else 1


def write_outputs(out_dir: str, outcome: SearchOutcome) -> None:
    ensure_dir(out_dir)
    json_path = os.path.join(out_dir, "results.json")
    csv_path = os.path.join(out_dir, "results.csv")
    write_results_json(json_path, outcome.places)
    write_results_csv(csv_path, outcome.places)
    logger.info("Wrote %s places to %s and %s", len(outcome.places), json_path, csv_path)


def main(argv: Optional[list] = None) -> int:
    load_env()
    config.load_search_config()
    args = parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    if args.preflight:
        return run_preflight(args.proxy_url, args.cache_path)

    notifier = Notifier()
    backend = build_backend(args.proxy_url, args.cache_path)
    service = SearchService(backend, notifier=notifier)

    if args.city:
        outcome = service.search_by_city(args.city, radius_m=args.radius)
    else:
        if args.detect:
            acquisition = GeoAcquisition(DeviceLocator(), IpLocator(backend).lookup, notifier=notifier)
            state = acquisition.detect()
            if state.status is not GeoStatus.SUCCESS or state.coordinate is None:
                print(f"Location detection failed: {state.error or state.status.value}")
                return 1
            lat, lon = state.coordinate.latitude, state.coordinate.longitude
        else:
            if args.lat is None or args.lon is None:
                print("Provide --lat and --lon, --city, or --detect.")
                return 2
            lat, lon = args.lat, args.lon
            check = validate_coordinates(lat, lon)
            if not check.valid:
                print(f"Invalid coordinates: {check.reason}")
                return 2
        outcome = service.search_by_location(lat, lon, radius_m=args.radius)

    if outcome.status not in (SearchStatus.OK, SearchStatus.EMPTY):
        print(outcome.message)
        return 1

    write_outputs(args.out, outcome)
    for place in outcome.places:
        distance = f"{place.distance_m:.0f} m" if place.distance_m is not None else "distance unknown"
        print(f"{place.name} | {place.category} | {place.address} | {distance}")
    print(outcome.message)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
