"""Radius-expanding search and the client-facing search service."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional

from . import config
from .errors import ErrorKind
from .geo import validate_coordinates
from .geocoding import CityGeocoder
from .merge import merge_and_dedupe, sort_by_distance
from .models import Place
from .notifications import Notifier
from .overpass_client import OverpassClient
from .places_client import PlacesClient
from .query_engine import ProviderQueryEngine
from .retry import ClientRetryOrchestrator

logger = logging.getLogger(__name__)


def radius_tiers(initial_radius_m: int) -> List[int]:
    initial = int(min(initial_radius_m, config.MAX_SEARCH_RADIUS_M))
    tiers = [initial]
    for radius in config.RADIUS_TIERS_M:
        if initial < radius:
            tiers.append(radius)
    return tiers


class RadiusExpansionController:
    def __init__(
        self,
        engine: ProviderQueryEngine,
        notifier: Optional[Notifier] = None,
        min_results: Optional[int] = None,
    ) -> None:
        self.engine = engine
        self.notifier = notifier or Notifier()
        self.min_results = config.MIN_RESULTS_THRESHOLD if min_results is None else min_results

    def search(self, latitude: float, longitude: float, initial_radius_m: int) -> List[Place]:
        accumulated: List[Place] = []
        for idx, radius in enumerate(radius_tiers(initial_radius_m)):
            if idx > 0:
                self.notifier.info(f"Expanding search radius to {radius / 1000:g} km...")
            overpass_batch, places_batch = self.engine.query(latitude, longitude, radius)
            accumulated = merge_and_dedupe([accumulated, overpass_batch, places_batch])
            logger.info(
                "Radius %sm: overpass=%s places=%s merged=%s",
                radius,
                len(overpass_batch),
                len(places_batch),
                len(accumulated),
            )
            if len(accumulated) >= self.min_results:
                break
        return accumulated


class SearchStatus(str, Enum):
    OK = "ok"
    EMPTY = "empty"
    INVALID_INPUT = "invalid_input"
    SAFE_MODE = "safe_mode"
    ERROR = "error"


@dataclass
class SearchOutcome:
    status: SearchStatus
    places: List[Place] = field(default_factory=list)
    message: Optional[str] = None
    error_kind: Optional[ErrorKind] = None


class SearchService:
    """Location and city-name search on top of the radius controller.

    While the orchestrator is in safe mode, location search is refused and
    city search stays available.
    """

    def __init__(
        self,
        proxy: Any,
        notifier: Optional[Notifier] = None,
        orchestrator: Optional[ClientRetryOrchestrator] = None,
        controller: Optional[RadiusExpansionController] = None,
        geocoder: Optional[CityGeocoder] = None,
    ) -> None:
        self.notifier = notifier or Notifier()
        self.orchestrator = orchestrator or ClientRetryOrchestrator(notifier=self.notifier)
        if controller is None:
            engine = ProviderQueryEngine(OverpassClient(proxy), PlacesClient(proxy), self.orchestrator)
            controller = RadiusExpansionController(engine, notifier=self.notifier)
        self.controller = controller
        self.geocoder = geocoder or CityGeocoder(proxy)
        self.results: List[Place] = []
        self.error: Optional[str] = None

    @property
    def safe_mode(self) -> bool:
        return self.orchestrator.safe_mode

    def exit_safe_mode(self) -> None:
        self.orchestrator.exit_safe_mode()
        self.error = None

    def clear_results(self) -> None:
        self.results = []
        self.error = None

    def _fail(self, status: SearchStatus, message: str, kind: Optional[ErrorKind] = None) -> SearchOutcome:
        self.results = []
        self.error = message
        self.notifier.error(message)
        return SearchOutcome(status=status, message=message, error_kind=kind)

    def _finish(self, places: List[Place], where: str) -> SearchOutcome:
        self.results = sort_by_distance(places)
        self.error = None
        if not self.results:
            message = f"No halal restaurants found {where}. Try searching a different location."
            self.notifier.info(message)
            return SearchOutcome(status=SearchStatus.EMPTY, message=message)
        message = f"Found {len(self.results)} halal places {where}"
        self.notifier.success(message)
        return SearchOutcome(status=SearchStatus.OK, places=list(self.results), message=message)

    def search_by_location(
        self, latitude: float, longitude: float, radius_m: Optional[int] = None
    ) -> SearchOutcome:
        check = validate_coordinates(latitude, longitude)
        if not check.valid:
            return self._fail(
                SearchStatus.INVALID_INPUT,
                f"Invalid location coordinates ({check.reason}). Please try searching by city name instead.",
                ErrorKind.INVALID_INPUT,
            )
        if self.safe_mode:
            return self._fail(
                SearchStatus.SAFE_MODE,
                "Location search is paused while the service recovers. You can still search by city name.",
                ErrorKind.SERVICE_RECOVERING,
            )
        radius = radius_m or config.LOCATION_SEARCH_RADIUS_M
        places = self.controller.search(float(latitude), float(longitude), radius)
        return self._finish(places, "nearby")

    def search_by_city(self, city: str, radius_m: Optional[int] = None) -> SearchOutcome:
        city = (city or "").strip()
        if not city:
            return self._fail(SearchStatus.INVALID_INPUT, "Please enter a city name", ErrorKind.INVALID_INPUT)

        outcome = self.orchestrator.execute(lambda: self.geocoder.geocode(city), "geocoding")
        if not outcome.ok:
            return self._fail(
                SearchStatus.ERROR,
                "Unable to find that location. Please check the spelling and try again.",
                outcome.kind,
            )
        if outcome.value is None:
            return self._fail(
                SearchStatus.EMPTY,
                "City not found. Please check the spelling or try a different location.",
            )

        location = outcome.value
        radius = radius_m or config.CITY_SEARCH_RADIUS_M
        places = self.controller.search(location.latitude, location.longitude, radius)
        return self._finish(places, f"in {city}")
