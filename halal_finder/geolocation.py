"""Geolocation acquisition: GPS high accuracy, then GPS low accuracy, then IP.

The state machine is the pure function `transition(state, event)`; the
`GeoAcquisition` driver feeds it events produced by a `DeviceLocator` and an
IP lookup callable. `PositionTracker` is the longer-lived continuous mode.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Optional

from . import config
from .errors import GeolocationError
from .geo import validate_coordinates
from .geocoding import IpLocation
from .models import Coordinate
from .notifications import Notifier
from .rate_limit import RateLimiter

logger = logging.getLogger(__name__)


class GeoStatus(str, Enum):
    IDLE = "idle"
    REQUESTING_PERMISSION = "requesting_permission"
    DETECTING_GPS_HIGH = "detecting_gps_high"
    DETECTING_GPS_LOW = "detecting_gps_low"
    FALLBACK_IP = "fallback_ip"
    VALIDATING = "validating"
    SUCCESS = "success"
    FAILED = "failed"
    PERMISSION_DENIED = "permission_denied"
    NOT_SECURE_CONTEXT = "not_secure_context"
    NOT_SUPPORTED = "not_supported"


TERMINAL_STATUSES = frozenset(
    {
        GeoStatus.SUCCESS,
        GeoStatus.FAILED,
        GeoStatus.PERMISSION_DENIED,
        GeoStatus.NOT_SECURE_CONTEXT,
        GeoStatus.NOT_SUPPORTED,
    }
)


class LocationSource(str, Enum):
    GPS = "GPS"
    IP = "IP"
    NONE = "none"


@dataclass(frozen=True)
class GeolocationState:
    status: GeoStatus = GeoStatus.IDLE
    source: LocationSource = LocationSource.NONE
    coordinate: Optional[Coordinate] = None
    error: Optional[str] = None
    can_retry: bool = True
    city: Optional[str] = None
    country: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class GeoEventType(str, Enum):
    START = "start"
    INSECURE_CONTEXT = "insecure_context"
    UNSUPPORTED = "unsupported"
    PERMISSION_GRANTED = "permission_granted"
    GPS_FIX = "gps_fix"
    GPS_INVALID = "gps_invalid"
    GPS_DENIED = "gps_denied"
    GPS_TIMEOUT = "gps_timeout"
    GPS_UNAVAILABLE = "gps_unavailable"
    IP_RESULT = "ip_result"
    IP_FAILED = "ip_failed"
    VALIDATED = "validated"
    RETRY = "retry"
    STOP = "stop"


@dataclass(frozen=True)
class GeoEvent:
    type: GeoEventType
    coordinate: Optional[Coordinate] = None
    message: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None


_GPS_FAILURES = (GeoEventType.GPS_DENIED, GeoEventType.GPS_TIMEOUT, GeoEventType.GPS_UNAVAILABLE)


def _is_valid(coordinate: Optional[Coordinate]) -> bool:
    return coordinate is not None and validate_coordinates(coordinate.latitude, coordinate.longitude).valid


def transition(state: GeolocationState, event: GeoEvent) -> GeolocationState:
    """Return the next state; events that do not apply leave it unchanged."""
    status = state.status
    kind = event.type

    if kind is GeoEventType.STOP:
        return GeolocationState()
    if kind is GeoEventType.RETRY:
        return GeolocationState() if state.is_terminal else state

    if status is GeoStatus.IDLE and kind is GeoEventType.START:
        return GeolocationState(status=GeoStatus.REQUESTING_PERMISSION)

    if status is GeoStatus.REQUESTING_PERMISSION:
        if kind is GeoEventType.INSECURE_CONTEXT:
            return GeolocationState(
                status=GeoStatus.NOT_SECURE_CONTEXT,
                error="Geolocation requires a secure context (HTTPS)",
                can_retry=False,
            )
        if kind is GeoEventType.UNSUPPORTED:
            return GeolocationState(
                status=GeoStatus.NOT_SUPPORTED,
                error="Geolocation is not supported on this device",
                can_retry=False,
            )
        if kind is GeoEventType.PERMISSION_GRANTED:
            return GeolocationState(status=GeoStatus.DETECTING_GPS_HIGH)
        if kind is GeoEventType.GPS_DENIED:
            return GeolocationState(
                status=GeoStatus.PERMISSION_DENIED,
                error=event.message or "Location access was denied",
                can_retry=True,
            )

    if status in (GeoStatus.DETECTING_GPS_HIGH, GeoStatus.DETECTING_GPS_LOW):
        if kind is GeoEventType.GPS_FIX and _is_valid(event.coordinate):
            return GeolocationState(
                status=GeoStatus.VALIDATING,
                source=LocationSource.GPS,
                coordinate=event.coordinate,
            )
        if kind in (GeoEventType.GPS_FIX, GeoEventType.GPS_INVALID):
            # an untrustworthy GPS stack skips the low-accuracy attempt
            return GeolocationState(status=GeoStatus.FALLBACK_IP, error="Invalid GPS coordinates")
        if status is GeoStatus.DETECTING_GPS_LOW and kind in _GPS_FAILURES:
            return GeolocationState(status=GeoStatus.FALLBACK_IP, error=event.message)
        if kind is GeoEventType.GPS_DENIED:
            return GeolocationState(
                status=GeoStatus.PERMISSION_DENIED,
                error=event.message or "Location access was denied",
                can_retry=True,
            )
        if kind in (GeoEventType.GPS_TIMEOUT, GeoEventType.GPS_UNAVAILABLE):
            return GeolocationState(status=GeoStatus.DETECTING_GPS_LOW, error=event.message)

    if status is GeoStatus.FALLBACK_IP:
        if kind is GeoEventType.IP_RESULT:
            if _is_valid(event.coordinate):
                return GeolocationState(
                    status=GeoStatus.VALIDATING,
                    source=LocationSource.IP,
                    coordinate=event.coordinate,
                    city=event.city,
                    country=event.country,
                )
            return GeolocationState(
                status=GeoStatus.FAILED,
                error="IP geolocation returned invalid coordinates",
                can_retry=True,
            )
        if kind is GeoEventType.IP_FAILED:
            return GeolocationState(
                status=GeoStatus.FAILED,
                error=event.message or "Unable to determine your location",
                can_retry=True,
            )

    if status is GeoStatus.VALIDATING and kind is GeoEventType.VALIDATED:
        return replace(state, status=GeoStatus.SUCCESS, error=None)

    logger.debug("Ignoring geolocation event %s in state %s", kind.value, status.value)
    return state


def event_for_error(error: GeolocationError) -> GeoEvent:
    if error.code == GeolocationError.PERMISSION_DENIED:
        return GeoEvent(GeoEventType.GPS_DENIED, message=str(error))
    if error.code == GeolocationError.TIMEOUT:
        return GeoEvent(GeoEventType.GPS_TIMEOUT, message=str(error))
    return GeoEvent(GeoEventType.GPS_UNAVAILABLE, message=str(error))


class DeviceLocator:
    """On-device position source.

    `current_position` returns a Coordinate or raises GeolocationError;
    `watch_position` invokes its callbacks until `clear_watch` is called.
    """

    is_secure_context = True
    is_supported = True

    def current_position(self, high_accuracy: bool, timeout_s: float, maximum_age_s: float) -> Coordinate:
        raise GeolocationError(GeolocationError.POSITION_UNAVAILABLE)

    def watch_position(
        self,
        on_position: Callable[[Coordinate], None],
        on_error: Callable[[GeolocationError], None],
        high_accuracy: bool = True,
        timeout_s: float = config.TRACKING_WATCH_TIMEOUT_S,
    ) -> int:
        raise GeolocationError(GeolocationError.POSITION_UNAVAILABLE)

    def clear_watch(self, watch_id: int) -> None:
        return None


class LocationModeGuard:
    """One-time detection and continuous tracking never run together."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.active: Optional[str] = None

    def acquire(self, mode: str) -> bool:
        with self._lock:
            if self.active is not None:
                return False
            self.active = mode
            return True

    def release(self, mode: str) -> None:
        with self._lock:
            if self.active == mode:
                self.active = None


class GeoAcquisition:
    def __init__(
        self,
        locator: DeviceLocator,
        ip_lookup: Callable[[], IpLocation],
        notifier: Optional[Notifier] = None,
        guard: Optional[LocationModeGuard] = None,
        deadline_s: Optional[float] = config.GEO_ACQUISITION_DEADLINE_S,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.locator = locator
        self.ip_lookup = ip_lookup
        self.notifier = notifier or Notifier()
        self.guard = guard or LocationModeGuard()
        self.deadline_s = deadline_s
        self.clock = clock
        self._lock = threading.Lock()
        self._state = GeolocationState()
        self._fallback_started = False
        self._started_at = 0.0

    @property
    def state(self) -> GeolocationState:
        return self._state

    def dispatch(self, event: GeoEvent) -> GeolocationState:
        with self._lock:
            previous = self._state
            self._state = transition(previous, event)
            current = self._state
        if current.status is not previous.status:
            logger.info("Geolocation %s -> %s (%s)", previous.status.value, current.status.value, event.type.value)
        return current

    def _deadline_passed(self) -> bool:
        if self.deadline_s is None:
            return False
        return self.clock() - self._started_at >= self.deadline_s

    def retry(self) -> GeolocationState:
        self.dispatch(GeoEvent(GeoEventType.RETRY))
        return self.detect()

    def stop(self) -> GeolocationState:
        return self.dispatch(GeoEvent(GeoEventType.STOP))

    def detect(self) -> GeolocationState:
        if not self.guard.acquire("detect"):
            self.notifier.warning("Stop live tracking before detecting your location again.")
            return self._state
        try:
            return self._detect()
        finally:
            self.guard.release("detect")

    def _detect(self) -> GeolocationState:
        with self._lock:
            self._state = GeolocationState()
            self._fallback_started = False
        self._started_at = self.clock()

        self.dispatch(GeoEvent(GeoEventType.START))
        if not self.locator.is_secure_context:
            return self._finish(self.dispatch(GeoEvent(GeoEventType.INSECURE_CONTEXT)))
        if not self.locator.is_supported:
            return self._finish(self.dispatch(GeoEvent(GeoEventType.UNSUPPORTED)))
        state = self.dispatch(GeoEvent(GeoEventType.PERMISSION_GRANTED))

        if state.status is GeoStatus.DETECTING_GPS_HIGH:
            state = self._gps_stage(high_accuracy=True)
        if state.status is GeoStatus.DETECTING_GPS_LOW:
            if self._deadline_passed():
                state = self.dispatch(GeoEvent(GeoEventType.GPS_TIMEOUT, message="Location deadline exceeded"))
            else:
                state = self._gps_stage(high_accuracy=False)
        if state.status is GeoStatus.FALLBACK_IP:
            state = self.fallback_to_ip()
        if state.status is GeoStatus.VALIDATING:
            state = self.dispatch(GeoEvent(GeoEventType.VALIDATED))
        return self._finish(state)

    def _gps_stage(self, high_accuracy: bool) -> GeolocationState:
        if high_accuracy:
            timeout_s, max_age_s = config.GPS_HIGH_ACCURACY_TIMEOUT_S, 0.0
        else:
            timeout_s, max_age_s = config.GPS_LOW_ACCURACY_TIMEOUT_S, config.GPS_LOW_ACCURACY_MAX_AGE_S
        try:
            coordinate = self.locator.current_position(high_accuracy, timeout_s, max_age_s)
        except GeolocationError as exc:
            logger.warning("GPS (%s accuracy) failed: %s", "high" if high_accuracy else "low", exc)
            return self.dispatch(event_for_error(exc))
        return self.dispatch(GeoEvent(GeoEventType.GPS_FIX, coordinate=coordinate))

    def fallback_to_ip(self) -> GeolocationState:
        """Run the IP lookup at most once per acquisition attempt.

        Late or duplicate triggers (racing timeout and error callbacks) return
        the current state without issuing another lookup.
        """
        with self._lock:
            if self._fallback_started or self._state.status is not GeoStatus.FALLBACK_IP:
                return self._state
            self._fallback_started = True

        if self._deadline_passed():
            return self.dispatch(GeoEvent(GeoEventType.IP_FAILED, message="Location deadline exceeded"))
        try:
            location = self.ip_lookup()
        except Exception as exc:
            logger.warning("IP geolocation failed: %s", exc)
            return self.dispatch(GeoEvent(GeoEventType.IP_FAILED, message=str(exc)))
        return self.dispatch(
            GeoEvent(
                GeoEventType.IP_RESULT,
                coordinate=Coordinate(location.latitude, location.longitude),
                city=location.city,
                country=location.country,
            )
        )

    def _finish(self, state: GeolocationState) -> GeolocationState:
        if state.status is GeoStatus.SUCCESS:
            if state.source is LocationSource.IP:
                where = ", ".join(p for p in (state.city, state.country) if p)
                self.notifier.info(f"Using approximate location from your network{f' ({where})' if where else ''}.")
            else:
                self.notifier.success("Location detected! Searching for nearby halal restaurants...")
        elif state.is_terminal and state.error:
            self.notifier.error(state.error)
        return state


class WatchStatus(str, Enum):
    IDLE = "idle"
    TRACKING = "tracking"
    STOPPED = "stopped"
    ERROR = "error"
    PERMISSION_DENIED = "permission_denied"


class PositionTracker:
    """Continuous tracking; only significant, rate-limited moves trigger a search."""

    def __init__(
        self,
        locator: DeviceLocator,
        on_search: Callable[[Coordinate], None],
        notifier: Optional[Notifier] = None,
        guard: Optional[LocationModeGuard] = None,
        min_interval_s: float = config.TRACKING_MIN_INTERVAL_S,
        movement_threshold_deg: float = config.TRACKING_MOVEMENT_THRESHOLD_DEG,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.locator = locator
        self.on_search = on_search
        self.notifier = notifier or Notifier()
        self.guard = guard or LocationModeGuard()
        self.movement_threshold_deg = movement_threshold_deg
        self.limiter = RateLimiter(min_interval_s, clock=clock)
        self.status = WatchStatus.IDLE
        self.error: Optional[str] = None
        self.last_accepted: Optional[Coordinate] = None
        self._watch_id: Optional[int] = None
        self._acquired_notified = False

    @property
    def is_tracking(self) -> bool:
        return self._watch_id is not None

    def start(self) -> bool:
        if self.is_tracking:
            return True
        if not self.guard.acquire("tracking"):
            self.notifier.warning("Location detection is already running. Try live tracking once it finishes.")
            return False
        if not self.locator.is_supported or not self.locator.is_secure_context:
            self.guard.release("tracking")
            self.status = WatchStatus.ERROR
            self.error = "Live tracking is not available on this device"
            self.notifier.error(self.error)
            return False
        self._reset_filters()
        self.status = WatchStatus.TRACKING
        self.error = None
        try:
            self._watch_id = self.locator.watch_position(
                self._on_position,
                self._on_error,
                high_accuracy=True,
                timeout_s=config.TRACKING_WATCH_TIMEOUT_S,
            )
        except GeolocationError as exc:
            self._watch_id = None
            self.guard.release("tracking")
            if exc.code == GeolocationError.PERMISSION_DENIED:
                self.status = WatchStatus.PERMISSION_DENIED
            else:
                self.status = WatchStatus.ERROR
            self.error = str(exc)
            self.notifier.error(f"Could not start live tracking: {exc}")
            logger.warning("Position watch failed to start: %s", exc)
            return False
        logger.info("Position watch started (id=%s)", self._watch_id)
        return True

    def stop(self) -> None:
        if self._watch_id is not None:
            self.locator.clear_watch(self._watch_id)
            logger.info("Position watch stopped (id=%s)", self._watch_id)
            self._watch_id = None
        self._reset_filters()
        self.status = WatchStatus.STOPPED
        self.guard.release("tracking")

    def _reset_filters(self) -> None:
        self.last_accepted = None
        self.limiter.reset()
        self._acquired_notified = False

    def moved_significantly(self, coordinate: Coordinate) -> bool:
        if self.last_accepted is None:
            return True
        return (
            abs(coordinate.latitude - self.last_accepted.latitude) > self.movement_threshold_deg
            or abs(coordinate.longitude - self.last_accepted.longitude) > self.movement_threshold_deg
        )

    def _on_position(self, coordinate: Coordinate) -> None:
        if self._watch_id is None:
            return
        if not validate_coordinates(coordinate.latitude, coordinate.longitude):
            logger.warning("Ignoring invalid tracked position %s", coordinate)
            return
        if not self.moved_significantly(coordinate):
            return
        self.limiter.try_execute(lambda: self._accept(coordinate))

    def _accept(self, coordinate: Coordinate) -> None:
        self.last_accepted = coordinate
        self.status = WatchStatus.TRACKING
        self.error = None
        if not self._acquired_notified:
            self._acquired_notified = True
            self.notifier.success("Live location acquired. Results will follow you as you move.")
        self.on_search(coordinate)

    def _on_error(self, error: GeolocationError) -> None:
        if error.code == GeolocationError.PERMISSION_DENIED:
            if self._watch_id is not None:
                self.locator.clear_watch(self._watch_id)
                self._watch_id = None
            self.guard.release("tracking")
            self.status = WatchStatus.PERMISSION_DENIED
        else:
            self.status = WatchStatus.ERROR
        self.error = str(error)
        logger.warning("Position watch error: %s", error)
