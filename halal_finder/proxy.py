"""Server-side resilience proxy.

The only component that talks to the public internet. Every outbound call is
cached for a fixed TTL, retried a bounded number of times and logged on
failure. Exhausted calls come back as a string starting with
``config.PROXY_ERROR_MARKER`` followed by the kind of the last upstream
failure instead of raising, so callers can tell a degraded proxy apart from a
valid empty upstream answer and still see an auth or quota problem for what it is.
"""
from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, List, Optional, Sequence, Tuple

from . import config
from .cache import Cache, make_request_cache_key
from .errors import AuthorizationError, ErrorKind, ProxyExhaustedError, UpstreamError
from .http import HttpClient, RequestStats

logger = logging.getLogger(__name__)

ADMIN_ONLY = "admin-only"

# Another attempt cannot change the upstream answer for these.
NON_RETRYABLE_KINDS = frozenset({ErrorKind.AUTH, ErrorKind.INVALID_INPUT})


class AccessGate:
    """Opaque allow/deny check keyed by caller identity and operation class."""

    def is_allowed(self, caller: Optional[str], operation_class: str) -> bool:
        raise NotImplementedError


class AllowAllGate(AccessGate):
    def is_allowed(self, caller: Optional[str], operation_class: str) -> bool:
        return True


class TokenAccessGate(AccessGate):
    def __init__(self, admin_tokens: Sequence[str]) -> None:
        self.admin_tokens = {t for t in admin_tokens if t}

    def is_allowed(self, caller: Optional[str], operation_class: str) -> bool:
        if operation_class != ADMIN_ONLY:
            return True
        return bool(caller) and caller in self.admin_tokens


class ErrorLog:
    """Bounded ring of (timestamp, message); old entries evicted on write."""

    def __init__(
        self,
        capacity: int = config.ERROR_LOG_CAPACITY,
        max_age_seconds: float = config.ERROR_LOG_MAX_AGE_SECONDS,
    ) -> None:
        self.max_age_seconds = float(max_age_seconds)
        self._entries: Deque[Tuple[float, str]] = deque(maxlen=capacity)

    def append(self, timestamp: float, message: str) -> None:
        cutoff = timestamp - self.max_age_seconds
        while self._entries and self._entries[0][0] < cutoff:
            self._entries.popleft()
        self._entries.append((timestamp, message))

    def entries(self) -> List[Tuple[float, str]]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


@dataclass
class ResilienceState:
    """All mutable proxy state; mutate only while holding `lock`."""

    stats: RequestStats = field(default_factory=RequestStats)
    error_log: ErrorLog = field(default_factory=ErrorLog)
    consecutive_errors: int = 0
    place_index_key: Optional[str] = None
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def record_success(self) -> None:
        with self.lock:
            self.stats.inc_success()
            self.consecutive_errors = 0

    def record_failure(self, timestamp: float, message: str) -> int:
        with self.lock:
            self.stats.inc_failure()
            self.error_log.append(timestamp, message)
            self.consecutive_errors += 1
            if self.consecutive_errors >= config.PROXY_CONSECUTIVE_ERROR_RESET:
                logger.warning(
                    "Consecutive error counter reached %s; resetting",
                    self.consecutive_errors,
                )
                self.consecutive_errors = 0
            return self.consecutive_errors


def is_proxy_error(text: Optional[str]) -> bool:
    return isinstance(text, str) and text.startswith(config.PROXY_ERROR_MARKER)


def proxy_error_kind(text: str) -> ErrorKind:
    """Kind of the last upstream failure carried by an error marker.

    Markers read ``PROXY_ERROR:<kind>: <detail>``; anything unrecognised counts
    as a recovering service.
    """
    rest = text[len(config.PROXY_ERROR_MARKER):]
    token, sep, _ = rest.partition(":")
    if sep:
        try:
            return ErrorKind(token.strip())
        except ValueError:
            pass
    return ErrorKind.SERVICE_RECOVERING


def exhausted_error(text: str) -> ProxyExhaustedError:
    return ProxyExhaustedError(text, kind=proxy_error_kind(text))


def is_place_index_url(url: str) -> bool:
    base = config.PLACES_SEARCH_URL
    return url == base or url.startswith(base + "?")


class ResilienceProxy:
    def __init__(
        self,
        http_client: Optional[HttpClient] = None,
        cache: Optional[Cache] = None,
        gate: Optional[AccessGate] = None,
        state: Optional[ResilienceState] = None,
        max_attempts: int = config.PROXY_MAX_ATTEMPTS,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.http = http_client or HttpClient()
        self.cache = cache or Cache()
        self.gate = gate or AllowAllGate()
        self.state = state or ResilienceState()
        self.max_attempts = max(1, int(max_attempts))
        self.clock = clock
        self.sleep = sleep

    # --- outbound calls ---

    def call(
        self,
        method: str,
        url: str,
        body: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> str:
        key = make_request_cache_key(method, url, body)
        cached = self.cache.get_fresh(key, self.clock())
        if cached is not None:
            logger.debug("Cache hit: %s", key)
            return cached

        last_error = "unknown error"
        last_kind = ErrorKind.UNKNOWN
        for attempt in range(1, self.max_attempts + 1):
            try:
                payload = self.http.request_text(method, url, body=body, headers=headers)
            except UpstreamError as exc:
                last_error = str(exc)
                last_kind = exc.kind
                count = self.state.record_failure(
                    self.clock(), f"{method.upper()} {url} attempt {attempt}: {exc}"
                )
                logger.warning(
                    "Upstream failure (attempt %s/%s, consecutive=%s): %s",
                    attempt,
                    self.max_attempts,
                    count,
                    exc,
                )
                if exc.kind in NON_RETRYABLE_KINDS:
                    break
                if attempt < self.max_attempts:
                    delay = exc.retry_after
                    if delay is None:
                        delay = self.http.backoff_delay(attempt)
                    self.sleep(delay)
                continue

            self.state.record_success()
            self.cache.set(key, payload, self.clock())
            return payload

        logger.error("Upstream call gave up after %s attempt(s): %s %s", attempt, method, url)
        return (
            f"{config.PROXY_ERROR_MARKER}{last_kind.value}: {method.upper()} {url} failed after "
            f"{attempt} attempts: {last_error}"
        )

    def proxy_get(self, url: str) -> str:
        return self.call("GET", url)

    def proxy_post(self, url: str, body: str) -> str:
        return self.call("POST", url, body=body)

    def place_index_search(self, url: str) -> str:
        if not is_place_index_url(url):
            logger.warning("Refusing place index request to %s", url)
            return (
                f"{config.PROXY_ERROR_MARKER}{ErrorKind.INVALID_INPUT.value}: "
                f"place index requests must target {config.PLACES_SEARCH_URL}"
            )
        with self.state.lock:
            api_key = self.state.place_index_key
        if not api_key:
            return config.NOT_CONFIGURED_MARKER
        headers = {
            "Authorization": api_key,
            "Accept": "application/json",
            "X-Places-Api-Version": config.PLACES_API_VERSION_HEADER,
        }
        return self.call("GET", url, headers=headers)

    def ip_geolocation(self) -> str:
        return self.call("GET", config.IP_GEOLOCATION_URL)

    # --- world-readable diagnostics ---

    def cache_ttl(self) -> float:
        return self.cache.ttl_seconds

    def request_stats(self) -> Tuple[int, int, int]:
        with self.state.lock:
            return self.state.stats.as_tuple()

    # --- admin-gated diagnostics and management ---

    def _require_admin(self, caller: Optional[str]) -> None:
        if not self.gate.is_allowed(caller, ADMIN_ONLY):
            raise AuthorizationError("Unauthorized: admin access required")

    def cache_contents(self, caller: Optional[str]) -> List[Tuple[str, str, float]]:
        self._require_admin(caller)
        return [(e.key, e.payload, e.stored_at) for e in self.cache.entries()]

    def cache_count(self, caller: Optional[str]) -> int:
        self._require_admin(caller)
        return self.cache.count()

    def cache_time_remaining(self, caller: Optional[str], key: str) -> float:
        self._require_admin(caller)
        return self.cache.time_remaining(key, self.clock())

    def cached_payload(self, caller: Optional[str], key: str) -> Optional[str]:
        self._require_admin(caller)
        return self.cache.get_fresh(key, self.clock())

    def error_log(self, caller: Optional[str]) -> List[Tuple[float, str]]:
        self._require_admin(caller)
        with self.state.lock:
            return self.state.error_log.entries()

    def error_log_count(self, caller: Optional[str]) -> int:
        self._require_admin(caller)
        with self.state.lock:
            return len(self.state.error_log)

    def clear_cache(self, caller: Optional[str], prefix: Optional[str] = None) -> int:
        self._require_admin(caller)
        removed = self.cache.clear(prefix)
        logger.info("Cleared %s cache entries (prefix=%r)", removed, prefix)
        return removed

    def set_place_index_key(self, caller: Optional[str], api_key: str) -> None:
        self._require_admin(caller)
        api_key = (api_key or "").strip()
        if not api_key:
            raise ValueError("API key must not be empty")
        with self.state.lock:
            self.state.place_index_key = api_key

    def clear_place_index_key(self, caller: Optional[str]) -> None:
        self._require_admin(caller)
        with self.state.lock:
            self.state.place_index_key = None

    def place_index_configured(self, caller: Optional[str]) -> bool:
        self._require_admin(caller)
        with self.state.lock:
            return bool(self.state.place_index_key)
