"""Error types shared by the proxy, providers and client orchestration."""
from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    AUTH = "auth"
    SERVICE_RECOVERING = "service_recovering"
    REPLICATION = "replication"
    NETWORK = "network"
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    NOT_CONFIGURED = "not_configured"
    INVALID_INPUT = "invalid_input"
    UNKNOWN = "unknown"


class HalalFinderError(RuntimeError):
    kind: ErrorKind = ErrorKind.UNKNOWN


class UpstreamError(HalalFinderError):
    """A single upstream HTTP attempt failed."""

    def __init__(
        self, message: str, status: Optional[int] = None, retry_after: Optional[float] = None
    ) -> None:
        super().__init__(message)
        self.status = status
        self.retry_after = retry_after
        self.kind = _kind_for_status(status)


class ProxyExhaustedError(HalalFinderError):
    """The proxy answered with its error marker after spending its retries."""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.SERVICE_RECOVERING) -> None:
        super().__init__(message)
        self.kind = kind


class SourceNotConfiguredError(HalalFinderError):
    kind = ErrorKind.NOT_CONFIGURED


class AuthorizationError(HalalFinderError):
    kind = ErrorKind.AUTH


class InvalidInputError(HalalFinderError):
    kind = ErrorKind.INVALID_INPUT


class GeolocationError(HalalFinderError):
    PERMISSION_DENIED = 1
    POSITION_UNAVAILABLE = 2
    TIMEOUT = 3

    def __init__(self, code: int, message: str = "") -> None:
        super().__init__(message or _GEO_MESSAGES.get(code, "Failed to get location"))
        self.code = code


_GEO_MESSAGES = {
    GeolocationError.PERMISSION_DENIED: "Location permission denied",
    GeolocationError.POSITION_UNAVAILABLE: "Location information is unavailable",
    GeolocationError.TIMEOUT: "Location request timed out",
}


def _kind_for_status(status: Optional[int]) -> ErrorKind:
    if status is None:
        return ErrorKind.NETWORK
    if status in (401, 403):
        return ErrorKind.AUTH
    if status == 429:
        return ErrorKind.RATE_LIMITED
    if status in (408, 504):
        return ErrorKind.TIMEOUT
    if status >= 500:
        return ErrorKind.SERVICE_RECOVERING
    if 400 <= status < 500:
        return ErrorKind.INVALID_INPUT
    return ErrorKind.UNKNOWN
