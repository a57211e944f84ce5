"""Client-side retry orchestration with error classification and safe mode."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar

from . import config
from .errors import ErrorKind
from .notifications import Notifier

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Keyword fallback for errors that do not carry a structured kind. Order matters.
_KEYWORD_RULES = (
    (ErrorKind.AUTH, ("unauthorized", "forbidden", "permission denied", "not authenticated")),
    (ErrorKind.RATE_LIMITED, ("rate limit", "too many requests")),
    (ErrorKind.SERVICE_RECOVERING, ("service unavailable", "stopped", "trap", "restarting", "proxy_error")),
    (ErrorKind.REPLICATION, ("replication", "reject")),
    (ErrorKind.NETWORK, ("network", "fetch", "connection")),
    (ErrorKind.TIMEOUT, ("timeout", "timed out")),
)

TERMINAL_KINDS = frozenset({ErrorKind.AUTH, ErrorKind.RATE_LIMITED, ErrorKind.NOT_CONFIGURED, ErrorKind.INVALID_INPUT})
OUTAGE_KINDS = frozenset({ErrorKind.SERVICE_RECOVERING, ErrorKind.REPLICATION, ErrorKind.TIMEOUT})

_MESSAGES = {
    ErrorKind.AUTH: "This feature requires signing in with sufficient access.",
    ErrorKind.SERVICE_RECOVERING: "The service is temporarily restarting. Retrying automatically...",
    ErrorKind.REPLICATION: "Service is synchronizing. Retrying automatically...",
    ErrorKind.NETWORK: "Network connection issue detected. Please check your internet connection.",
    ErrorKind.TIMEOUT: "Request timed out. Retrying...",
    ErrorKind.RATE_LIMITED: "Too many requests. Please wait a moment before trying again.",
    ErrorKind.NOT_CONFIGURED: "This data source is not configured.",
    ErrorKind.INVALID_INPUT: "The request was invalid.",
    ErrorKind.UNKNOWN: "Unable to search for restaurants at this time. Please try again.",
}


def classify_error(error: BaseException) -> ErrorKind:
    kind = getattr(error, "kind", None)
    if isinstance(kind, ErrorKind) and kind is not ErrorKind.UNKNOWN:
        return kind
    message = str(error).lower()
    for rule_kind, needles in _KEYWORD_RULES:
        if any(n in message for n in needles):
            return rule_kind
    return ErrorKind.UNKNOWN


def user_message(kind: ErrorKind, attempt: int = 0) -> str:
    if kind is ErrorKind.SERVICE_RECOVERING and attempt > 0:
        return (
            f"Service is recovering (attempt {attempt + 1}/{config.MAX_AUTO_RETRIES + 1}). "
            "Please wait..."
        )
    return _MESSAGES[kind]


@dataclass
class RetryOutcome(Generic[T]):
    ok: bool
    value: Optional[T] = None
    error: Optional[BaseException] = None
    kind: Optional[ErrorKind] = None
    attempts: int = 0
    message: Optional[str] = None


class ClientRetryOrchestrator:
    def __init__(
        self,
        notifier: Optional[Notifier] = None,
        max_auto_retries: int = config.MAX_AUTO_RETRIES,
        retry_delay_s: float = config.RETRY_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.notifier = notifier or Notifier()
        self.max_auto_retries = max(0, int(max_auto_retries))
        self.retry_delay_s = float(retry_delay_s)
        self.sleep = sleep
        self.safe_mode = False
        self.is_retrying = False
        self.retry_count = 0

    def exit_safe_mode(self) -> None:
        self.safe_mode = False

    def execute(self, operation: Callable[[], T], name: str = "operation") -> RetryOutcome[T]:
        last_error: Optional[BaseException] = None
        last_kind = ErrorKind.UNKNOWN
        attempts = 0
        total = self.max_auto_retries + 1

        for attempt in range(total):
            if attempt > 0:
                self.is_retrying = True
                self.retry_count = attempt
                self.sleep(self.retry_delay_s * attempt)
            attempts += 1
            try:
                value = operation()
            except Exception as exc:
                last_error = exc
                last_kind = classify_error(exc)
                logger.warning(
                    "%s failed (attempt %s/%s, kind=%s): %s",
                    name,
                    attempt + 1,
                    total,
                    last_kind.value,
                    exc,
                )
                if last_kind in TERMINAL_KINDS:
                    break
                if attempt < self.max_auto_retries:
                    delay = self.retry_delay_s * (attempt + 1)
                    self.notifier.info(
                        f"{user_message(last_kind, attempt)} "
                        f"(attempt {attempt + 2}/{total} in {delay:g}s)"
                    )
                continue

            if attempt > 0:
                self.notifier.success("Connection restored! Search completed successfully.")
            self.safe_mode = False
            self.is_retrying = False
            self.retry_count = 0
            return RetryOutcome(ok=True, value=value, attempts=attempts)

        self.is_retrying = False
        self.retry_count = 0
        message = user_message(last_kind, attempts - 1)
        if last_kind in OUTAGE_KINDS:
            self.safe_mode = True
            self.notifier.error(
                "Service is temporarily unavailable. You can still search by city name "
                "while we recover."
            )
        elif last_kind is not ErrorKind.NOT_CONFIGURED:
            self.notifier.error(message)
        return RetryOutcome(
            ok=False, error=last_error, kind=last_kind, attempts=attempts, message=message
        )
