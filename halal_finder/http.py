"""HTTP transport for upstream calls and proxy request counters."""
from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import requests

from . import config
from .errors import UpstreamError

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = (429, 500, 502, 503, 504)


@dataclass
class RequestStats:
    total: int = 0
    succeeded: int = 0
    failed: int = 0

    def inc_success(self) -> None:
        self.total += 1
        self.succeeded += 1

    def inc_failure(self) -> None:
        self.total += 1
        self.failed += 1

    def as_tuple(self) -> Tuple[int, int, int]:
        return (self.total, self.succeeded, self.failed)


class HttpClient:
    """One upstream attempt per call; retrying is the caller's decision."""

    def __init__(
        self,
        timeout: int = config.HTTP_TIMEOUT_SECONDS,
        backoff_base: float = config.HTTP_BACKOFF_BASE,
        backoff_max: float = config.HTTP_BACKOFF_MAX,
        user_agent: str = config.HTTP_USER_AGENT,
    ) -> None:
        self.timeout = timeout
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.session = requests.Session()
        self.session.headers.update({"User-Agent": user_agent})

    def request_text(
        self,
        method: str,
        url: str,
        body: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> str:
        method = method.upper()
        if method not in ("GET", "POST"):
            raise UpstreamError(f"unsupported method {method} for {url}", status=405)
        try:
            if method == "GET":
                resp = self.session.get(url, headers=headers, timeout=self.timeout)
            else:
                resp = self.session.post(
                    url,
                    data=(body or "").encode("utf-8"),
                    headers=headers,
                    timeout=self.timeout,
                )
        except requests.Timeout as exc:
            raise UpstreamError(f"timeout calling {url}: {exc}", status=408) from exc
        except requests.RequestException as exc:
            raise UpstreamError(f"network error calling {url}: {exc}") from exc

        status = resp.status_code
        if 200 <= status < 300:
            return resp.text

        if status in RETRYABLE_STATUSES:
            logger.warning("HTTP %s from %s", status, url)
        else:
            logger.error("HTTP %s from %s", status, url)
        raise UpstreamError(
            f"HTTP {status} from {url}", status=status, retry_after=self._retry_after(resp)
        )

    def backoff_delay(self, attempt: int) -> float:
        base = min(self.backoff_base * (2 ** (attempt - 1)), self.backoff_max)
        jitter = random.uniform(0, self.backoff_base)
        return base + jitter

    def _retry_after(self, resp: requests.Response) -> Optional[float]:
        retry_after = resp.headers.get("Retry-After")
        if not retry_after:
            return None
        try:
            delay = float(retry_after)
        except ValueError:
            return None
        return max(0.0, min(delay, self.backoff_max))
