"""Client for a remote proxy_server.py instance.

Exposes the same surface as ResilienceProxy (proxy_get, proxy_post,
place_index_search, ip_geolocation) so providers do not care whether the
proxy runs in-process or behind HTTP.
"""
from __future__ import annotations

import logging
from typing import Dict, Optional

import requests

from . import config
from .errors import AuthorizationError, UpstreamError

logger = logging.getLogger(__name__)


class ProxyHttpClient:
    def __init__(
        self,
        base_url: str,
        timeout: int = config.HTTP_TIMEOUT_SECONDS,
        caller_token: Optional[str] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.caller_token = caller_token
        self.session = requests.Session()

    def _headers(self) -> Dict[str, str]:
        headers = {"User-Agent": config.HTTP_USER_AGENT}
        if self.caller_token:
            headers["X-Caller-Token"] = self.caller_token
        return headers

    def _send(self, method: str, path: str, params: Optional[Dict[str, str]] = None, body: Optional[str] = None) -> str:
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.request(
                method,
                url,
                params=params,
                data=body.encode("utf-8") if body is not None else None,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.Timeout as exc:
            raise UpstreamError(f"proxy request timed out: {exc}", status=408) from exc
        except requests.RequestException as exc:
            raise UpstreamError(f"network error reaching proxy: {exc}") from exc

        if resp.status_code in (401, 403):
            raise AuthorizationError(f"Unauthorized: proxy answered HTTP {resp.status_code}")
        if resp.status_code >= 400:
            raise UpstreamError(
                f"proxy answered HTTP {resp.status_code}: {resp.text[:200]}",
                status=resp.status_code,
            )
        # Error markers arrive with HTTP 200; callers check the body.
        return resp.text

    def proxy_get(self, url: str) -> str:
        return self._send("GET", "/api/proxy", params={"url": url})

    def proxy_post(self, url: str, body: str) -> str:
        return self._send("POST", "/api/proxy", params={"url": url}, body=body)

    def place_index_search(self, url: str) -> str:
        return self._send("GET", "/api/places", params={"url": url})

    def ip_geolocation(self) -> str:
        return self._send("GET", "/api/ip-geolocation")
