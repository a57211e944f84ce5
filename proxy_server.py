"""Resilience proxy server.

Exposes a ResilienceProxy over HTTP so clients never reach upstream
providers directly. Upstream payloads (and error markers) are returned as
plain text with status 200; diagnostics and admin endpoints answer JSON.
Admin identity is read from the X-Caller-Token header.
"""
from __future__ import annotations

import json
import logging
import os
import sys
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Dict, Optional, Type
from urllib.parse import parse_qs, urlparse

from halal_finder import config
from halal_finder.cache import Cache
from halal_finder.errors import AuthorizationError
from halal_finder.proxy import ResilienceProxy, TokenAccessGate, is_place_index_url

logger = logging.getLogger(__name__)

CALLER_HEADER = "X-Caller-Token"


class ProxyHandler(BaseHTTPRequestHandler):
    proxy: ResilienceProxy

    def do_GET(self) -> None:
        parsed = urlparse(self.path)
        params = parse_qs(parsed.query)
        route = parsed.path
        try:
            if route == "/api/proxy":
                self._handle_upstream(lambda url: self.proxy.proxy_get(url), params)
            elif route == "/api/places":
                url = self._required_param(params, "url")
                if url is None:
                    return
                if not is_place_index_url(url):
                    self._send_json({"error": "Only the place index search endpoint can be queried."}, 400)
                    return
                self._send_text(self.proxy.place_index_search(url))
            elif route == "/api/ip-geolocation":
                self._send_text(self.proxy.ip_geolocation())
            elif route == "/api/cache/ttl":
                self._send_json({"ttl_seconds": self.proxy.cache_ttl()})
            elif route == "/api/stats":
                total, succeeded, failed = self.proxy.request_stats()
                self._send_json({"total": total, "succeeded": succeeded, "failed": failed})
            elif route == "/api/admin/cache":
                entries = self.proxy.cache_contents(self._caller())
                self._send_json(
                    {"entries": [{"key": k, "payload": p, "stored_at": t} for k, p, t in entries]}
                )
            elif route == "/api/admin/cache/count":
                self._send_json({"count": self.proxy.cache_count(self._caller())})
            elif route == "/api/admin/cache/remaining":
                key = self._required_param(params, "key")
                if key is not None:
                    self._send_json({"remaining_seconds": self.proxy.cache_time_remaining(self._caller(), key)})
            elif route == "/api/admin/cache/entry":
                key = self._required_param(params, "key")
                if key is not None:
                    self._send_json({"payload": self.proxy.cached_payload(self._caller(), key)})
            elif route == "/api/admin/errors":
                entries = self.proxy.error_log(self._caller())
                self._send_json({"errors": [{"timestamp": t, "message": m} for t, m in entries]})
            elif route == "/api/admin/errors/count":
                self._send_json({"count": self.proxy.error_log_count(self._caller())})
            elif route == "/api/admin/credential/status":
                self._send_json({"configured": self.proxy.place_index_configured(self._caller())})
            else:
                self._send_json({"error": "Not found."}, 404)
        except AuthorizationError as exc:
            self._send_json({"error": str(exc)}, 403)

    def do_POST(self) -> None:
        parsed = urlparse(self.path)
        params = parse_qs(parsed.query)
        route = parsed.path
        try:
            if route == "/api/proxy":
                body = self._read_body()
                self._handle_upstream(lambda url: self.proxy.proxy_post(url, body), params)
            elif route == "/api/admin/cache/clear":
                payload = self._read_json_body()
                prefix = payload.get("prefix") or None
                self._send_json({"removed": self.proxy.clear_cache(self._caller(), prefix)})
            elif route == "/api/admin/credential":
                payload = self._read_json_body()
                try:
                    self.proxy.set_place_index_key(self._caller(), payload.get("api_key") or "")
                except ValueError as exc:
                    self._send_json({"error": str(exc)}, 400)
                    return
                self._send_json({"ok": True})
            elif route == "/api/admin/credential/clear":
                self.proxy.clear_place_index_key(self._caller())
                self._send_json({"ok": True})
            else:
                self._send_json({"error": "Not found."}, 404)
        except AuthorizationError as exc:
            self._send_json({"error": str(exc)}, 403)

    def _caller(self) -> Optional[str]:
        return (self.headers.get(CALLER_HEADER) or "").strip() or None

    def _required_param(self, params: Dict[str, Any], name: str) -> Optional[str]:
        value = (params.get(name) or [""])[0].strip()
        if not value:
            self._send_json({"error": f"Query parameter '{name}' is required."}, 400)
            return None
        return value

    def _handle_upstream(self, call: Any, params: Dict[str, Any]) -> None:
        url = self._required_param(params, "url")
        if url is None:
            return
        if not url.startswith(("http://", "https://")):
            self._send_json({"error": "Only http(s) URLs can be proxied."}, 400)
            return
        self._send_text(call(url))

    def _read_body(self) -> str:
        length = int(self.headers.get("Content-Length", 0))
        raw = self.rfile.read(length) if length else b""
        return raw.decode("utf-8")

    def _read_json_body(self) -> Dict[str, Any]:
        raw = self._read_body()
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    def _send_text(self, text: str, status: int = 200) -> None:
        body = text.encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "text/plain; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _send_json(self, data: Dict[str, Any], status: int = 200) -> None:
        body = json.dumps(data).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, fmt: str, *args: Any) -> None:
        logger.info("%s %s", self.address_string(), fmt % args)


def make_handler(proxy: ResilienceProxy) -> Type[ProxyHandler]:
    return type("BoundProxyHandler", (ProxyHandler,), {"proxy": proxy})


def build_proxy() -> ResilienceProxy:
    proxy = ResilienceProxy(
        cache=Cache(config.CACHE_DB_PATH, ttl_seconds=config.CACHE_TTL_SECONDS),
        gate=TokenAccessGate(config.env_admin_tokens()),
    )
    api_key = (os.environ.get("FOURSQUARE_API_KEY") or "").strip()
    if api_key:
        proxy.state.place_index_key = api_key
    return proxy


def make_server(proxy: ResilienceProxy, port: int = config.PROXY_SERVER_PORT, host: str = "") -> ThreadingHTTPServer:
    return ThreadingHTTPServer((host, port), make_handler(proxy))


def main() -> int:
    from run import load_env

    load_env()
    config.load_search_config()
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    port = int(sys.argv[1]) if len(sys.argv) > 1 else config.PROXY_SERVER_PORT

    proxy = build_proxy()
    if not config.env_admin_tokens():
        logger.warning("ADMIN_TOKENS is empty; admin endpoints will reject every caller")
    server = make_server(proxy, port)
    print(f"Resilience proxy running at http://localhost:{port}")
    print("Press Ctrl+C to stop.\n")

    try:
        server.serve_forever()
    except KeyboardInterrupt:
        print("\nShutting down.")
    server.server_close()
    proxy.cache.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
