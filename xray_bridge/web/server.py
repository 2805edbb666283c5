"""HTTP listener exposing the scrape endpoint using stdlib only.

Endpoints:
 - /metrics           -> runs one scrape cycle, returns text exposition (200)
 - /health/liveness   -> always 200 if process alive
 - anything else      -> 404

Per-instance failures are reflected in ``*_server_up`` gauges, never in the
HTTP status; only an unexpected error inside the bridge itself yields 500.
"""
from __future__ import annotations

import json
import logging
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any
from urllib.parse import urlsplit

from xray_bridge.collectors.orchestrator import ScrapeOrchestrator
from xray_bridge.utils import log_context as _logctx
from xray_bridge.version import get_version

logger = logging.getLogger(__name__)


class BridgeHTTPServer(ThreadingHTTPServer):
    daemon_threads = True
    allow_reuse_address = True

    def __init__(self, address: tuple[str, int], orchestrator: ScrapeOrchestrator) -> None:
        super().__init__(address, _BridgeHandler)
        self.orchestrator = orchestrator


class _BridgeHandler(BaseHTTPRequestHandler):
    server_version = f"XrayBridge/{get_version()}"
    server: BridgeHTTPServer

    # Clients (collectors with short scrape timeouts) may hang up mid-write.
    _BENIGN_ERRORS = (BrokenPipeError, ConnectionResetError, TimeoutError)

    def handle(self) -> None:
        try:
            super().handle()
        except self._BENIGN_ERRORS as e:
            logger.debug("http: client went away: %s", e)

    def _send(self, code: int, body: bytes, ctype: str) -> None:
        self.send_response(code)
        self.send_header("Content-Type", ctype)
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Cache-Control", "no-store")
        self.end_headers()
        if self.command != "HEAD":
            self.wfile.write(body)

    def _send_json(self, code: int, payload: dict[str, Any]) -> None:
        self._send(code, json.dumps(payload).encode("utf-8"), "application/json")

    def log_message(self, format: str, *args: Any) -> None:  # noqa: A002 - BaseHTTPRequestHandler API
        logger.debug("http: %s - %s", self.address_string(), format % args)

    def do_GET(self) -> None:  # noqa: N802 - stdlib API
        path = urlsplit(self.path).path.rstrip("/") or "/"
        if path == "/metrics":
            orchestrator = self.server.orchestrator
            try:
                with _logctx.push_context(component="web"):
                    body = orchestrator.handle_scrape_request()
            except Exception:
                logger.exception("scrape handling failed")
                self._send_json(500, {"error": "internal error"})
                return
            self._send(200, body, orchestrator.metrics.content_type)
            return
        if path == "/health/liveness":
            self._send_json(200, {"status": "alive"})
            return
        self._send_json(404, {"error": "not found"})

    do_HEAD = do_GET  # noqa: N815


def make_server(host: str, port: int, orchestrator: ScrapeOrchestrator) -> BridgeHTTPServer:
    return BridgeHTTPServer((host, port), orchestrator)


def serve_in_thread(server: BridgeHTTPServer) -> threading.Thread:
    """Run ``server.serve_forever`` on a daemon thread (tests and embedding)."""
    t = threading.Thread(target=server.serve_forever, kwargs={"poll_interval": 0.2},
                         name="xray-bridge-http", daemon=True)
    t.start()
    return t


__all__ = ["BridgeHTTPServer", "make_server", "serve_in_thread"]
