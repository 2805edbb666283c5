"""Pytest configuration & shared fixtures.

Responsibilities:
1. Ensure project root on sys.path.
2. Provide stub upstream Xray servers serving ``/debug/vars`` on free ports.
3. Provide isolated BridgeMetrics instances (private CollectorRegistry).
"""
from __future__ import annotations

import json
import sys
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from tests._helpers import sample_payload  # noqa: E402
from xray_bridge.metrics.registry import BridgeMetrics  # noqa: E402


class StubUpstream:
    """Mutable stub state; tests change it between scrapes."""

    def __init__(self) -> None:
        self.payload: Any = sample_payload()
        self.status = 200
        self.delay = 0.0
        # headers go out at once; the body follows drip_bytes at a time
        self.drip_interval = 0.0
        self.drip_bytes = 1
        self.hits = 0
        self.server: ThreadingHTTPServer | None = None
        self.base_url = ''

    def body(self) -> bytes:
        if isinstance(self.payload, bytes):
            return self.payload
        return json.dumps(self.payload).encode('utf-8')


class _StubHandler(BaseHTTPRequestHandler):
    def log_message(self, format, *args):  # silence default noisy logging
        return

    def do_GET(self):  # noqa: N802
        stub: StubUpstream = self.server.stub  # type: ignore[attr-defined]
        stub.hits += 1
        if stub.delay:
            time.sleep(stub.delay)
        if self.path != '/debug/vars':
            self.send_response(404)
            self.end_headers()
            return
        body = stub.body()
        try:
            self.send_response(stub.status)
            self.send_header('Content-Type', 'application/json')
            self.send_header('Content-Length', str(len(body)))
            self.end_headers()
            if not stub.drip_interval:
                self.wfile.write(body)
                return
            self.wfile.flush()
            for i in range(0, len(body), stub.drip_bytes):
                self.wfile.write(body[i:i + stub.drip_bytes])
                self.wfile.flush()
                time.sleep(stub.drip_interval)
        except (BrokenPipeError, ConnectionResetError):
            # client already timed out
            pass


@pytest.fixture()
def upstream():
    """Factory starting stub upstream servers; all are shut down at teardown.

    Usage:
        def test_x(upstream):
            stub = upstream()
            stub.payload = {...}
            Instance(server='a', host=stub.base_url)
    """
    started: list[StubUpstream] = []

    def _start() -> StubUpstream:
        stub = StubUpstream()
        httpd = ThreadingHTTPServer(('127.0.0.1', 0), _StubHandler)
        httpd.daemon_threads = True
        httpd.stub = stub  # type: ignore[attr-defined]
        stub.server = httpd
        stub.base_url = f"http://127.0.0.1:{httpd.server_address[1]}"
        threading.Thread(target=httpd.serve_forever, kwargs={'poll_interval': 0.05}, daemon=True).start()
        started.append(stub)
        return stub

    yield _start
    for stub in started:
        if stub.server is not None:
            stub.server.shutdown()
            stub.server.server_close()


@pytest.fixture()
def metrics():
    return BridgeMetrics(namespace='xray')


@pytest.fixture()
def write_config(tmp_path):
    """Write a config dict (or raw text) to a temp file and return its path."""

    def _write(content: Any, name: str = 'config.json') -> Path:
        path = tmp_path / name
        if isinstance(content, str):
            path.write_text(content, encoding='utf-8')
        else:
            path.write_text(json.dumps(content), encoding='utf-8')
        return path

    return _write
