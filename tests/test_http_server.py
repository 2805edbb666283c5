import json
import urllib.error
import urllib.request

import pytest

from tests._helpers import value
from xray_bridge.collectors.orchestrator import ScrapeOrchestrator
from xray_bridge.config import build_config
from xray_bridge.web.server import make_server, serve_in_thread


@pytest.fixture()
def bridge(upstream, metrics):
    good, bad = upstream(), upstream()
    bad.status = 502
    cfg = build_config({
        "listen_addr": "127.0.0.1:0",
        "instances": [
            {"server": "good", "host": good.base_url},
            {"server": "bad", "host": bad.base_url},
        ],
        "timeout_seconds": 1,
    })
    orch = ScrapeOrchestrator(cfg, metrics)
    httpd = make_server("127.0.0.1", 0, orch)
    serve_in_thread(httpd)
    yield f"http://127.0.0.1:{httpd.server_address[1]}", orch
    httpd.shutdown()
    httpd.server_close()
    orch.close()


def _get(url):
    with urllib.request.urlopen(url, timeout=5) as resp:  # noqa: S310 - test-only local URL
        return resp.status, resp.headers.get("Content-Type"), resp.read()


def test_metrics_endpoint_returns_200_despite_failed_instance(bridge):
    base, _ = bridge
    status, ctype, body = _get(base + "/metrics")
    assert status == 200
    assert ctype.startswith("text/plain")
    assert value(body, "xray_server_up", server="good") == 1.0
    assert value(body, "xray_server_up", server="bad") == 0.0
    assert value(body, "xray_inbound_downlink_bytes_total", tag="vmess0", server="good") == 100.0


def test_each_request_triggers_a_scrape(bridge):
    base, orch = bridge
    _get(base + "/metrics")
    _get(base + "/metrics/")
    assert next(orch._scrape_seq) == 3


def test_liveness(bridge):
    base, _ = bridge
    status, _, body = _get(base + "/health/liveness")
    assert status == 200
    assert json.loads(body) == {"status": "alive"}


def test_unknown_path_is_404(bridge):
    base, _ = bridge
    with pytest.raises(urllib.error.HTTPError) as exc:
        _get(base + "/debug/vars")
    assert exc.value.code == 404


def test_internal_error_is_500(bridge, monkeypatch):
    base, orch = bridge

    def boom():
        raise RuntimeError("registry exploded")

    monkeypatch.setattr(orch, "handle_scrape_request", boom)
    with pytest.raises(urllib.error.HTTPError) as exc:
        _get(base + "/metrics")
    assert exc.value.code == 500
