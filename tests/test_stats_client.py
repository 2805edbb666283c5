import time

import pytest

from tests._helpers import find_free_port
from xray_bridge.collectors.stats_client import fetch_stats, new_session
from xray_bridge.domain.models import Instance, TrafficStat
from xray_bridge.utils.exceptions import InstanceFetchError


def test_fetch_stats_decodes_payload(upstream):
    stub = upstream()
    res = fetch_stats(Instance("hk-1", stub.base_url), timeout=2)
    assert res.inbound["vmess0"] == TrafficStat(100.0, 50.0)
    assert stub.hits == 1


def test_fetch_stats_with_session(upstream):
    stub = upstream()
    with new_session() as session:
        fetch_stats(Instance("hk-1", stub.base_url + "/"), 2, session)
        fetch_stats(Instance("hk-1", stub.base_url), 2, session)
    assert stub.hits == 2


def test_non_success_status_is_error(upstream):
    stub = upstream()
    stub.status = 503
    with pytest.raises(InstanceFetchError, match="HTTP 503") as exc:
        fetch_stats(Instance("hk-1", stub.base_url), timeout=2)
    assert exc.value.server == "hk-1"


def test_malformed_json_is_error(upstream):
    stub = upstream()
    stub.payload = b'{"stats": {'
    with pytest.raises(InstanceFetchError, match="decode"):
        fetch_stats(Instance("hk-1", stub.base_url), timeout=2)


def test_wrong_shape_is_error(upstream):
    stub = upstream()
    stub.payload = {"stats": {"inbound": []}}
    with pytest.raises(InstanceFetchError, match="unexpected payload"):
        fetch_stats(Instance("hk-1", stub.base_url), timeout=2)


def test_connection_refused_is_error():
    port = find_free_port()
    with pytest.raises(InstanceFetchError, match="hk-1"):
        fetch_stats(Instance("hk-1", f"http://127.0.0.1:{port}"), timeout=1)


def test_invalid_host_is_error():
    with pytest.raises(InstanceFetchError):
        fetch_stats(Instance("empty", ""), timeout=1)


def test_timeout_is_bounded(upstream):
    stub = upstream()
    stub.delay = 2.0
    t0 = time.monotonic()
    with pytest.raises(InstanceFetchError):
        fetch_stats(Instance("slow", stub.base_url), timeout=0.3)
    assert time.monotonic() - t0 < 1.5


def test_trickled_body_hits_the_deadline(upstream):
    stub = upstream()
    stub.drip_interval = 0.05  # well under the per-read timeout; full body takes several seconds
    t0 = time.monotonic()
    with pytest.raises(InstanceFetchError, match="timeout after 0.5s") as exc:
        fetch_stats(Instance("drip", stub.base_url), timeout=0.5)
    assert time.monotonic() - t0 < 1.5
    assert exc.value.server == "drip"


def test_slow_but_complete_body_within_deadline(upstream):
    stub = upstream()
    stub.drip_bytes = 64
    stub.drip_interval = 0.01
    res = fetch_stats(Instance("hk-1", stub.base_url), timeout=3)
    assert res.outbound["direct"] == TrafficStat(300.0, 30.0)


@pytest.mark.parametrize("constant", ["NaN", "Infinity", "-Infinity"])
def test_non_finite_json_constants_are_rejected(upstream, constant):
    stub = upstream()
    stub.payload = ('{"observatory": {"a": {"delay": %s, "outbound_tag": "a"}}}' % constant).encode()
    with pytest.raises(InstanceFetchError, match="invalid JSON constant"):
        fetch_stats(Instance("hk-1", stub.base_url), timeout=2)
