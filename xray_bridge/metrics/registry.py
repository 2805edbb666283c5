"""Explicitly owned aggregation state for exported gauges.

``BridgeMetrics`` wraps a private ``CollectorRegistry`` (no process-wide
default registry) holding every gauge family the bridge exports:

  {ns}_inbound_downlink_bytes_total{tag,server}
  {ns}_inbound_uplink_bytes_total{tag,server}
  {ns}_outbound_downlink_bytes_total{tag,server}
  {ns}_outbound_uplink_bytes_total{tag,server}
  {ns}_observatory_delay_milliseconds{tag,server}
  {ns}_server_up{server}
  {ns}_bridge_scrape_duration_seconds{server}
  {ns}_bridge_build_info{version}

Families are addressed by the short keys in ``METRIC_SPECS``. ``set`` and
``reset`` are individually thread-safe; ``batch()`` holds the lock across a
whole reset/refill/render sequence so a concurrent scrape never renders a
half-refilled registry.
"""
from __future__ import annotations

import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Gauge, generate_latest

from xray_bridge.version import get_version

INBOUND_DOWNLINK = "inbound_downlink"
INBOUND_UPLINK = "inbound_uplink"
OUTBOUND_DOWNLINK = "outbound_downlink"
OUTBOUND_UPLINK = "outbound_uplink"
OBSERVATORY_DELAY = "observatory_delay"
SERVER_UP = "server_up"
SCRAPE_DURATION = "scrape_duration"
BUILD_INFO = "build_info"


@dataclass(frozen=True)
class MetricSpec:
    name: str
    documentation: str
    labels: tuple[str, ...]


METRIC_SPECS: dict[str, MetricSpec] = {
    INBOUND_DOWNLINK: MetricSpec("inbound_downlink_bytes_total", "Downlink traffic of inbound, in bytes", ("tag", "server")),
    INBOUND_UPLINK: MetricSpec("inbound_uplink_bytes_total", "Uplink traffic of inbound, in bytes", ("tag", "server")),
    OUTBOUND_DOWNLINK: MetricSpec("outbound_downlink_bytes_total", "Downlink traffic of outbound, in bytes", ("tag", "server")),
    OUTBOUND_UPLINK: MetricSpec("outbound_uplink_bytes_total", "Uplink traffic of outbound, in bytes", ("tag", "server")),
    OBSERVATORY_DELAY: MetricSpec(
        "observatory_delay_milliseconds",
        "Observatory probe delay of outbound in milliseconds (negative means unreachable)",
        ("tag", "server"),
    ),
    SERVER_UP: MetricSpec("server_up", "Whether the last poll of the xray server succeeded (1) or failed (0)", ("server",)),
    SCRAPE_DURATION: MetricSpec("bridge_scrape_duration_seconds", "Wall time of the last poll of the xray server", ("server",)),
    BUILD_INFO: MetricSpec("bridge_build_info", "Bridge build information (value always 1)", ("version",)),
}

# Families whose label sets depend on what upstream reports; cleared every scrape.
PER_TAG_METRICS: tuple[str, ...] = (
    INBOUND_DOWNLINK,
    INBOUND_UPLINK,
    OUTBOUND_DOWNLINK,
    OUTBOUND_UPLINK,
    OBSERVATORY_DELAY,
)


class BridgeMetrics:
    """Gauge families registered in a registry owned by this object."""

    content_type = CONTENT_TYPE_LATEST

    def __init__(self, namespace: str = "xray", registry: CollectorRegistry | None = None) -> None:
        self.namespace = namespace
        self.registry = registry if registry is not None else CollectorRegistry()
        self._lock = threading.RLock()
        self._gauges: dict[str, Gauge] = {
            key: Gauge(f"{namespace}_{spec.name}", spec.documentation, list(spec.labels), registry=self.registry)
            for key, spec in METRIC_SPECS.items()
        }
        self._gauges[BUILD_INFO].labels(version=get_version()).set(1)

    def gauge(self, metric: str) -> Gauge:
        try:
            return self._gauges[metric]
        except KeyError:
            raise KeyError(f"unknown metric {metric!r}") from None

    def set(self, metric: str, labels: Mapping[str, str], value: float) -> None:
        with self._lock:
            self.gauge(metric).labels(**labels).set(value)

    def reset(self, metric: str) -> None:
        """Drop every label set of ``metric``."""
        with self._lock:
            self.gauge(metric).clear()

    def reset_per_tag(self) -> None:
        with self._lock:
            for metric in PER_TAG_METRICS:
                self._gauges[metric].clear()

    @contextmanager
    def batch(self) -> Iterator[BridgeMetrics]:
        with self._lock:
            yield self

    def render(self) -> bytes:
        with self._lock:
            return generate_latest(self.registry)


__all__ = [
    "BridgeMetrics",
    "METRIC_SPECS",
    "MetricSpec",
    "PER_TAG_METRICS",
    "INBOUND_DOWNLINK",
    "INBOUND_UPLINK",
    "OUTBOUND_DOWNLINK",
    "OUTBOUND_UPLINK",
    "OBSERVATORY_DELAY",
    "SERVER_UP",
    "SCRAPE_DURATION",
    "BUILD_INFO",
]
