"""Gauge registry owned by the bridge (prometheus_client based)."""

from .registry import BridgeMetrics

__all__ = ["BridgeMetrics"]
