"""xray-metrics-bridge: Prometheus bridge for Xray ``/debug/vars`` statistics."""

from .version import __version__, get_version

__all__ = ["__version__", "get_version"]
