"""Bridge exception hierarchy.

Two failure classes matter at runtime: configuration problems abort startup,
instance fetch problems are recovered per instance during a scrape.
"""
from __future__ import annotations


class BridgeException(Exception):
    """Base class for all bridge exceptions."""


class ConfigError(BridgeException):
    """Configuration file missing, unreadable, malformed or schema-invalid."""


class InstanceFetchError(BridgeException):
    """Polling one upstream instance failed (network, status, payload)."""

    def __init__(self, server: str, message: str) -> None:
        super().__init__(f"fetch stats from {server!r} failed: {message}")
        self.server = server
        self.reason = message


__all__ = [
    "BridgeException",
    "ConfigError",
    "InstanceFetchError",
]
