"""Config loading & normalization entrypoint.

Responsibilities:
  * Load the raw JSON file.
  * Validate it against the embedded schema (validation module).
  * Apply environment overrides.
  * Produce an immutable BridgeConfig.

Environment overrides:
  XRAY_BRIDGE_LISTEN_ADDR   -> replaces ``listen_addr``
  XRAY_BRIDGE_TIMEOUT       -> replaces ``timeout_seconds``

Public API:
  load_config(path) -> BridgeConfig
  parse_listen_addr(addr) -> (host, port)
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any

from xray_bridge.domain.models import Instance
from xray_bridge.utils.env_flags import env_float, env_str
from xray_bridge.utils.exceptions import ConfigError

from .validation import validate_config

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 3.0
DEFAULT_DELAY_THRESHOLD_MS = 10000.0
DEFAULT_DELAY_SENTINEL = -1.0
DEFAULT_NAMESPACE = "xray"
DEFAULT_MAX_WORKERS = 8
DEFAULT_HTTP_PORT = 80


@dataclass(frozen=True)
class BridgeConfig:
    listen_addr: str
    instances: tuple[Instance, ...]
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    delay_threshold_ms: float = DEFAULT_DELAY_THRESHOLD_MS
    delay_sentinel: float = DEFAULT_DELAY_SENTINEL
    # None means every reported tag is exported
    inbound_tags: frozenset[str] | None = None
    outbound_tags: frozenset[str] | None = None
    namespace: str = DEFAULT_NAMESPACE
    parallel: bool = True
    max_workers: int = DEFAULT_MAX_WORKERS
    listen_host: str = field(init=False)
    listen_port: int = field(init=False)

    def __post_init__(self) -> None:
        host, port = parse_listen_addr(self.listen_addr)
        object.__setattr__(self, 'listen_host', host)
        object.__setattr__(self, 'listen_port', port)


def parse_listen_addr(addr: str) -> tuple[str, int]:
    """Split a ``host:port`` listen address.

    ``":9550"`` binds all interfaces; ``""`` binds all interfaces on port 80.
    IPv6 literals may be bracketed (``"[::1]:9550"``).
    """
    if not addr:
        return "0.0.0.0", DEFAULT_HTTP_PORT
    host, sep, port_s = addr.rpartition(':')
    if not sep:
        raise ConfigError(f"listen_addr {addr!r} missing ':port'")
    host = host.strip('[]') or "0.0.0.0"
    try:
        port = int(port_s)
    except ValueError:
        raise ConfigError(f"listen_addr {addr!r} has non-numeric port {port_s!r}") from None
    if not 0 <= port <= 65535:
        raise ConfigError(f"listen_addr {addr!r} port out of range")
    return host, port


def _read_json(path: str | os.PathLike[str]) -> Any:
    try:
        with open(path, encoding='utf-8') as fh:
            return json.load(fh)
    except OSError as e:
        raise ConfigError(f"cannot read config {os.fspath(path)!r}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"malformed config {os.fspath(path)!r}: {e}") from e


def _tag_set(value: list[str] | None) -> frozenset[str] | None:
    return None if value is None else frozenset(value)


def _apply_env_overrides(raw: dict[str, Any]) -> dict[str, Any]:
    merged = dict(raw)
    addr = env_str('XRAY_BRIDGE_LISTEN_ADDR')
    if addr is not None:
        logger.info("listen_addr overridden from environment: %s", addr)
        merged['listen_addr'] = addr
    try:
        timeout = env_float('XRAY_BRIDGE_TIMEOUT')
    except ValueError as e:
        raise ConfigError(str(e)) from e
    if timeout is not None:
        if timeout <= 0:
            raise ConfigError(f"XRAY_BRIDGE_TIMEOUT must be positive, got {timeout}")
        merged['timeout_seconds'] = timeout
    return merged


def build_config(raw: Any) -> BridgeConfig:
    """Validate an already-decoded document and build a BridgeConfig."""
    cfg = _apply_env_overrides(validate_config(raw))
    instances = tuple(
        Instance(server=item.get('server', ''), host=item.get('host', ''))
        for item in cfg.get('instances') or []
    )
    servers = [i.server for i in instances]
    dupes = sorted({s for s in servers if servers.count(s) > 1})
    if dupes:
        # Duplicate names collapse into one label set; later instances win.
        logger.warning("Duplicate server names in config: %s", dupes)
    return BridgeConfig(
        listen_addr=cfg.get('listen_addr', ''),
        instances=instances,
        timeout_seconds=float(cfg.get('timeout_seconds', DEFAULT_TIMEOUT_SECONDS)),
        delay_threshold_ms=float(cfg.get('delay_threshold_ms', DEFAULT_DELAY_THRESHOLD_MS)),
        delay_sentinel=float(cfg.get('delay_sentinel', DEFAULT_DELAY_SENTINEL)),
        inbound_tags=_tag_set(cfg.get('inbound_tags')),
        outbound_tags=_tag_set(cfg.get('outbound_tags')),
        namespace=cfg.get('namespace', DEFAULT_NAMESPACE),
        parallel=bool(cfg.get('parallel', True)),
        max_workers=int(cfg.get('max_workers', DEFAULT_MAX_WORKERS)),
    )


def load_config(path: str | os.PathLike[str]) -> BridgeConfig:
    """Load, validate and normalize the bridge config file.

    Raises ConfigError for any missing, unreadable or malformed file.
    """
    config = build_config(_read_json(path))
    logger.info(
        "Loaded configuration from %s (%d instances, listen %s:%s)",
        os.fspath(path), len(config.instances), config.listen_host, config.listen_port,
    )
    return config


__all__ = ["BridgeConfig", "build_config", "load_config", "parse_listen_addr"]
