"""Configuration package: file loading, schema validation, env overrides."""

from .loader import BridgeConfig, build_config, load_config, parse_listen_addr
from .validation import CONFIG_SCHEMA, validate_config

__all__ = [
    "BridgeConfig",
    "CONFIG_SCHEMA",
    "build_config",
    "load_config",
    "parse_listen_addr",
    "validate_config",
]
