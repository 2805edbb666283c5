"""Configuration validation utilities.

Validates a loaded bridge config object against an embedded draft-07 schema
with ``jsonschema``. Only types are enforced: ``listen_addr``, ``server`` and
``host`` may be omitted and then decode to empty strings, matching a
zero-value decoder. Unknown keys are tolerated but logged.

Usage:
    from xray_bridge.config.validation import validate_config
    validate_config(json.load(fh))
"""
from __future__ import annotations

import logging
from typing import Any

import jsonschema

from xray_bridge.utils.exceptions import ConfigError

logger = logging.getLogger(__name__)

_TAG_LIST = {
    "oneOf": [
        {"type": "null"},
        {"type": "array", "items": {"type": "string"}},
    ]
}

CONFIG_SCHEMA: dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "properties": {
        "listen_addr": {"type": "string"},
        "instances": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "server": {"type": "string"},
                    "host": {"type": "string"},
                },
            },
        },
        "timeout_seconds": {"type": "number", "exclusiveMinimum": 0},
        "delay_threshold_ms": {"type": "number"},
        "delay_sentinel": {"type": "number"},
        "inbound_tags": _TAG_LIST,
        "outbound_tags": _TAG_LIST,
        "namespace": {"type": "string", "pattern": "^[a-zA-Z_:][a-zA-Z0-9_:]*$"},
        "parallel": {"type": "boolean"},
        "max_workers": {"type": "integer", "minimum": 1},
    },
    "additionalProperties": True,
}

KNOWN_KEYS = frozenset(CONFIG_SCHEMA["properties"])


def validate_config(config: Any) -> dict[str, Any]:
    """Validate a raw config document; returns it unchanged for fluent usage.

    Raises ConfigError with the failing JSON path on schema violations.
    """
    try:
        jsonschema.validate(instance=config, schema=CONFIG_SCHEMA)
    except jsonschema.ValidationError as e:
        path = '/'.join(str(p) for p in e.path) or '<root>'
        raise ConfigError(f"Config schema validation error: {e.message} (path: {path})") from e

    unknown = sorted(set(config) - KNOWN_KEYS)
    if unknown:
        logger.warning("Ignoring unknown config keys: %s", unknown)
    return config


__all__ = ["CONFIG_SCHEMA", "validate_config"]
