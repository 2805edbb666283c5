"""Unified logging utilities for the bridge."""
from __future__ import annotations

import json
import logging
import os
import sys
import time

from . import log_context as _lc
from .env_flags import is_truthy_env

DEFAULT_FORMAT = '%(asctime)s - %(threadName)s - %(name)s - %(levelname)s - %(message)s'

# Third-party loggers that are chatty at INFO/DEBUG during every scrape.
SUPPRESSED_LOGGERS = [
    'urllib3', 'requests',
]


class _CtxFilter(logging.Filter):
    """Expose log_context fields as record attributes for formatters."""

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        ctx = _lc.get_context()
        for k in _lc.CONTEXT_KEYS:
            if k in ctx and not hasattr(record, k):
                setattr(record, k, ctx[k])
        return True


class _ContextSuffixFormatter(logging.Formatter):
    """Plain text formatter appending ``[server=... component=...]`` when context is set."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        base = super().format(record)
        parts = [f"{k}={getattr(record, k)}" for k in _lc.CONTEXT_KEYS if hasattr(record, k)]
        if not parts:
            return base
        return f"{base} [{' '.join(parts)}]"


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload = {
            'ts': getattr(record, 'created', time.time()),
            'level': record.levelname,
            'logger': record.name,
            'thread': record.threadName,
            'msg': record.getMessage(),
            'ctx': _lc.get_context() or None,
        }
        if record.exc_info:
            payload['exc_info'] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def setup_logging(level: str = 'INFO', log_file: str | None = None, fmt: str = DEFAULT_FORMAT) -> logging.Logger:
    """Configure root logging.

    Console handler writes to stderr in ``fmt`` (text) or, when
    XRAY_BRIDGE_JSON_LOGS=1, one JSON object per line. The optional file
    handler always uses the full text format. Calling again replaces the
    previously installed handlers.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(log_level)
    for h in root.handlers[:]:
        root.removeHandler(h)
        h.close()

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(log_level)
    console.addFilter(_CtxFilter())
    if is_truthy_env('XRAY_BRIDGE_JSON_LOGS'):
        console.setFormatter(_JsonFormatter())
    else:
        console.setFormatter(_ContextSuffixFormatter(fmt))
    root.addHandler(console)

    if log_file:
        directory = os.path.dirname(log_file)
        if directory:
            os.makedirs(directory, exist_ok=True)
        fh = logging.FileHandler(log_file, encoding='utf-8')
        fh.setLevel(log_level)
        fh.addFilter(_CtxFilter())
        fh.setFormatter(_ContextSuffixFormatter(DEFAULT_FORMAT))
        root.addHandler(fh)

    for name in SUPPRESSED_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root

__all__ = ["setup_logging", "DEFAULT_FORMAT"]
