"""Lightweight structured logging context helper.

Provides contextual fields (via contextvars) that are injected into log
records by setup_logging. Worker threads of the scrape fan-out set their own
``server`` field so failures are attributable without changing call sites.

Context fields (stable keys):
- component: module/area name (e.g., 'web', 'orchestrator')
- server: upstream instance currently being polled
- scrape: sequence number of the current scrape request

Usage:
  from xray_bridge.utils import log_context as lc
  with lc.push_context(component='orchestrator', server='hk-1'):
      logging.info('polling...')
"""
from __future__ import annotations

import contextvars
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

CONTEXT_KEYS = ("component", "server", "scrape")

_CTX: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar("xray_bridge_log_ctx", default={})


def get_context() -> dict[str, Any]:
    """Return a shallow copy of the current context dict."""
    ctx = _CTX.get()
    return dict(ctx) if ctx else {}


@contextmanager
def push_context(**fields: Any) -> Iterator[None]:
    """Temporarily add fields; previous context restored on exit."""
    cur = dict(_CTX.get())
    cur.update({k: v for k, v in fields.items() if v is not None})
    token = _CTX.set(cur)
    try:
        yield
    finally:
        _CTX.reset(token)


__all__ = ["CONTEXT_KEYS", "get_context", "push_context"]
