"""Upstream ``/debug/vars`` client.

One GET per instance. ``timeout`` bounds connect and every socket read, and
is also a deadline for the whole fetch: the body is read in partial reads so
an upstream trickling bytes cannot keep the request open past it. The
response is always closed, even when decoding fails.
"""
from __future__ import annotations

import json
import logging
import time

import requests
import urllib3

from xray_bridge.domain.models import Instance, PayloadShapeError, ScrapeResult
from xray_bridge.utils.exceptions import InstanceFetchError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 3.0
READ_CHUNK = 16 * 1024


def new_session() -> requests.Session:
    session = requests.Session()
    session.headers.update({"Accept": "application/json"})
    return session


def _reject_constant(name: str) -> float:
    # NaN / Infinity are not JSON; json.loads accepts them unless told otherwise.
    raise ValueError(f"invalid JSON constant {name}")


def _read_body(resp: requests.Response, deadline: float) -> bytes:
    """Read the streamed body; ``TimeoutError`` once ``deadline`` passes.

    ``read1`` returns whatever a single socket read produced, so the deadline
    is checked between reads rather than after the whole body.
    """
    buf = bytearray()
    while True:
        if time.monotonic() >= deadline:
            raise TimeoutError(f"body incomplete after {len(buf)} bytes")
        chunk = resp.raw.read1(READ_CHUNK, decode_content=True)
        if not chunk:
            return bytes(buf)
        buf += chunk


def fetch_stats(instance: Instance, timeout: float = DEFAULT_TIMEOUT,
                session: requests.Session | None = None) -> ScrapeResult:
    """Poll one instance and decode its statistics document.

    ``timeout`` is measured from the start of the call, not per socket read.
    Raises InstanceFetchError naming the instance for transport failures,
    timeouts, non-2xx responses, invalid JSON and wrongly shaped payloads.
    """
    deadline = time.monotonic() + timeout
    http = session if session is not None else requests
    url = instance.stats_url
    try:
        resp = http.get(url, timeout=timeout, stream=True)
    except requests.exceptions.RequestException as e:
        raise InstanceFetchError(instance.server, f"GET {url}: {e}") from e

    with resp:
        try:
            body = _read_body(resp, deadline)
        except TimeoutError as e:
            raise InstanceFetchError(instance.server, f"timeout after {timeout}s reading {url}: {e}") from e
        except (urllib3.exceptions.HTTPError, OSError) as e:
            raise InstanceFetchError(instance.server, f"reading body of {url}: {e}") from e
        if not resp.ok:
            raise InstanceFetchError(instance.server, f"GET {url}: HTTP {resp.status_code} {resp.reason}")
        try:
            doc = json.loads(body, parse_constant=_reject_constant)
        except ValueError as e:
            raise InstanceFetchError(instance.server, f"decode {url}: {e}") from e

    try:
        result = ScrapeResult.from_raw(doc)
    except PayloadShapeError as e:
        raise InstanceFetchError(instance.server, f"unexpected payload from {url}: {e}") from e
    logger.debug(
        "fetched %s: %d inbound, %d outbound, %d observatory entries",
        url, len(result.inbound), len(result.outbound), len(result.observatory),
    )
    return result


__all__ = ["DEFAULT_TIMEOUT", "READ_CHUNK", "fetch_stats", "new_session"]
