"""Scrape orchestration: poll every instance, refill gauges, render exposition.

Flow per ``handle_scrape_request``:
  1. Poll all configured instances (thread pool or sequential). Every poll
     yields a FetchOutcome; failures never short-circuit the others.
  2. Under the metrics lock: clear per-tag gauges, refill them from the
     successful outcomes, set liveness for every instance, render.

Polling happens before the reset so the lock is only held for in-memory work.
"""
from __future__ import annotations

import itertools
import logging
import threading
import time
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor

import requests

from xray_bridge.config.loader import BridgeConfig
from xray_bridge.domain.models import FetchOutcome, Instance, ScrapeResult
from xray_bridge.metrics import registry as m
from xray_bridge.metrics.registry import BridgeMetrics
from xray_bridge.utils import log_context as _logctx
from xray_bridge.utils.exceptions import InstanceFetchError

from .stats_client import fetch_stats, new_session

logger = logging.getLogger(__name__)

Fetcher = Callable[[Instance, float, requests.Session], ScrapeResult]


def normalize_delay(delay: float, threshold_ms: float, sentinel: float) -> float:
    """Map probe-timeout artifacts (delay above ``threshold_ms``) to ``sentinel``."""
    return sentinel if delay > threshold_ms else delay


class ScrapeOrchestrator:
    def __init__(self, config: BridgeConfig, metrics: BridgeMetrics | None = None, *,
                 fetcher: Fetcher = fetch_stats,
                 session: requests.Session | None = None) -> None:
        self.config = config
        self.metrics = metrics if metrics is not None else BridgeMetrics(namespace=config.namespace)
        self._fetcher = fetcher
        # An injected session is shared as-is and owned by the caller. Otherwise
        # each pool worker keeps its own: requests.Session is not thread-safe.
        self._shared_session = session
        self._local = threading.local()
        self._sessions: list[requests.Session] = []
        self._sessions_lock = threading.Lock()
        self._pool: ThreadPoolExecutor | None = None
        if config.parallel and len(config.instances) > 1:
            workers = min(config.max_workers, len(config.instances))
            self._pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="xray-fetch")
        self._scrape_seq = itertools.count(1)

    def close(self) -> None:
        if self._pool is not None:
            self._pool.shutdown(wait=False, cancel_futures=True)
            self._pool = None
        with self._sessions_lock:
            sessions, self._sessions = self._sessions, []
        for session in sessions:
            session.close()

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------
    def _worker_session(self) -> requests.Session:
        """Session owned by the calling pool worker, created on first use."""
        session = getattr(self._local, "session", None)
        if session is None:
            session = new_session()
            self._local.session = session
            with self._sessions_lock:
                self._sessions.append(session)
        return session

    def _poll(self, instance: Instance, scrape: int, session: requests.Session | None = None) -> FetchOutcome:
        start = time.perf_counter()
        if session is None:
            session = self._shared_session if self._shared_session is not None else self._worker_session()
        with _logctx.push_context(component="orchestrator", server=instance.server, scrape=scrape):
            try:
                result = self._fetcher(instance, self.config.timeout_seconds, session)
            except InstanceFetchError as e:
                logger.warning("instance %s (%s) down: %s", instance.server, instance.host, e)
                return FetchOutcome(instance, error=e, elapsed=time.perf_counter() - start)
            except Exception as e:
                # A broken fetcher must only mark its own instance down.
                logger.exception("instance %s (%s) poll crashed", instance.server, instance.host)
                err = InstanceFetchError(instance.server, repr(e))
                return FetchOutcome(instance, error=err, elapsed=time.perf_counter() - start)
        return FetchOutcome(instance, result=result, elapsed=time.perf_counter() - start)

    def poll_all(self, scrape: int = 0) -> list[FetchOutcome]:
        """Poll every instance; outcomes keep config order."""
        instances = self.config.instances
        if self._pool is None:
            if self._shared_session is not None:
                return [self._poll(inst, scrape, self._shared_session) for inst in instances]
            # Sequential polls run on the caller's (short-lived) request thread.
            with new_session() as session:
                return [self._poll(inst, scrape, session) for inst in instances]
        futures = [self._pool.submit(self._poll, inst, scrape) for inst in instances]
        return [f.result() for f in futures]

    # ------------------------------------------------------------------
    # Gauge refill
    # ------------------------------------------------------------------
    def _allowed(self, tag: str, allow: frozenset[str] | None) -> bool:
        return allow is None or tag in allow

    def _record_result(self, server: str, result: ScrapeResult) -> None:
        cfg = self.config
        metrics = self.metrics
        traffic = (
            (result.inbound, cfg.inbound_tags, m.INBOUND_DOWNLINK, m.INBOUND_UPLINK),
            (result.outbound, cfg.outbound_tags, m.OUTBOUND_DOWNLINK, m.OUTBOUND_UPLINK),
        )
        for stats, allow, down_key, up_key in traffic:
            for tag, stat in stats.items():
                if not self._allowed(tag, allow):
                    continue
                labels = {"tag": tag, "server": server}
                metrics.set(down_key, labels, stat.downlink)
                metrics.set(up_key, labels, stat.uplink)
        for probe in result.observatory.values():
            if not self._allowed(probe.outbound_tag, cfg.outbound_tags):
                continue
            delay = normalize_delay(probe.delay, cfg.delay_threshold_ms, cfg.delay_sentinel)
            metrics.set(m.OBSERVATORY_DELAY, {"tag": probe.outbound_tag, "server": server}, delay)

    def apply(self, outcomes: Iterable[FetchOutcome]) -> None:
        """Reset per-tag gauges and refill them from ``outcomes``."""
        with self.metrics.batch() as metrics:
            metrics.reset_per_tag()
            for outcome in outcomes:
                server = outcome.instance.server
                labels = {"server": server}
                metrics.set(m.SCRAPE_DURATION, labels, outcome.elapsed)
                if outcome.error is None and outcome.result is not None:
                    self._record_result(server, outcome.result)
                    metrics.set(m.SERVER_UP, labels, 1)
                else:
                    metrics.set(m.SERVER_UP, labels, 0)

    def handle_scrape_request(self) -> bytes:
        """Poll, refill and return the text exposition for one scrape."""
        scrape = next(self._scrape_seq)
        outcomes = self.poll_all(scrape)
        with self.metrics.batch() as metrics:
            self.apply(outcomes)
            body = metrics.render()
        failed = [o.instance.server for o in outcomes if not o.ok]
        logger.debug("scrape %d: %d instances, %d down %s", scrape, len(outcomes), len(failed), failed or "")
        return body


__all__ = ["ScrapeOrchestrator", "normalize_delay"]
