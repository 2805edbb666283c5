#!/usr/bin/env python3
"""
xray-metrics-bridge - Prometheus exporter polling Xray ``/debug/vars``

Usage:
    xray-bridge CONFIG [--log-level LEVEL] [--log-file PATH]
    python -m xray_bridge CONFIG
"""
from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from collections.abc import Sequence
from typing import NoReturn

from xray_bridge.collectors.orchestrator import ScrapeOrchestrator
from xray_bridge.config import load_config
from xray_bridge.utils.exceptions import ConfigError
from xray_bridge.utils.logging_utils import setup_logging
from xray_bridge.version import get_version
from xray_bridge.web.server import make_server

logger = logging.getLogger("xray_bridge")


class _ArgumentParser(argparse.ArgumentParser):
    """argparse exits with 2 on usage errors; the bridge contract is 1."""

    def error(self, message: str) -> NoReturn:
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def parse_arguments(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = _ArgumentParser(prog="xray-bridge", description="Expose Xray /debug/vars statistics as Prometheus metrics")
    parser.add_argument("config", help="Path to the JSON configuration file")
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
                        default="INFO", help="Set the logging level")
    parser.add_argument("--log-file", default=None, help="Also write logs to this file")
    parser.add_argument("--version", action="version", version=f"xray-bridge {get_version()}")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_arguments(argv)
    setup_logging(args.log_level, args.log_file)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        logger.critical("load config with fatal: %s", e)
        return 1

    orchestrator = ScrapeOrchestrator(config)
    try:
        httpd = make_server(config.listen_host, config.listen_port, orchestrator)
    except OSError as e:
        logger.critical("cannot listen on %s: %s", config.listen_addr or ":80", e)
        orchestrator.close()
        return 1

    def _stop(sig: int, _frame: object) -> None:
        logger.info("Received signal %s, shutting down", sig)
        # shutdown() blocks until serve_forever returns; it must not run on that thread.
        threading.Thread(target=httpd.shutdown, daemon=True).start()

    signal.signal(signal.SIGTERM, _stop)
    signal.signal(signal.SIGINT, _stop)

    logger.info("xray-bridge %s serving %d instances on http://%s:%s/metrics",
                get_version(), len(config.instances), config.listen_host, config.listen_port)
    try:
        httpd.serve_forever(poll_interval=0.5)
    finally:
        httpd.server_close()
        orchestrator.close()
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
