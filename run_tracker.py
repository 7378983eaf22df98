"""
CLI entry point for running the tracker's peer directory services.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

from zntracker.config import ConfigError, load_config
from zntracker.logging import LEVELS, parse_level, setup_logging
from zntracker.peer_db import StorageError
from zntracker.tracker import Tracker


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="ZeroNet tracker peer directory")
    parser.add_argument("--config", type=Path, help="Path to config JSON")
    parser.add_argument("--data-dir", type=Path, help="Override data directory")
    parser.add_argument("--backend", choices=("sqlite", "memory"), help="Peer database backend")
    parser.add_argument("--db-path", help="SQLite file for a persistent peer database (default: in memory)")
    parser.add_argument("--peer-ttl", type=int, help="Seconds before a silent peer is evicted")
    parser.add_argument("--metrics-port", type=int, help="Enable the Prometheus exporter on this port")
    parser.add_argument("--log-level", default="info", choices=LEVELS, help="Log level")
    return parser.parse_args(argv)


def build_overrides(args: argparse.Namespace) -> dict:
    overrides = {}
    if args.data_dir:
        overrides["data_dir"] = str(args.data_dir)
    if args.backend:
        overrides.setdefault("storage", {})["backend"] = args.backend
    if args.db_path:
        overrides.setdefault("storage", {})["path"] = args.db_path
    if args.peer_ttl is not None:
        overrides.setdefault("cleanup", {})["peer_ttl"] = args.peer_ttl
    if args.metrics_port is not None:
        overrides["metrics"] = {"enabled": True, "port": args.metrics_port}
    return overrides


def install_signal_handlers(tracker: Tracker) -> None:
    def _handler(signum, _frame) -> None:
        logging.getLogger("zntracker").warning("Received signal %s", signum)
        tracker.request_shutdown()

    for sig_name in ("SIGINT", "SIGTERM"):
        if hasattr(signal, sig_name):
            signal.signal(getattr(signal, sig_name), _handler)


def main() -> None:
    args = parse_args()
    overrides = build_overrides(args)
    config_path = args.config.resolve() if args.config else None

    try:
        config = load_config(config_path, overrides=overrides)
    except ConfigError as exc:
        print(f"Config error: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc

    log_level = parse_level(args.log_level)
    logger = setup_logging(config.log_file, level=log_level)
    try:
        tracker = Tracker(config)
    except StorageError as exc:
        logger.error("Unable to open peer database: %s", exc)
        raise SystemExit(1) from exc
    install_signal_handlers(tracker)
    logger.info("Tracker configuration loaded")
    try:
        asyncio.run(tracker.run())
    except KeyboardInterrupt:
        logger.warning("Interrupted, shutting down...")
    finally:
        tracker.close()


if __name__ == "__main__":
    main()
