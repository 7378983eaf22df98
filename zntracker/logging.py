"""
Logging helpers for the tracker.
"""

from __future__ import annotations

import logging
import sys
import time
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOGGER_NAME = "zntracker"
LEVELS = ("debug", "info", "warning", "error", "critical")


class UTCFormatter(logging.Formatter):
    """Formatter that renders timestamps in UTC ISO-8601."""

    converter = time.gmtime

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)sZ %(levelname)s %(name)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )


def parse_level(name: str) -> int:
    """Map a CLI level name (``debug`` .. ``critical``) to its logging constant."""
    normalized = name.strip().lower()
    if normalized not in LEVELS:
        raise ValueError(f"Unknown log level {name!r}; expected one of {', '.join(LEVELS)}")
    return logging.getLevelName(normalized.upper())


def setup_logging(log_file: Path | None, *, level: int | str = logging.INFO) -> logging.Logger:
    """Attach stdout and, when ``log_file`` is set, a rotating file sink to the tracker logger.

    Calling it again replaces the previous handlers, so tests and restarts do
    not stack duplicate sinks.
    """
    if isinstance(level, str):
        level = parse_level(level)
    formatter = UTCFormatter()
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(log_file, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8"))
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger.debug("Logging to %d sink(s) at level %s", len(handlers), logging.getLevelName(level))
    return logger
