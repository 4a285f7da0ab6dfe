"""Logging configuration for stitchgrid.

Provides a setup function, a module-level logger factory, and a small
timing helper used to log pipeline stage boundaries.
"""

from __future__ import annotations

import json
import logging
import os
import sys
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any

ROOT_LOGGER_NAME = "stitchgrid"
DEFAULT_FORMAT = "%(levelname)-5s | %(name)-20s | %(message)s"
VERBOSE_FORMAT = "%(asctime)s | %(levelname)-5s | %(name)-20s | %(message)s"
_SETUP_LOCK = threading.Lock()

# Extra record attributes copied into JSON log lines when present.
_JSON_EXTRA_FIELDS = ("stage", "generation", "duration_ms")


class JsonFormatter(logging.Formatter):
    """Minimal JSON log formatter for machine-readable aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in _JSON_EXTRA_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                payload[name] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def _pick_formatter(json_logs: bool, fmt: str) -> logging.Formatter:
    if json_logs:
        return JsonFormatter()
    return logging.Formatter(fmt)


def setup_logging(
    level: int = logging.INFO,
    verbose: bool = False,
    log_file: str | None = None,
    json_logs: bool = False,
) -> None:
    """Configure logging for the stitchgrid package.

    Handlers are installed on the ``stitchgrid`` root logger.  Repeated
    calls reuse the existing stderr/file handlers instead of stacking
    duplicates.

    Args:
        level: Logging level (default: INFO).
        verbose: If True, include timestamps in console output.
        log_file: Optional file path to write logs to (in addition to stderr).
        json_logs: Emit structured JSON log lines when True.
    """
    with _SETUP_LOCK:
        logger = logging.getLogger(ROOT_LOGGER_NAME)
        logger.setLevel(level)

        stream_handlers = [
            h
            for h in logger.handlers
            if isinstance(h, logging.StreamHandler)
            and not isinstance(h, logging.FileHandler)
            and getattr(h, "stream", None) is sys.stderr
        ]
        if stream_handlers:
            stream_handler = stream_handlers[0]
            for extra in stream_handlers[1:]:
                logger.removeHandler(extra)
        else:
            stream_handler = logging.StreamHandler(sys.stderr)
            logger.addHandler(stream_handler)
        stream_handler.setFormatter(
            _pick_formatter(json_logs, VERBOSE_FORMAT if verbose else DEFAULT_FORMAT)
        )

        if log_file:
            target = os.path.abspath(str(log_file))
            existing = [
                h
                for h in logger.handlers
                if isinstance(h, logging.FileHandler)
                and getattr(h, "baseFilename", None) == target
            ]
            if existing:
                file_handler = existing[0]
            else:
                file_handler = logging.FileHandler(log_file, encoding="utf-8")
                logger.addHandler(file_handler)
            file_handler.setFormatter(_pick_formatter(json_logs, VERBOSE_FORMAT))


def get_logger(name: str) -> logging.Logger:
    """Get a logger for a stitchgrid module.

    Args:
        name: Module name (e.g., ``"matcher"``, ``"pipeline"``).

    Returns:
        A logger instance under the ``stitchgrid`` namespace.
    """
    if name.startswith(f"{ROOT_LOGGER_NAME}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


@contextmanager
def log_stage(
    logger: logging.Logger, stage: str, generation: int | None = None
) -> Iterator[dict[str, float]]:
    """Log the start and end of a pipeline stage with its duration.

    Yields a dict that receives ``duration_ms`` once the block exits
    normally, so callers can forward the timing to a metrics collector.
    """
    timing: dict[str, float] = {}
    extra = {"stage": stage, "generation": generation}
    logger.debug("Stage %s started", stage, extra=extra)
    started = time.perf_counter()
    yield timing
    timing["duration_ms"] = (time.perf_counter() - started) * 1000.0
    logger.info(
        "Stage %s finished in %.1f ms",
        stage,
        timing["duration_ms"],
        extra={**extra, "duration_ms": round(timing["duration_ms"], 3)},
    )
