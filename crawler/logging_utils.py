"""
Structured logging helpers for crawl workflows.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(threadName)s %(message)s"


def log_event(
    logger: logging.Logger,
    level: int,
    event: str,
    **fields: Any,
) -> None:
    """
    Emit one structured log line as compact JSON.
    """

    if not logger.isEnabledFor(level):
        return
    payload = {"event": event, **fields}
    logger.log(level, json.dumps(payload, default=str, sort_keys=True, ensure_ascii=False))


def configure_logging(level: str | int | None = None) -> None:
    """
    Configure root logging for CLI entry points.

    ``CRAWL_LOG_LEVEL`` is used when no explicit level is given.
    """

    resolved = level if level is not None else os.getenv("CRAWL_LOG_LEVEL", "INFO")
    if isinstance(resolved, str):
        resolved = logging.getLevelName(resolved.strip().upper())
        if not isinstance(resolved, int):
            resolved = logging.INFO
    logging.basicConfig(level=resolved, format=_LOG_FORMAT)
