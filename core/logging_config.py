"""
core/logging_config.py -- Process-wide logging setup.

Environment-aware:
  local -> human-readable lines at DEBUG
  dev   -> JSON at DEBUG
  prod  -> JSON at INFO

JSON output is one object per line for log aggregators. Anything passed via
extra= on a log call becomes a top-level key.

Usage:
    from core.logging_config import setup_logging
    setup_logging(settings.env, settings.log_level)
    logger = logging.getLogger("authapi.api")
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

_TEXT_FORMAT = "%(asctime)s %(levelname)-5s %(name)s %(message)s"
_TEXT_DATEFMT = "%Y-%m-%d %H:%M:%S"

_DEFAULT_LEVELS = {
    "local": logging.DEBUG,
    "dev": logging.DEBUG,
    "prod": logging.INFO,
}

# Attributes every LogRecord has; anything else on the record came from extra=.
_RESERVED = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime", "taskName"}


class JsonFormatter(logging.Formatter):
    """Format log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        log_obj: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key in _RESERVED or value is None:
                continue
            try:
                json.dumps(value)
                log_obj[key] = value
            except (TypeError, ValueError):
                log_obj[key] = str(value)

        return json.dumps(log_obj)


def setup_logging(env: str = "local", level: str | None = None) -> None:
    """Configure the root logger for the given environment.

    Replaces any handlers already on the root logger so repeated calls (app
    reloads, tests) do not duplicate output.
    """
    handler = logging.StreamHandler(sys.stdout)
    if env == "local":
        handler.setFormatter(logging.Formatter(_TEXT_FORMAT, datefmt=_TEXT_DATEFMT))
    else:
        handler.setFormatter(JsonFormatter())

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level.upper() if level else _DEFAULT_LEVELS.get(env, logging.INFO))

    # aiosqlite logs every statement at DEBUG.
    logging.getLogger("aiosqlite").setLevel(logging.INFO)
