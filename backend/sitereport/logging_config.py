"""
Structured logging configuration.

- JSON lines when ``settings.log_json`` is set (log aggregator compatible)
- Human-readable format otherwise
- Services receive a ``logging.Logger`` as a collaborator; extra fields
  such as ``report_id`` or ``channel`` passed via ``extra=`` are emitted.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone

from sitereport.config.settings import Settings

_EXTRA_FIELDS = (
    "report_id",
    "project_id",
    "report_type",
    "channel",
    "photo_id",
    "milestone_id",
    "operation",
    "duration_ms",
)


class JSONFormatter(logging.Formatter):
    """JSON log formatter for production / log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        for key in _EXTRA_FIELDS:
            val = getattr(record, key, None)
            if val is not None:
                log_entry[key] = str(val)
        return json.dumps(log_entry, ensure_ascii=False)


class ReadableFormatter(logging.Formatter):
    """Human-readable formatter for development."""

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.now().strftime("%H:%M:%S")
        extras = " ".join(
            f"{key}={getattr(record, key)}"
            for key in _EXTRA_FIELDS
            if getattr(record, key, None) is not None
        )
        base = f"{ts} {record.levelname:<8} {record.name}: {record.getMessage()}"
        if extras:
            base += f" [{extras}]"
        if record.exc_info and record.exc_info[0] is not None:
            base += "\n" + self.formatException(record.exc_info)
        return base


def configure_logging(settings: Settings) -> logging.Logger:
    """Install a single stderr handler on the ``sitereport`` logger tree."""
    logger = logging.getLogger("sitereport")
    logger.setLevel(settings.log_level.upper())
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if settings.log_json else ReadableFormatter())
    logger.addHandler(handler)
    logger.propagate = False
    return logger
