"""
Fastlane — Structured JSON Logger

Every log entry is a single-line JSON object with:
  - timestamp (ISO 8601)
  - level
  - logger / module / function / line
  - message
  - optional context fields (alert_id, driver_name, responder_id, ...)
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

_ROOT_LOGGER = "fastlane"


class StructuredJsonFormatter(logging.Formatter):
    """Formats log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
        }
        # Merge any extra context attached to the record
        if hasattr(record, "context") and isinstance(record.context, dict):
            log_entry["context"] = record.context

        if record.exc_info and record.exc_info[1]:
            log_entry["traceback"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def get_logger(name: str, level: str = "INFO") -> logging.Logger:
    """
    Return a logger configured with structured JSON output.

    Usage:
        from fastlane.common.logger import get_logger
        logger = get_logger(__name__)
        logger.info("Alert created", extra={"context": {"alert_id": 12}})
    """
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(StructuredJsonFormatter())
        logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    return logger


def configure_logging(level: str = "INFO") -> logging.Logger:
    """
    Attach the JSON handler to the package root logger so that every
    `logging.getLogger(__name__)` under `fastlane.*` emits structured lines.
    """
    return get_logger(_ROOT_LOGGER, level)
