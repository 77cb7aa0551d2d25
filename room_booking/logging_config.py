"""Structured JSON logging configuration."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
import json
import logging
import sys

_EXTRA_FIELDS = ("room_id", "booking_id", "request_path")


class JSONFormatter(logging.Formatter):
    """Render each record as one JSON object per line.

    Always present: timestamp (ISO 8601, UTC), level, logger, message.
    ``room_id``, ``booking_id`` and ``request_path`` are copied over when passed
    through ``extra``; exception text is added when the record carries one.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for field in _EXTRA_FIELDS:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False)


def configure_logging(level: str = "INFO") -> None:
    log_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(JSONFormatter())
    root_logger.addHandler(console_handler)

    root_logger.info("Logging configured: level=%s, format=JSON", level.upper())
