"""
Structured logging for AuthGate
Each record is one JSON line; ``extra`` context becomes top-level fields
"""

import json
import logging
import os
import sys
from typing import Optional

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Attributes every LogRecord carries; anything else came in through ``extra``
_RESERVED_ATTRS = set(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    """Render a record as a single JSON object, merging ``extra`` fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "module": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class SecurityLogger:
    """Logger for authentication events, passed to each component."""

    def __init__(self, name: str, level: str = LOG_LEVEL):
        self.logger = logging.getLogger(name)
        if not self.logger.handlers:
            stream = logging.StreamHandler(sys.stdout)
            stream.setFormatter(JsonFormatter())
            self.logger.addHandler(stream)
            self.logger.setLevel(level)

    def _emit(self, level: int, message: str, extra: Optional[dict]) -> None:
        self.logger.log(level, message, extra=extra or {})

    def debug(self, message: str, extra: Optional[dict] = None):
        self._emit(logging.DEBUG, message, extra)

    def info(self, message: str, extra: Optional[dict] = None):
        self._emit(logging.INFO, message, extra)

    def warning(self, message: str, extra: Optional[dict] = None):
        self._emit(logging.WARNING, message, extra)

    def error(self, message: str, extra: Optional[dict] = None):
        self._emit(logging.ERROR, message, extra)

    def critical(self, message: str, extra: Optional[dict] = None):
        self._emit(logging.CRITICAL, message, extra)


def get_logger(name: str) -> SecurityLogger:
    return SecurityLogger(name)
