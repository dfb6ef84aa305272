"""Structured logging for the clinic messaging service.

Every record is written as one JSON object per line. Call sites attach
structured data with ``extra={"context": {...}}``; credential-like keys in
that context are masked before the line is emitted.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, TextIO

LOGGER_PREFIX = "clinic_messaging"

SENSITIVE_KEYS = {"access_token", "refresh_token", "client_secret", "credentials", "code"}

# Third-party loggers that are too chatty at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "sqlalchemy.engine")


def redact(context: dict[str, Any]) -> dict[str, Any]:
    """Replace values of credential-like keys so they never reach the log stream."""
    return {key: ("***" if key in SENSITIVE_KEYS else value) for key, value in context.items()}


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        context = getattr(record, "context", None)
        if context:
            entry["context"] = redact(context)
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


def _resolve_level(level: str) -> int:
    resolved = logging.getLevelName(level.strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(level: str = "INFO", stream: TextIO | None = None) -> None:
    """Route all logging through a single JSON handler on stdout (or ``stream``)."""
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(JSONFormatter())

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(_resolve_level(level))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{LOGGER_PREFIX}.{name}")
