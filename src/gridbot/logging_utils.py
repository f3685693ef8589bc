from __future__ import annotations

import json
import logging
import os
from datetime import UTC, datetime
from typing import IO, Any

from gridbot.logging_context import LOG_CONTEXT_FIELDS, get_logging_context
from gridbot.security.redaction import redact_data

_HTTP_LOGGERS = {"httpx": "HTTPX_LOG_LEVEL", "httpcore": "HTTPCORE_LOG_LEVEL"}


class JsonFormatter(logging.Formatter):
    """One JSON object per record: base fields, structured extras, correlation ids."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        extras = getattr(record, "extra", None)
        if isinstance(extras, dict):
            payload.update(extras)

        # bound context wins over extras; unbound fields are still emitted as null
        context = get_logging_context()
        for name in LOG_CONTEXT_FIELDS:
            if name in context:
                payload[name] = context[name]
            else:
                payload.setdefault(name, None)

        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            payload["error_type"] = exc_type.__name__ if exc_type else "Exception"
            payload["error_message"] = "" if exc_value is None else str(exc_value)
            payload["traceback"] = self.formatException(record.exc_info)
        elif record.exc_text:
            payload["traceback"] = record.exc_text

        return json.dumps(redact_data(payload), default=str)


def _level_from(raw: str | int | None, default: int) -> int:
    if isinstance(raw, int):
        return raw
    if raw is None or not str(raw).strip():
        return default
    resolved = logging.getLevelName(str(raw).strip().upper())
    return resolved if isinstance(resolved, int) else default


def setup_logging(level: str | int | None = None, *, stream: IO[str] | None = None) -> None:
    """Route every logger through a single JSON handler on the root logger.

    ``level`` falls back to ``LOG_LEVEL``. httpx request lines include signed
    query strings, so the HTTP client loggers stay at WARNING unless the root
    runs at DEBUG or ``HTTPX_LOG_LEVEL`` / ``HTTPCORE_LOG_LEVEL`` say otherwise.
    """
    root_level = _level_from(level if level is not None else os.getenv("LOG_LEVEL"), logging.INFO)

    handler = logging.StreamHandler(stream)
    handler.setFormatter(JsonFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(root_level)

    http_default = logging.DEBUG if root_level <= logging.DEBUG else logging.WARNING
    for logger_name, env_name in _HTTP_LOGGERS.items():
        logging.getLogger(logger_name).setLevel(_level_from(os.getenv(env_name), http_default))
