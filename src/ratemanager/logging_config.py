"""
Structured logging configuration for ratemanager.

Controllers log through the standard logging module with context passed in
`extra`. This module renders those records either as one JSON object per
line (production) or as a short human-readable line (development).

Usage:
    from ratemanager.logging_config import setup_logging, get_logger

    setup_logging()  # Call once at startup
    logger = get_logger(__name__)
    logger.info("message", extra={"controller": "jump"})
"""

from __future__ import annotations

import logging
import sys
from datetime import UTC, datetime
from typing import Any

import orjson

# Attributes every LogRecord carries; anything else came in through `extra`
_RECORD_ATTRS: frozenset[str] = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "message",
        "taskName",
    }
)

MAX_SEQUENCE_ITEMS = 10


def _describe_callable(fn: Any) -> str:
    """Render a callable by qualified name, never by repr of its closure."""
    func = getattr(fn, "func", fn)  # functools.partial
    module = getattr(func, "__module__", None)
    qualname = getattr(func, "__qualname__", None) or type(func).__name__
    return f"{module}.{qualname}" if module else qualname


def _coerce_value(value: Any, *, _depth: int = 0) -> Any:
    """Convert an extra field to something JSON-safe and bounded in size."""
    if isinstance(value, (int, float, bool, str, type(None))):
        return value
    if callable(value):
        return _describe_callable(value)
    if _depth >= 3:
        return str(value)
    if isinstance(value, dict):
        return {str(k): _coerce_value(v, _depth=_depth + 1) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        if len(value) > MAX_SEQUENCE_ITEMS:
            return f"[{type(value).__name__}:{len(value)} items]"
        return [_coerce_value(v, _depth=_depth + 1) for v in value]
    return str(value)


def extract_extra(record: logging.LogRecord) -> dict[str, Any]:
    """Collect and coerce the `extra` fields attached to a record."""
    return {
        key: _coerce_value(value)
        for key, value in record.__dict__.items()
        if key not in _RECORD_ATTRS
    }


class JsonFormatter(logging.Formatter):
    """JSON log formatter for structured logging.

    Output format:
    {"ts":"2024-01-01T00:00:00.000+00:00","level":"INFO","logger":"module","msg":"...", ...}
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_dict: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        # Add location for warnings and errors
        if record.levelno >= logging.WARNING:
            log_dict["file"] = record.filename
            log_dict["line"] = record.lineno

        if record.exc_info:
            log_dict["exc"] = self.formatException(record.exc_info)

        log_dict.update(extract_extra(record))

        return orjson.dumps(log_dict, default=str).decode()


class SimpleFormatter(logging.Formatter):
    """Simple formatter for development/testing."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as human-readable string."""
        base = f"{record.levelname:8s} {record.name}: {record.getMessage()}"

        extra = extract_extra(record)
        if extra:
            extra_str = " ".join(f"{k}={v}" for k, v in extra.items())
            base = f"{base} | {extra_str}"

        if record.exc_info:
            base = f"{base}\n{self.formatException(record.exc_info)}"

        return base


def setup_logging(
    *,
    level: int | str = logging.INFO,
    json_format: bool = True,
    stream: Any = None,
) -> None:
    """Configure logging for the application.

    Call once at application startup.

    Args:
        level: Log level (default INFO).
        json_format: Use JSON formatter (default True for production).
        stream: Output stream (default stderr).
    """
    if stream is None:
        stream = sys.stderr

    handler = logging.StreamHandler(stream)
    handler.setFormatter(JsonFormatter() if json_format else SimpleFormatter())

    root = logging.getLogger()
    root.setLevel(level)

    # Remove existing handlers to avoid duplicates
    root.handlers.clear()
    root.addHandler(handler)

    logging.getLogger("asyncio").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance (typically get_logger(__name__))."""
    return logging.getLogger(name)
