"""
Structured JSON logging for the automation engine.

Each record is one JSON object with ``timestamp``, ``level`` and
``message`` plus optional ``operation``, ``context``, ``duration_ms`` and
``error`` keys, so log aggregators can filter by rule or tenant without
parsing free text. Webhook URLs frequently embed secrets; log them through
``mask_url``.
"""

import json
import logging
import os
import time
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Dict, Optional
from urllib.parse import urlsplit

DEFAULT_LEVEL = "DEBUG"

# keyword arguments copied into the context of @log_operation records
TRACED_KWARGS = ("tenant_id", "pipeline_id", "rule_id", "trigger")


def mask_url(url: Optional[str]) -> str:
    """
    Reduce a URL to scheme and host.

    Example:
        >>> mask_url("https://hooks.example.com/services/T000/B000/secret")
        "https://hooks.example.com/***"
    """
    if not url:
        return "unknown"

    parts = urlsplit(url)
    if not (parts.scheme and parts.netloc):
        return "invalid"
    return f"{parts.scheme}://{parts.netloc}/***"


def _resolve_level(level: Optional[str]) -> int:
    name = (level or os.getenv("LOG_LEVEL") or DEFAULT_LEVEL).upper()
    resolved = getattr(logging, name, None)
    return resolved if isinstance(resolved, int) else logging.DEBUG


class StructuredLogger:
    """
    JSON-formatted logger with context injection and operation timing.

    Args:
        name: Logger name (typically __name__ of the calling module)
        level: Level name; falls back to the LOG_LEVEL environment variable
    """

    def __init__(self, name: str, level: Optional[str] = None):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(_resolve_level(level))

        if not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter("%(message)s"))
            self.logger.addHandler(handler)

    def _format_log(
        self,
        level: str,
        message: str,
        operation: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        duration_ms: Optional[float] = None,
        error: Optional[str] = None,
    ) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": level,
            "message": message,
        }
        optional = {
            "operation": operation,
            "context": context or None,
            "duration_ms": round(duration_ms, 2) if duration_ms is not None else None,
            "error": error or None,
        }
        entry.update({key: value for key, value in optional.items() if value is not None})

        # ids and timestamps in context are written as strings
        return json.dumps(entry, ensure_ascii=False, default=str)

    def _emit(self, levelno: int, message: str, **fields: Any) -> None:
        if not self.logger.isEnabledFor(levelno):
            return
        self.logger.log(levelno, self._format_log(logging.getLevelName(levelno), message, **fields))

    def debug(self, message: str, operation: Optional[str] = None, context: Optional[Dict[str, Any]] = None):
        self._emit(logging.DEBUG, message, operation=operation, context=context)

    def info(
        self,
        message: str,
        operation: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        duration_ms: Optional[float] = None,
    ):
        self._emit(logging.INFO, message, operation=operation, context=context, duration_ms=duration_ms)

    def warning(
        self,
        message: str,
        operation: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ):
        self._emit(logging.WARNING, message, operation=operation, context=context, error=error)

    def error(
        self,
        message: str,
        operation: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
        duration_ms: Optional[float] = None,
    ):
        self._emit(
            logging.ERROR,
            message,
            operation=operation,
            context=context,
            duration_ms=duration_ms,
            error=error,
        )


class NullLogger(StructuredLogger):
    """Discards every record. Used when embedding the engine and in tests."""

    def __init__(self, name: str = "null"):
        self.logger = logging.getLogger(f"crm_automation.null.{name}")
        self.logger.disabled = True

    def _emit(self, levelno: int, message: str, **fields: Any) -> None:
        return None


def log_operation(operation_name: str):
    """
    Decorator logging start, completion (with duration) and failure of a call.

    Rule identifiers passed as keyword arguments are copied into the record
    context.

    Usage:
        @log_operation("run_scheduled_rules")
        def run_due(self, now):
            ...
    """

    def decorator(func):
        logger = get_logger(func.__module__)

        @wraps(func)
        def wrapper(*args, **kwargs):
            context: Dict[str, Any] = {"function": func.__name__}
            context.update({key: kwargs[key] for key in TRACED_KWARGS if key in kwargs})

            logger.debug(f"Starting {operation_name}", operation=operation_name, context=context)
            started = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                logger.error(
                    f"Failed {operation_name}",
                    operation=operation_name,
                    context=context,
                    error=str(e),
                    duration_ms=(time.perf_counter() - started) * 1000,
                )
                raise

            logger.info(
                f"Completed {operation_name}",
                operation=operation_name,
                context=context,
                duration_ms=(time.perf_counter() - started) * 1000,
            )
            return result

        return wrapper

    return decorator


def get_logger(name: str) -> StructuredLogger:
    """Structured logger for ``name`` (typically the caller's __name__)."""
    return StructuredLogger(name)
