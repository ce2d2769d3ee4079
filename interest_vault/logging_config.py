"""
Structured logging for vault submissions.

Provides:
- Correlation IDs tying together every log line of one submission
- The opcodes being submitted, attached to each record
- JSON formatting for machine parsing, or a compact console format
"""

import contextvars
import json
import logging
import sys
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional, Union
from uuid import uuid4

correlation_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "correlation_id", default=None
)
opcodes_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "opcodes", default=None
)


class SubmissionContext:
    """Context manager tagging log records with a submission id and opcodes."""

    def __init__(self, opcodes: Iterable[str] = (), correlation_id: Optional[str] = None):
        self.correlation_id = correlation_id or str(uuid4())
        self.opcodes = ",".join(opcodes)
        self._tokens = []

    def __enter__(self):
        self._tokens.append((correlation_id_var, correlation_id_var.set(self.correlation_id)))
        if self.opcodes:
            self._tokens.append((opcodes_var, opcodes_var.set(self.opcodes)))
        return self

    def __exit__(self, *args):
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens.clear()


def _context() -> Dict[str, str]:
    data = {}
    correlation_id = correlation_id_var.get()
    opcodes = opcodes_var.get()
    if correlation_id:
        data["correlation_id"] = correlation_id
    if opcodes:
        data["opcodes"] = opcodes
    return data


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def __init__(self, include_traceback: bool = True, extra_fields: Optional[Dict[str, Any]] = None):
        super().__init__()
        self.include_traceback = include_traceback
        self.extra_fields = extra_fields or {}

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        log_data.update(_context())
        log_data.update(self.extra_fields)

        if record.exc_info and self.include_traceback:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": traceback.format_exception(*record.exc_info),
            }

        return json.dumps(log_data, default=str)


class StructuredFormatter(logging.Formatter):
    """Human-readable formatter for console output."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        parts = [f"[{timestamp}]", f"[{record.levelname}]", f"[{record.name}]", record.getMessage()]

        context = _context()
        if context:
            if "correlation_id" in context:
                context["correlation_id"] = context["correlation_id"][:8]
            parts.append("[" + ", ".join(f"{k}={v}" for k, v in context.items()) + "]")

        if record.exc_info:
            parts.append("\n" + "".join(traceback.format_exception(*record.exc_info)))

        return " ".join(parts)


def setup_logging(
    level: Union[str, int] = logging.INFO,
    json_format: bool = False,
    logger_name: str = "interest_vault",
    extra_fields: Optional[Dict[str, Any]] = None,
) -> logging.Logger:
    """Attach a single stream handler to the package logger."""
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    logger = logging.getLogger(logger_name)
    logger.setLevel(level)
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    if json_format:
        handler.setFormatter(JSONFormatter(extra_fields=extra_fields))
    else:
        handler.setFormatter(StructuredFormatter())
    logger.addHandler(handler)
    return logger


def get_correlation_id() -> Optional[str]:
    return correlation_id_var.get()
