"""
Structured logging configuration.

Provides:
    • JSON-formatted logs for production (machine-parseable)
    • Pretty console logs for development (human-readable)
    • A context-local field set (request_id, actor_id, alert_id, ...)
      merged into every record emitted while it is active

Usage:
    from sosalert.app.core.logging_config import log_context, setup_logging

    setup_logging()
    with log_context(alert_id="ALR-...", target_id="u-1"):
        logger.info("Dispatching")      # carries alert_id + target_id
"""

from __future__ import annotations

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

from sosalert.app.core.config import settings

_log_context: ContextVar[Dict[str, Any]] = ContextVar("log_context", default={})

# Record attributes (passed via `extra=`) surfaced by both formatters
EXTRA_FIELDS = (
    "alert_id", "target_id", "responder_id", "sent_count", "failed_count",
    "alarm_state", "duration_ms", "status_code", "endpoint",
)


def set_request_context(**fields: Any) -> Token:
    """Replace the log context; returns a token for reset_request_context."""
    return _log_context.set({k: v for k, v in fields.items() if v is not None})


def reset_request_context(token: Token) -> None:
    _log_context.reset(token)


def get_request_context() -> Dict[str, Any]:
    return _log_context.get()


@contextmanager
def log_context(**fields: Any) -> Iterator[Dict[str, Any]]:
    """Add fields to the current log context for the duration of the block."""
    merged = {**_log_context.get(), **{k: v for k, v in fields.items() if v is not None}}
    token = _log_context.set(merged)
    try:
        yield merged
    finally:
        _log_context.reset(token)


def abbreviate_token(token: str, keep: int = 12) -> str:
    """Shorten a delivery token; full tokens never reach logs or responses."""
    if len(token) <= keep:
        return token
    return token[:keep] + "..."


def _record_fields(record: logging.LogRecord) -> Dict[str, Any]:
    """Context fields overlaid with the record's own `extra=` fields."""
    fields = dict(get_request_context())
    for key in EXTRA_FIELDS:
        value = getattr(record, key, None)
        if value is not None:
            fields[key] = value
    return fields


# ── JSON Formatter (Production) ──

class JSONFormatter(logging.Formatter):
    """One JSON object per line for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        entry.update(_record_fields(record))

        if record.exc_info and record.exc_info[1]:
            entry["exception"] = {
                "type": type(record.exc_info[1]).__name__,
                "message": str(record.exc_info[1]),
                "trace": self.formatException(record.exc_info),
            }

        return json.dumps(entry, default=str)


# ── Pretty Formatter (Development) ──

class PrettyFormatter(logging.Formatter):
    """Coloured single-line format for local development."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        fields = _record_fields(record)

        tags = ""
        if fields.get("request_id"):
            tags += f" [{str(fields['request_id'])[:8]}]"
        if fields.get("alert_id"):
            tags += f" <{fields['alert_id']}>"
        if fields.get("actor_id"):
            tags += f" @{fields['actor_id']}"

        line = (
            f"{color}{self.formatTime(record, '%H:%M:%S')} {record.levelname:8s}{self.RESET}"
            f"{tags} {record.name}: {record.getMessage()}"
        )
        if record.exc_info and record.exc_info[1]:
            line += f"\n  {type(record.exc_info[1]).__name__}: {record.exc_info[1]}"
        return line


# ── Setup ──

def setup_logging(level: Optional[str] = None, json_output: Optional[bool] = None) -> None:
    """Install one stdout handler on the root logger (JSON in production)."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO))
    root.handlers.clear()

    if json_output is None:
        json_output = settings.is_production
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if json_output else PrettyFormatter())
    root.addHandler(handler)

    for noisy in ("uvicorn.access", "httpx", "httpcore", "sqlalchemy.engine", "aiosqlite"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a named logger - call once per module."""
    return logging.getLogger(name)
