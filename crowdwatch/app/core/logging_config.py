"""
Structured logging configuration.

Log context is scoped with a ContextVar: the HTTP middleware sets
``request_id`` / ``client_ip`` / ``endpoint`` per request and the scheduler
sets ``job`` / ``cycle_id`` per run. ``ContextFilter`` copies that context
onto every record, so both formatters read plain record attributes.

    environment     formatter         output
    ─────────────   ───────────────   ──────────────────────────────────
    production      JSONFormatter     one JSON object per line
    anything else   PrettyFormatter   coloured, ``HH:MM:SS LEVEL [ctx] …``

Usage:
    from crowdwatch.app.core.logging_config import setup_logging

    setup_logging()
    logger = logging.getLogger(__name__)
    logger.info("Zone %s classified", zone_id, extra={"zone_id": zone_id})
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict

from crowdwatch.app.core.config import settings

_log_context: ContextVar[Dict[str, Any]] = ContextVar("log_context", default={})

# Record attributes promoted into JSON output
_EXTRA_FIELDS = (
    "zone_id", "event_id", "alert_id", "incident_id", "topic", "severity",
    "cycle_id", "duration_ms", "status_code", "endpoint",
)

_QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "aiosqlite")


def set_request_context(**kwargs: Any) -> None:
    """Replace the log context of the current task."""
    _log_context.set(kwargs)


def get_request_context() -> Dict[str, Any]:
    return _log_context.get()


class ContextFilter(logging.Filter):
    """Attach the current log context to each record as ``record.context``."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.context = dict(get_request_context())
        return True


class JSONFormatter(logging.Formatter):
    """Machine-parseable JSON log output for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "line": f"{record.module}:{record.lineno}",
        }
        context = getattr(record, "context", None)
        if context:
            entry["context"] = context
        for key in _EXTRA_FIELDS:
            if hasattr(record, key):
                entry[key] = getattr(record, key)
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class PrettyFormatter(logging.Formatter):
    """Coloured human-readable format for local development."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    @staticmethod
    def _context_tag(context: Dict[str, Any]) -> str:
        if context.get("request_id"):
            return f" [{context['request_id'][:8]}]"
        if context.get("cycle_id"):
            return f" [{context['cycle_id']}]"
        return ""

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        line = (
            f"{color}{self.formatTime(record, '%H:%M:%S')} {record.levelname:8s}{self.RESET}"
            f"{self._context_tag(getattr(record, 'context', {}))} {record.name}: "
            f"{record.getMessage()}"
        )
        if record.exc_info and record.exc_info[1]:
            line += f"\n  {type(record.exc_info[1]).__name__}: {record.exc_info[1]}"
        return line


def setup_logging() -> None:
    """Configure the root logger for the current environment."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(ContextFilter())
    handler.setFormatter(JSONFormatter() if settings.is_production else PrettyFormatter())
    root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
