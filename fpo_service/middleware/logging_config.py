"""
Structured logging for the FPO lifecycle service.

Every record passes through ``RequestContextFilter``, which stamps the
current ``g.request_id`` on it when a request is active, so lifecycle and
gateway logs line up with the audit ledger without threading the id
through each ``extra=`` by hand.

Output format is chosen from the app mode:
    DEBUG or TESTING -> ReadableFormatter (one line, ANSI level color)
    otherwise        -> JSONFormatter (one object per line)

LOG_LEVEL overrides the level in both modes.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_app_context

# Record attributes promoted to top-level keys in JSON output
_CONTEXT_FIELDS = (
    "request_id",
    "fpo_id",
    "action",
    "event_type",
    "ledger_fields",
    "method",
    "path",
    "status",
    "duration_ms",
    "remote_addr",
)

_LEVEL_COLORS = {
    logging.DEBUG: "\033[36m",
    logging.INFO: "\033[32m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[35m",
}
_RESET = "\033[0m"

_QUIET_LOGGERS = ("urllib3", "werkzeug", "sqlalchemy.engine")


class RequestContextFilter(logging.Filter):
    """Fill ``record.request_id`` from the Flask request when not set explicitly."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None and has_app_context():
            rid = g.get("request_id")
            if rid:
                record.request_id = rid
        return True


def _context_of(record: logging.LogRecord) -> dict:
    return {
        key: getattr(record, key)
        for key in _CONTEXT_FIELDS
        if getattr(record, key, None) is not None
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per record, for log shipping."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "where": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        payload.update(_context_of(record))
        if record.exc_info and record.exc_info[0] is not None:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Single-line colored output for local runs."""

    def format(self, record: logging.LogRecord) -> str:
        ctx = _context_of(record)
        parts = [
            datetime.fromtimestamp(record.created).strftime("%H:%M:%S"),
            f"{_LEVEL_COLORS.get(record.levelno, '')}{record.levelname:<8}{_RESET}",
            f"{record.name}: {record.getMessage()}",
        ]
        if "duration_ms" in ctx:
            parts.append(f"[{ctx['duration_ms']:.0f}ms]")
        for key in ("request_id", "fpo_id"):
            if key in ctx:
                parts.append(f"{'rid' if key == 'request_id' else key}={ctx[key]}")
        line = " ".join(parts)
        if record.exc_info and record.exc_info[0] is not None:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def configure_logging(app):
    """Install a single stderr handler on the root logger for ``app``."""
    readable = app.config.get("DEBUG", False) or app.config.get("TESTING", False)
    level_name = os.getenv("LOG_LEVEL", "DEBUG" if readable else "INFO").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(ReadableFormatter() if readable else JSONFormatter())
    handler.addFilter(RequestContextFilter())

    root = logging.getLogger()
    # create_app runs once per test app; replace rather than stack handlers
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not app.config.get("TESTING", False):
        app.logger.info("Logging configured level=%s format=%s",
                        level_name, "readable" if readable else "json")
