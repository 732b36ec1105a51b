"""
Log output for the engine.

Two renderings of the same record fields:

    production   one JSON object per line, for log shippers
    otherwise    coloured single line with short domain tags

Request middleware binds a per-request context (request id, client, path,
thread) that both renderings attach. Modules log through the stdlib
``logging.getLogger(__name__)`` and pass domain fields via ``extra``:

    logger.info("Report stored", extra={"thread_id": report.id})
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from backend.app.core.config import Settings, settings

_request_context: ContextVar[Dict[str, Any]] = ContextVar(
    "request_context", default={}
)

_EXTRA_KEYS = frozenset({
    "thread_id", "report_id", "notification_id", "recipient_id",
    "nearby_count", "event", "sequence", "duration_ms",
    "status_code", "endpoint",
})

# (record attribute, console tag)
_CONSOLE_TAGS = (
    ("thread_id", "thread"),
    ("notification_id", "notif"),
    ("recipient_id", "to"),
    ("nearby_count", "nearby"),
)

_QUIET_LOGGERS = ("uvicorn.access", "httpx", "redis")


def bind_request_context(**fields: Any) -> Token:
    """Bind log context for the current request; reset with the returned token."""
    return _request_context.set({k: v for k, v in fields.items() if v is not None})


def reset_request_context(token: Token) -> None:
    _request_context.reset(token)


def get_request_context() -> Dict[str, Any]:
    return _request_context.get()


def _record_fields(record: logging.LogRecord) -> Dict[str, Any]:
    fields = {key: record.__dict__[key] for key in _EXTRA_KEYS if key in record.__dict__}
    ctx = get_request_context()
    if ctx.get("thread_id") and "thread_id" not in fields:
        fields["thread_id"] = ctx["thread_id"]
    return fields


class JSONFormatter(logging.Formatter):
    """One JSON document per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "where": f"{record.module}.{record.funcName}:{record.lineno}",
            **_record_fields(record),
        }
        ctx = get_request_context()
        if ctx:
            payload["request"] = ctx

        if record.exc_info and record.exc_info[1]:
            exc = record.exc_info[1]
            payload["exception"] = {"type": type(exc).__name__, "message": str(exc)}

        return json.dumps(payload, default=str)


class PrettyFormatter(logging.Formatter):
    """Coloured console line: time, level, request id, domain tags, message."""

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
        request_id = get_request_context().get("request_id")

        parts = [f"{color}{self.formatTime(record, '%H:%M:%S')} {record.levelname:<8}{self.RESET}"]
        if request_id:
            parts.append(f"[{request_id[:8]}]")
        parts.extend(
            f"{tag}={fields[attr]}" for attr, tag in _CONSOLE_TAGS if attr in fields
        )
        parts.append(f"{record.name}: {record.getMessage()}")

        line = " ".join(parts)
        if record.exc_info and record.exc_info[1]:
            line += f"\n  {type(record.exc_info[1]).__name__}: {record.exc_info[1]}"
        return line


def setup_logging(config: Optional[Settings] = None) -> logging.Handler:
    """Install a single stdout handler on the root logger and return it."""
    config = config or settings
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if config.is_production else PrettyFormatter())

    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
        handlers=[handler],
        force=True,
    )
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return handler
