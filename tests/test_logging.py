"""
test_logging.py — Tests for log formatting and request correlation.

Covers:
    • JSON rendering of domain extras and request context
    • Console tags for thread / notification / nearby count
    • Context binding and reset around a request
    • Thread id extraction from request paths
    • Formatter selection by environment

Run with:
    pytest tests/test_logging.py -v
"""

from __future__ import annotations

import json
import logging
import sys

import pytest

from backend.app.core.config import Settings
from backend.app.core.logging_config import (
    JSONFormatter,
    PrettyFormatter,
    bind_request_context,
    get_request_context,
    reset_request_context,
    setup_logging,
)
from backend.app.core.middleware import _access_level, thread_id_from_path


def _make_record(msg="Report stored", level=logging.INFO, **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="backend.app.alerts.alert_store",
        level=level,
        pathname=__file__,
        lineno=42,
        msg=msg,
        args=(),
        exc_info=None,
    )
    record.__dict__.update(extra)
    return record


@pytest.fixture()
def restore_root_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


class TestJSONFormatter:

    def test_domain_extras_included(self):
        record = _make_record(thread_id="r1", nearby_count=2, unrelated="x")
        payload = json.loads(JSONFormatter().format(record))
        assert payload["message"] == "Report stored"
        assert payload["level"] == "INFO"
        assert payload["thread_id"] == "r1"
        assert payload["nearby_count"] == 2
        assert "unrelated" not in payload

    def test_request_context_attached(self):
        token = bind_request_context(request_id="abc123", endpoint="/api/v1/threads/r9",
                                     thread_id="r9", client_ip=None)
        try:
            payload = json.loads(JSONFormatter().format(_make_record()))
        finally:
            reset_request_context(token)
        assert payload["request"] == {
            "request_id": "abc123", "endpoint": "/api/v1/threads/r9", "thread_id": "r9",
        }
        assert payload["thread_id"] == "r9"

    def test_exception_summarised(self):
        try:
            raise RuntimeError("disk full")
        except RuntimeError:
            record = _make_record(level=logging.ERROR)
            record.exc_info = sys.exc_info()
        payload = json.loads(JSONFormatter().format(record))
        assert payload["exception"] == {"type": "RuntimeError", "message": "disk full"}


class TestPrettyFormatter:

    def test_domain_tags(self):
        record = _make_record(thread_id="r1", notification_id="alert_r1", nearby_count=3)
        line = PrettyFormatter().format(record)
        assert "thread=r1" in line
        assert "notif=alert_r1" in line
        assert "nearby=3" in line
        assert line.endswith("backend.app.alerts.alert_store: Report stored")

    def test_request_id_shortened(self):
        token = bind_request_context(request_id="0123456789abcdef")
        try:
            line = PrettyFormatter().format(_make_record())
        finally:
            reset_request_context(token)
        assert "[01234567]" in line
        assert "89abcdef" not in line


class TestRequestContext:

    def test_reset_restores_previous(self):
        outer = bind_request_context(request_id="outer")
        inner = bind_request_context(request_id="inner")
        assert get_request_context()["request_id"] == "inner"
        reset_request_context(inner)
        assert get_request_context()["request_id"] == "outer"
        reset_request_context(outer)
        assert get_request_context() == {}

    def test_thread_id_from_path(self):
        assert thread_id_from_path("/api/v1/threads/r42/responses") == "r42"
        assert thread_id_from_path("/api/v1/notifications") is None

    def test_access_level(self):
        assert _access_level(201) == logging.INFO
        assert _access_level(404) == logging.WARNING
        assert _access_level(503) == logging.ERROR


class TestSetup:

    def test_production_uses_json(self, restore_root_logging):
        handler = setup_logging(Settings(ENVIRONMENT="production", LOG_LEVEL="warning"))
        assert isinstance(handler.formatter, JSONFormatter)
        assert logging.getLogger().handlers == [handler]
        assert logging.getLogger().level == logging.WARNING

    def test_development_uses_console(self, restore_root_logging):
        handler = setup_logging(Settings(ENVIRONMENT="development"))
        assert isinstance(handler.formatter, PrettyFormatter)
        assert logging.getLogger("redis").level == logging.WARNING
