"""
test_conversation.py — Tests for thread → conversation assembly.

Run with:
    pytest tests/test_conversation.py -v
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from backend.app.alerts.alert_store import AlertStore
from backend.app.alerts.conversation import ConversationAssembler
from backend.app.alerts.events import EventBus
from backend.app.alerts.models import MessageRole, Reply, Report, ReportCategory, Response
from backend.app.core.errors import NotFoundError
from backend.app.core.storage import InMemoryKeyValueStore
from backend.app.spatial.geo_index import Coordinate

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def _run(coro):
    return asyncio.run(coro)


def _at(minutes: int) -> datetime:
    return T0 + timedelta(minutes=minutes)


def _make_assembler():
    store = AlertStore(InMemoryKeyValueStore(), EventBus())
    return ConversationAssembler(store), store


async def _report(store, rid, author="citizen-1", minutes=0):
    return await store.append_report(Report(
        id=rid,
        author_id=author,
        text=f"report {rid}",
        category=ReportCategory.ATTACK,
        origin=Coordinate(34.08, 74.80),
        location_label="Srinagar",
        created_at=_at(minutes),
    ))


class TestAssemble:

    def test_reporter_first_then_time_order(self):
        assembler, store = _make_assembler()

        async def scenario():
            await _report(store, "t1")
            await store.append_reply(Reply("t1", "citizen-1", "anyone?", id="p1", created_at=_at(1)))
            await store.append_response(Response("t1", "gov-1", "on it", id="g1", created_at=_at(2)))
            await store.append_reply(Reply("t1", "citizen-1", "thanks", id="p2", created_at=_at(3)))
            return await assembler.assemble("t1")

        entries = _run(scenario())
        assert [e.role for e in entries] == [
            MessageRole.REPORTER,
            MessageRole.CITIZEN_REPLY,
            MessageRole.GOVERNMENT,
            MessageRole.CITIZEN_REPLY,
        ]
        stamps = [e.created_at for e in entries]
        assert stamps == sorted(stamps)

    def test_response_before_reply_on_equal_timestamp(self):
        assembler, store = _make_assembler()

        async def scenario():
            await _report(store, "t1")
            await store.append_reply(Reply("t1", "citizen-1", "same time", id="a", created_at=_at(5)))
            await store.append_response(Response("t1", "gov-1", "same time", id="z", created_at=_at(5)))
            return await assembler.assemble("t1")

        entries = _run(scenario())
        assert [e.entry_id for e in entries] == ["t1", "z", "a"]

    def test_id_breaks_remaining_ties(self):
        assembler, store = _make_assembler()

        async def scenario():
            await _report(store, "t1")
            await store.append_response(Response("t1", "gov-1", "b", id="r-b", created_at=_at(5)))
            await store.append_response(Response("t1", "gov-2", "a", id="r-a", created_at=_at(5)))
            return await assembler.assemble("t1")

        assert [e.entry_id for e in _run(scenario())][1:] == ["r-a", "r-b"]

    def test_unanswered_is_single_entry(self):
        assembler, store = _make_assembler()

        async def scenario():
            await _report(store, "t1")
            return await assembler.assemble("t1")

        entries = _run(scenario())
        assert len(entries) == 1
        assert entries[0].role == MessageRole.REPORTER

    def test_entry_read_shape(self):
        assembler, store = _make_assembler()

        async def scenario():
            await _report(store, "t1")
            return await assembler.assemble("t1")

        d = _run(scenario())[0].to_dict()
        assert d["role"] == "reporter"
        assert d["text"] == "report t1"
        assert d["author"] == "citizen-1"
        assert d["timestamp"] == T0.isoformat()

    def test_missing_thread(self):
        assembler, _ = _make_assembler()
        with pytest.raises(NotFoundError):
            _run(assembler.assemble("ghost"))


class TestConversationsFor:

    def test_only_answered_threads_latest_response_first(self):
        assembler, store = _make_assembler()

        async def scenario():
            await _report(store, "old-report", minutes=0)
            await _report(store, "new-report", minutes=10)
            await _report(store, "unanswered", minutes=20)
            await _report(store, "someone-else", author="citizen-2", minutes=30)
            await store.append_response(Response("new-report", "gov-1", "x", created_at=_at(40)))
            await store.append_response(Response("old-report", "gov-1", "y", created_at=_at(50)))
            await store.append_response(Response("someone-else", "gov-1", "z", created_at=_at(60)))
            return await assembler.conversations_for("citizen-1")

        conversations = _run(scenario())
        assert [c.thread_id for c in conversations] == ["old-report", "new-report"]
        assert conversations[0].last_activity == _at(50)
        assert conversations[0].response_count == 1
        assert conversations[0].entries[0].role == MessageRole.REPORTER

    def test_no_reports(self):
        assembler, _ = _make_assembler()
        assert _run(assembler.conversations_for("nobody")) == []
