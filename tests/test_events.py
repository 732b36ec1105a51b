"""
test_events.py — Tests for the in-process domain event bus.

Covers:
    • Delivery in commit order across report → response → reply
    • Subscriber failure isolation and the delivered/failed counters
    • stop() finishing queued deliveries before the worker exits
    • History polling via events_since

Run with:
    pytest tests/test_events.py -v
"""

from __future__ import annotations

import asyncio

from backend.app.alerts.alert_store import AlertStore
from backend.app.alerts.events import EventBus
from backend.app.alerts.models import (
    EventType,
    Reply,
    Report,
    ReportCategory,
    Response,
)
from backend.app.core.storage import InMemoryKeyValueStore
from backend.app.spatial.geo_index import Coordinate


def _run(coro):
    return asyncio.run(coro)


def _make_bus(**kwargs):
    bus = EventBus(**kwargs)
    return bus, AlertStore(InMemoryKeyValueStore(), bus)


def _recorder(seen):
    async def handler(event):
        seen.append((event.event_type, event.sequence))
    return handler


def _attack(**kwargs) -> Report:
    return Report(
        author_id="citizen-1",
        text="Shots fired near the bridge",
        category=ReportCategory.ATTACK,
        origin=Coordinate(34.08, 74.80),
        location_label="Srinagar",
        **kwargs,
    )


class TestDeliveryOrder:

    def test_report_response_reply_in_order(self):
        bus, store = _make_bus()
        seen = []
        for event_type in (EventType.REPORT_CREATED, EventType.RESPONSE_CREATED,
                           EventType.REPLY_CREATED):
            bus.subscribe(event_type, _recorder(seen))

        async def scenario():
            await bus.start()
            rid = await store.append_report(_attack())
            await store.append_response(Response(rid, "gov-1", "Team dispatched"))
            await store.append_reply(Reply(rid, "citizen-1", "Thank you"))
            await bus.drain()
            await bus.stop()

        _run(scenario())
        assert seen == [
            (EventType.REPORT_CREATED, 1),
            (EventType.RESPONSE_CREATED, 2),
            (EventType.REPLY_CREATED, 3),
        ]
        assert bus.delivered == 3

    def test_only_subscribed_types_delivered(self):
        bus, store = _make_bus()
        seen = []
        bus.subscribe(EventType.THREAD_DELETED, _recorder(seen))

        async def scenario():
            await bus.start()
            rid = await store.append_report(_attack())
            await store.delete_thread(rid)
            await bus.drain()
            await bus.stop()

        _run(scenario())
        assert seen == [(EventType.THREAD_DELETED, 2)]


class TestFailureIsolation:

    def test_failing_handler_does_not_block_others(self):
        bus, store = _make_bus()
        seen = []

        async def broken(event):
            raise RuntimeError("subscriber bug")

        bus.subscribe(EventType.REPORT_CREATED, broken)
        bus.subscribe(EventType.REPORT_CREATED, _recorder(seen))

        async def scenario():
            await bus.start()
            await store.append_report(_attack())
            await store.append_report(_attack())
            await bus.drain()
            running = bus.is_running
            await bus.stop()
            return running

        assert _run(scenario()) is True
        assert seen == [(EventType.REPORT_CREATED, 1), (EventType.REPORT_CREATED, 2)]
        assert bus.failed == 2
        assert bus.delivered == 2


class TestLifecycle:

    def test_stop_delivers_queued_events_first(self):
        bus, _ = _make_bus()
        seen = []

        async def slow(event):
            await asyncio.sleep(0.01)
            seen.append(event.sequence)

        bus.subscribe(EventType.REPORT_CREATED, slow)

        async def scenario():
            await bus.start()
            for i in range(5):
                bus.publish(EventType.REPORT_CREATED, f"t{i}")
            pending = bus.pending
            await bus.stop()
            return pending

        pending = _run(scenario())
        assert pending > 0
        assert seen == [1, 2, 3, 4, 5]
        assert bus.is_running is False
        assert bus.pending == 0

    def test_publish_before_start_is_history_only(self):
        bus, _ = _make_bus()
        seen = []
        bus.subscribe(EventType.REPORT_CREATED, _recorder(seen))

        bus.publish(EventType.REPORT_CREATED, "t1")
        _run(bus.drain())
        assert seen == []
        assert [e.thread_id for e in bus.events_since(0)] == ["t1"]

    def test_events_since_and_bounded_history(self):
        bus, _ = _make_bus(history_size=3)
        for i in range(5):
            bus.publish(EventType.REPORT_CREATED, f"t{i}")

        assert [e.sequence for e in bus.events_since(0)] == [3, 4, 5]
        assert [e.sequence for e in bus.events_since(4)] == [5]
        assert bus.last_sequence == 5
