"""
events.py — In-process domain event bus.

AlertStore publishes one DomainEvent per committed mutation; the
NotificationDispatcher (and anything else interested) subscribes by event
type. Two delivery paths exist side by side:

    push   — subscribe(event_type, handler): one worker task drains an
             asyncio.Queue and awaits each handler in publish order
    poll   — events_since(sequence): bounded history for consumers that
             prefer to ask "what happened after N?"

Publishing never blocks and never runs a handler inline, so an append
returns as soon as its record is committed. Handler failures are logged
and do not stop delivery to the remaining handlers.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections import deque
from typing import Awaitable, Callable, Deque, Dict, List, Optional

from backend.app.alerts.models import DomainEvent, EventType, Record

logger = logging.getLogger(__name__)

Handler = Callable[[DomainEvent], Awaitable[None]]


class EventBus:
    """Sequenced publish/subscribe with creation-order delivery."""

    def __init__(self, history_size: int = 1000):
        self._subscribers: Dict[EventType, List[Handler]] = {}
        self._history: Deque[DomainEvent] = deque(maxlen=history_size)
        self._sequence = itertools.count(1)
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self.delivered = 0
        self.failed = 0

    # ── Subscription ──

    def subscribe(self, event_type: EventType, handler: Handler) -> None:
        self._subscribers.setdefault(event_type, []).append(handler)

    # ── Publishing ──

    def publish(
        self,
        event_type: EventType,
        thread_id: str,
        record: Optional[Record] = None,
    ) -> DomainEvent:
        """
        Sequence, record and enqueue an event. Synchronous:
        callers hold their mutation lock while publishing, so sequence
        order equals commit order.
        """
        event = DomainEvent(
            sequence=next(self._sequence),
            event_type=event_type,
            thread_id=thread_id,
            record=record,
        )
        self._history.append(event)
        if self._queue is not None:
            self._queue.put_nowait(event)
        logger.debug(
            "Event published: %s #%d",
            event_type.value, event.sequence,
            extra={"event": event_type.value, "sequence": event.sequence,
                   "thread_id": thread_id},
        )
        return event

    def events_since(self, sequence: int = 0) -> List[DomainEvent]:
        """History entries with a sequence greater than ``sequence``."""
        return [e for e in self._history if e.sequence > sequence]

    @property
    def last_sequence(self) -> int:
        return self._history[-1].sequence if self._history else 0

    # ── Worker lifecycle ──

    @property
    def is_running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    async def start(self) -> None:
        if self.is_running:
            return
        self._queue = asyncio.Queue()
        self._worker = asyncio.create_task(self._run(), name="event-bus-worker")
        logger.info("Event bus started")

    async def drain(self) -> None:
        """Wait until every event published so far has been delivered."""
        if self._queue is not None and self.is_running:
            await self._queue.join()

    async def stop(self) -> None:
        if self._worker is None:
            return
        await self.drain()
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        self._queue = None
        logger.info(
            "Event bus stopped (delivered=%d, failed=%d)",
            self.delivered, self.failed,
        )

    async def _run(self) -> None:
        assert self._queue is not None
        while True:
            event = await self._queue.get()
            try:
                await self._deliver(event)
            finally:
                self._queue.task_done()

    async def _deliver(self, event: DomainEvent) -> None:
        for handler in list(self._subscribers.get(event.event_type, [])):
            try:
                await handler(event)
                self.delivered += 1
            except Exception:
                self.failed += 1
                logger.exception(
                    "Subscriber %s failed on %s #%d",
                    getattr(handler, "__qualname__", handler),
                    event.event_type.value, event.sequence,
                    extra={"event": event.event_type.value,
                           "thread_id": event.thread_id},
                )
