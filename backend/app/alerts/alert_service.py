"""
alert_service.py — Orchestration facade for the geo-alert engine.

Wires the moving parts together and is the only object the HTTP layer
talks to:

    ┌──────────────┐  append   ┌──────────────┐  event   ┌────────────────────┐
    │ submit/      │ ────────▶ │  AlertStore  │ ───────▶ │  EventBus worker   │
    │ respond/     │           │ report:/     │          │  (creation order)  │
    │ reply        │           │ response:/   │          └─────────┬──────────┘
    └──────────────┘           │ reply:       │                    │
                               └──────┬───────┘                    ▼
                                      │                 ┌────────────────────┐
                                      │                 │ Notification-      │
                                      │                 │ Dispatcher notif:  │
                                      ▼                 └─────────┬──────────┘
                          ┌──────────────────────┐                │
                          │ ConversationAssembler│                ▼
                          └──────────────────────┘      ┌────────────────────┐
                                                        │ ReadStateTracker   │
                                                        │ read:<recipient>   │
                                                        └────────────────────┘

Appends return as soon as the record is committed; fan-out happens on
the bus worker. Call ``settle()`` to wait for it (tests, shutdown).

Usage:
    service = build_alert_service()
    await service.start()
    report = await service.submit_report(
        "citizen-1", "Explosion near the market", "attack",
        origin=Coordinate(34.08, 74.80), location_label="Srinagar",
    )
    await service.settle()
    await service.notifications_for("citizen-2", Coordinate(34.081, 74.801))
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, List, Optional, Set, Tuple, Union

from backend.app.alerts.alert_store import AlertStore
from backend.app.alerts.conversation import ConversationAssembler
from backend.app.alerts.dispatcher import NotificationDispatcher
from backend.app.alerts.events import EventBus
from backend.app.alerts.models import (
    AuthorRole,
    Conversation,
    ConversationEntry,
    Notification,
    NotificationKind,
    Reply,
    Report,
    ReportCategory,
    Response,
    Thread,
)
from backend.app.alerts.read_state import ReadStateTracker
from backend.app.core.config import Settings, settings as default_settings
from backend.app.core.storage import KeyValueStore, create_store
from backend.app.spatial.geo_index import Coordinate, GeoPoint

logger = logging.getLogger(__name__)


class GeoAlertService:

    def __init__(self, kv: KeyValueStore, config: Optional[Settings] = None):
        config = config or default_settings
        self.config = config
        self.kv = kv
        self.bus = EventBus(history_size=config.EVENT_HISTORY_SIZE)
        self.store = AlertStore(kv, self.bus)
        self.dispatcher = NotificationDispatcher(
            kv, self.store, self.bus,
            radius_km=config.DEFAULT_ALERT_RADIUS_KM,
            timeout_seconds=config.DISPATCH_TIMEOUT_SECONDS,
            degradation_log_size=config.DEGRADATION_LOG_SIZE,
            fallback_label=config.LOCATION_FALLBACK_LABEL,
        )
        self.read_state = ReadStateTracker(kv, self.dispatcher)
        self.assembler = ConversationAssembler(self.store)

    # ── Lifecycle ──

    async def start(self) -> None:
        await self.bus.start()

    async def settle(self) -> None:
        """Wait until every pending event has been fanned out."""
        await self.bus.drain()

    async def close(self) -> None:
        await self.bus.stop()
        await self.kv.close()

    async def __aenter__(self) -> "GeoAlertService":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ── Threads ──

    async def submit_report(
        self,
        author_id: str,
        text: str,
        category: Union[ReportCategory, str] = ReportCategory.GENERAL,
        *,
        origin: Optional[Coordinate] = None,
        location_label: Optional[str] = None,
        author_role: Union[AuthorRole, str] = AuthorRole.CIVILIAN,
        report_id: str = "",
    ) -> Report:
        report = Report(
            id=report_id,
            author_id=author_id,
            text=text,
            category=ReportCategory(category),
            origin=origin,
            location_label=location_label,
            author_role=AuthorRole(author_role),
        )
        stored_id = await self.store.append_report(report)
        return await self.store.get_report(stored_id)

    async def respond(self, thread_id: str, author_id: str, text: str) -> Response:
        return await self.store.append_response(
            Response(thread_id=thread_id, author_id=author_id, text=text)
        )

    async def reply(self, thread_id: str, author_id: str, text: str) -> Reply:
        return await self.store.append_reply(
            Reply(thread_id=thread_id, author_id=author_id, text=text)
        )

    async def delete_thread(self, thread_id: str) -> bool:
        return await self.store.delete_thread(thread_id)

    async def get_thread(self, thread_id: str) -> Thread:
        return await self.store.get_thread(thread_id)

    async def conversation(self, thread_id: str) -> List[ConversationEntry]:
        return await self.assembler.assemble(thread_id)

    async def conversations_for(self, author_id: str) -> List[Conversation]:
        return await self.assembler.conversations_for(author_id)

    async def reports_by_author(self, author_id: str) -> List[Report]:
        return await self.store.list_reports_by_author(author_id)

    async def list_attack_reports(self) -> List[Tuple[Report, int]]:
        """Attack reports newest first, each with its current nearby count."""
        reports = await self.store.list_reports_by_category(ReportCategory.ATTACK)
        return [
            (report, await self.dispatcher.compute_nearby_count(report))
            for report in reports
        ]

    # ── Notifications ──

    async def notifications_for(
        self,
        recipient_id: str,
        location: Optional[Coordinate] = None,
    ) -> List[Notification]:
        return await self.dispatcher.notifications_for(recipient_id, location)

    async def unread_count(
        self,
        recipient_id: str,
        location: Optional[Coordinate] = None,
    ) -> int:
        visible = await self.notifications_for(recipient_id, location)
        return await self.read_state.unread_count(recipient_id, visible)

    async def mark_read(self, recipient_id: str, notification_id: str) -> bool:
        return await self.read_state.mark_read(recipient_id, notification_id)

    async def mark_all_read(
        self,
        recipient_id: str,
        location: Optional[Coordinate] = None,
    ) -> int:
        visible = await self.notifications_for(recipient_id, location)
        return await self.read_state.mark_all_read(recipient_id, visible)

    async def is_read(self, recipient_id: str, notification_id: str) -> bool:
        return await self.read_state.is_read(recipient_id, notification_id)

    async def clear_read_state(self, recipient_id: str) -> None:
        await self.read_state.clear_all(recipient_id)

    async def dismiss(self, recipient_id: str, notification_id: str) -> None:
        await self.read_state.dismiss(recipient_id, notification_id)

    async def notify_user(
        self,
        recipient_id: str,
        title: str,
        message: str,
        kind: Union[NotificationKind, str] = NotificationKind.GENERAL,
    ) -> Notification:
        return await self.dispatcher.notify_user(
            recipient_id, title, message, NotificationKind(kind),
        )

    async def map_points(self) -> List[GeoPoint]:
        """Geo-scoped notifications as map markers at their circle center."""
        points: List[GeoPoint] = []
        for n in await self.dispatcher.list_notifications():
            scope = n.geo_scope
            if scope is None:
                continue
            points.append(GeoPoint(
                id=n.id,
                latitude=scope.center.latitude,
                longitude=scope.center.longitude,
                kind=n.kind.value,
            ))
        return points

    async def poll_notifications(
        self,
        recipient_id: str,
        location: Optional[Coordinate] = None,
        *,
        interval: Optional[float] = None,
        max_polls: Optional[int] = None,
    ) -> AsyncIterator[List[Notification]]:
        """
        Yield batches of notifications that became visible since the last
        poll. The first batch holds everything visible right now; empty
        polls yield nothing.
        """
        interval = self.config.POLL_INTERVAL_SECONDS if interval is None else interval
        seen: Set[str] = set()
        polls = 0
        while max_polls is None or polls < max_polls:
            polls += 1
            visible = await self.notifications_for(recipient_id, location)
            fresh = [n for n in visible if n.id not in seen]
            seen.update(n.id for n in fresh)
            if fresh:
                yield fresh
            if max_polls is not None and polls >= max_polls:
                break
            await asyncio.sleep(interval)


def build_alert_service(config: Optional[Settings] = None) -> GeoAlertService:
    """Service on the substrate selected by ``STORAGE_BACKEND``."""
    config = config or default_settings
    service = GeoAlertService(create_store(config), config)
    logger.info(
        "Alert service built (storage=%s, radius=%.1f km)",
        config.STORAGE_BACKEND, config.DEFAULT_ALERT_RADIUS_KM,
    )
    return service
