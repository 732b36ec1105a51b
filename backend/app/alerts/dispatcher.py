"""
dispatcher.py — Geo-scoped notification fan-out.

Consumes ``report.created`` and ``response.created`` from the event bus
and turns them into Notification records addressed to a circle rather than
to a list of people:

═══════════════════════════════════════════════════════════════════════════
FAN-OUT RULES
═══════════════════════════════════════════════════════════════════════════

    Trigger                        Notification id               kind
    ───────────────────────        ──────────────────────        ──────
    attack report with origin      alert_<reportId>              threat
    response on origin thread      govresponse_notif_<respId>    info
    government direct notice       notif_<uuid>                  any

Both geo-scoped kinds target ``geo:<lat>,<lon>,<radiusKm>`` around the
report origin (default radius 10 km). Recipients decide membership
themselves with ``is_visible_to``: the engine never holds a population
list.

A report whose location was typed in by hand (label only, no origin)
yields no geo notification. That is a degradation, not an error.

═══════════════════════════════════════════════════════════════════════════
FAILURE ISOLATION
═══════════════════════════════════════════════════════════════════════════

Fan-out runs on the event bus worker after the append has returned.
Every failure (missing origin, vanished thread, storage error, timeout)
becomes a DispatchDegraded entry in ``degradations`` and a WARNING log
line. The report/response that triggered it stays committed.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Awaitable, Deque, Dict, List, Optional

from backend.app.alerts.alert_store import AlertStore
from backend.app.alerts.events import EventBus
from backend.app.alerts.models import (
    DomainEvent,
    EventType,
    GeoScope,
    Notification,
    NotificationKind,
    NotificationSource,
    Report,
    ReportCategory,
    Response,
    generate_id,
    parse_recipient_scope,
)
from backend.app.core.errors import (
    DispatchDegraded,
    GeoAlertError,
    NotFoundError,
    ValidationError,
)
from backend.app.core.storage import KeyValueStore
from backend.app.spatial.geo_index import (
    Coordinate,
    GeoPoint,
    is_inside_radius,
    within_radius,
)

logger = logging.getLogger(__name__)

NOTIFICATION_PREFIX = "notif:"


# ═══════════════════════════════════════════════════════════════════════════
# Recipient self-filter
# ═══════════════════════════════════════════════════════════════════════════

def is_visible_to(
    notification: Notification,
    recipient_id: str,
    location: Optional[Coordinate] = None,
) -> bool:
    """
    Whether a recipient should see a notification.

    User scope: the recipient id must match.
    Geo scope: the recipient must be inside the circle (boundary and
    distance 0 included). A recipient whose location is unknown sees every
    geo notification.
    """
    scope = parse_recipient_scope(notification.recipient_scope)
    if not isinstance(scope, GeoScope):
        return scope == recipient_id
    if location is None:
        return True
    inside, _ = is_inside_radius(scope.center, location, scope.radius_km)
    return inside


def _newest_first(notifications: List[Notification]) -> List[Notification]:
    return sorted(notifications, key=lambda n: (n.created_at, n.id), reverse=True)


# ═══════════════════════════════════════════════════════════════════════════
# Dispatcher
# ═══════════════════════════════════════════════════════════════════════════

class NotificationDispatcher:
    """Owns Notification records; subscribes to store events."""

    def __init__(
        self,
        kv: KeyValueStore,
        store: AlertStore,
        bus: EventBus,
        *,
        radius_km: float = 10.0,
        timeout_seconds: float = 5.0,
        degradation_log_size: int = 200,
        fallback_label: str = "Location",
    ):
        self._kv = kv
        self._store = store
        self._radius_km = radius_km
        self._timeout = timeout_seconds
        self._fallback_label = fallback_label
        self._lock = asyncio.Lock()
        self.degradations: Deque[DispatchDegraded] = deque(maxlen=degradation_log_size)

        bus.subscribe(EventType.REPORT_CREATED, self._on_report_created)
        bus.subscribe(EventType.RESPONSE_CREATED, self._on_response_created)

    @property
    def radius_km(self) -> float:
        return self._radius_km

    # ── Event handlers ──

    async def _on_report_created(self, event: DomainEvent) -> None:
        if isinstance(event.record, Report):
            await self._guarded(event.record.id, self.dispatch_report(event.record))

    async def _on_response_created(self, event: DomainEvent) -> None:
        if isinstance(event.record, Response):
            await self._guarded(event.record.id, self.dispatch_response(event.record))

    async def _guarded(self, source_id: str, work: Awaitable) -> None:
        try:
            await asyncio.wait_for(work, timeout=self._timeout)
        except DispatchDegraded as exc:
            self._degrade(exc)
        except asyncio.TimeoutError:
            self._degrade(DispatchDegraded(
                source_id, f"timed out after {self._timeout:.1f}s",
            ))
        except GeoAlertError as exc:
            self._degrade(DispatchDegraded(source_id, exc.message))
        except Exception as exc:
            logger.exception("Unexpected dispatch failure for %s", source_id)
            self._degrade(DispatchDegraded(source_id, f"{type(exc).__name__}: {exc}"))

    def _degrade(self, exc: DispatchDegraded) -> None:
        self.degradations.append(exc)
        logger.warning(
            "Dispatch degraded for %s: %s", exc.source_id, exc.reason,
            extra={"report_id": exc.source_id},
        )

    # ── Fan-out ──

    def _label(self, label: Optional[str]) -> str:
        return label if label and label.strip() else self._fallback_label

    def _scope(self, origin: Coordinate) -> str:
        return GeoScope(center=origin, radius_km=self._radius_km).to_scope()

    async def _attack_points(self) -> List[GeoPoint]:
        reports = await self._store.list_reports_by_category(ReportCategory.ATTACK)
        return [
            GeoPoint(r.id, r.origin.latitude, r.origin.longitude, "attack")
            for r in reports if r.origin is not None
        ]

    async def compute_nearby_count(self, report: Report) -> int:
        """Other origin-bearing attack reports within the alert radius, right now."""
        if report.origin is None:
            return 0
        points = [p for p in await self._attack_points() if p.id != report.id]
        return len(within_radius(report.origin, points, self._radius_km))

    async def _nearby_at_submission(self, report: Report) -> int:
        # Only reports that already existed when this one was submitted
        existing = {
            r.id for r in await self._store.list_reports_by_category(ReportCategory.ATTACK)
            if r.id != report.id and r.created_at <= report.created_at
        }
        points = [p for p in await self._attack_points() if p.id in existing]
        return len(within_radius(report.origin, points, self._radius_km))

    async def dispatch_report(self, report: Report) -> Optional[Notification]:
        """Broadcast a threat notification for an attack report."""
        if report.category != ReportCategory.ATTACK:
            return None
        if report.origin is None:
            raise DispatchDegraded(report.id, "no GPS origin (manual location)")

        label = self._label(report.location_label)
        nearby = await self._nearby_at_submission(report)
        notification = Notification(
            id=f"alert_{report.id}",
            source_id=report.id,
            recipient_scope=self._scope(report.origin),
            title=f"CITIZEN ALERT: Attack reported in {label}",
            message=(
                "A citizen has reported an attack. Stay alert and follow "
                f"government instructions. Location: {label}"
            ),
            kind=NotificationKind.THREAT,
            source=NotificationSource.CITIZEN_REPORT,
            metadata={
                "thread_id": report.id,
                "nearby_count": nearby,
                "location_label": label,
            },
        )
        await self._save(notification)
        logger.info(
            "Threat notification %s broadcast (%d nearby)", notification.id, nearby,
            extra={"notification_id": notification.id, "thread_id": report.id,
                   "nearby_count": nearby},
        )
        return notification

    async def dispatch_response(self, response: Response) -> Optional[Notification]:
        """Re-broadcast a government response to the thread's circle."""
        try:
            root = await self._store.get_report(response.thread_id)
        except NotFoundError:
            raise DispatchDegraded(
                response.id, f"thread {response.thread_id} no longer exists",
            ) from None

        if root.category != ReportCategory.ATTACK:
            return None
        if response.origin is None:
            raise DispatchDegraded(response.id, "thread has no GPS origin (manual location)")

        label = self._label(response.location_label)
        notification = Notification(
            id=f"govresponse_notif_{response.id}",
            source_id=response.id,
            recipient_scope=self._scope(response.origin),
            title=f"Government Response: {label}",
            message=(
                f"Government has responded to the attack report in {label}: "
                f"{response.text}"
            ),
            kind=NotificationKind.INFO,
            source=NotificationSource.GOVERNMENT_RESPONSE,
            metadata={"thread_id": response.thread_id, "location_label": label},
        )
        await self._save(notification)
        logger.info(
            "Response notification %s broadcast", notification.id,
            extra={"notification_id": notification.id,
                   "thread_id": response.thread_id},
        )
        return notification

    async def notify_user(
        self,
        recipient_id: str,
        title: str,
        message: str,
        kind: NotificationKind = NotificationKind.GENERAL,
    ) -> Notification:
        """
        Direct notice from government to one user (or to a ``geo:`` scope).
        """
        if not recipient_id or not recipient_id.strip():
            raise ValidationError("'recipient_id' must not be empty", field="recipient_id")
        if not title or not title.strip():
            raise ValidationError("'title' must not be empty", field="title")
        parse_recipient_scope(recipient_id)

        notification_id = f"notif_{generate_id()}"
        notification = Notification(
            id=notification_id,
            source_id=notification_id,
            recipient_scope=recipient_id,
            title=title,
            message=message,
            kind=kind,
            source=NotificationSource.DIRECT,
        )
        await self._save(notification)
        logger.info(
            "Direct notification %s sent", notification.id,
            extra={"notification_id": notification.id, "recipient_id": recipient_id},
        )
        return notification

    # ── Storage ──

    async def _save(self, notification: Notification) -> None:
        async with self._lock:
            await self._kv.set(NOTIFICATION_PREFIX + notification.id, notification.to_dict())

    async def list_notifications(self) -> List[Notification]:
        items = [
            Notification.from_dict(raw)
            async for _, raw in self._kv.iterate(NOTIFICATION_PREFIX)
        ]
        return _newest_first(items)

    async def get_notification(self, notification_id: str) -> Notification:
        raw = await self._kv.get(NOTIFICATION_PREFIX + notification_id)
        if raw is None:
            raise NotFoundError("Notification", notification_id=notification_id)
        return Notification.from_dict(raw)

    async def notifications_for(
        self,
        recipient_id: str,
        location: Optional[Coordinate] = None,
    ) -> List[Notification]:
        return [
            n for n in await self.list_notifications()
            if is_visible_to(n, recipient_id, location)
        ]

    async def acknowledge(self, notification_id: str) -> None:
        """Delete a notification for every recipient."""
        async with self._lock:
            removed = await self._kv.delete(NOTIFICATION_PREFIX + notification_id)
        if not removed:
            raise NotFoundError("Notification", notification_id=notification_id)
        logger.info(
            "Notification %s acknowledged and deleted", notification_id,
            extra={"notification_id": notification_id},
        )

    def degradation_summary(self) -> Dict[str, int]:
        summary: Dict[str, int] = {}
        for d in self.degradations:
            summary[d.reason] = summary.get(d.reason, 0) + 1
        return summary
