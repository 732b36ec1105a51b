"""
alert_store.py — Append-only store for reports, responses and replies.

Records are written once under a type prefix and never updated:

    report:<id>     root of a thread (thread_id == report id)
    response:<id>   government response, points at its thread
    reply:<id>      citizen follow-up, points at its thread

A Thread is never stored; ``get_thread`` rebuilds it by scanning the
response/reply prefixes. Deletion cascades over all three prefixes.

Every committed mutation publishes a DomainEvent while the store lock is
still held, so event sequence order is commit order.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import datetime
from typing import List, Optional

from backend.app.alerts.events import EventBus
from backend.app.alerts.models import (
    AuthorRole,
    EventType,
    Reply,
    Report,
    ReportCategory,
    Response,
    Thread,
    as_utc,
    generate_id,
    utc_now,
)
from backend.app.core.errors import NotFoundError, ThreadNotFound, ValidationError
from backend.app.core.storage import KeyValueStore

logger = logging.getLogger(__name__)

REPORT_PREFIX = "report:"
RESPONSE_PREFIX = "response:"
REPLY_PREFIX = "reply:"


def _require_text(value: Optional[str], field: str) -> None:
    if not value or not value.strip():
        raise ValidationError(f"'{field}' must not be empty", field=field)


def validate_report(report: Report) -> None:
    """Reject a report that must not be created. Raises ValidationError."""
    _require_text(report.author_id, "author_id")
    _require_text(report.text, "text")

    has_label = bool(report.location_label and report.location_label.strip())

    if report.category == ReportCategory.ATTACK:
        if report.origin is None and not has_label:
            raise ValidationError(
                "Location Required: attack reports need a GPS origin or a location",
                field="origin",
            )
    elif report.origin is not None:
        raise ValidationError(
            f"Only attack reports carry an origin, got category "
            f"'{report.category.value}'",
            field="origin",
        )

    if (report.category == ReportCategory.INSTRUCTION
            and report.author_role != AuthorRole.GOVERNMENT):
        raise ValidationError(
            "Instructions can only be issued by government accounts",
            field="author_role",
        )


def _stamp(ts: Optional[datetime]) -> datetime:
    return as_utc(ts) if ts is not None else utc_now()


def _not_before_root(ts: datetime, root: Report) -> None:
    if ts < root.created_at:
        raise ValidationError(
            f"Entry predates its thread ('{root.id}' created "
            f"{root.created_at.isoformat()})",
            field="created_at",
        )


def _newest_first(reports: List[Report]) -> List[Report]:
    return sorted(reports, key=lambda r: (r.created_at, r.id), reverse=True)


class AlertStore:
    """Thread-keyed record store on top of a KeyValueStore."""

    def __init__(self, kv: KeyValueStore, bus: EventBus):
        self._kv = kv
        self._bus = bus
        self._lock = asyncio.Lock()

    # ── Appends ──

    async def append_report(self, report: Report) -> str:
        validate_report(report)
        report = replace(
            report,
            id=report.id or generate_id(),
            created_at=_stamp(report.created_at),
        )

        async with self._lock:
            key = REPORT_PREFIX + report.id
            if await self._kv.get(key) is not None:
                raise ValidationError(
                    f"Report '{report.id}' already exists", field="id",
                )
            await self._kv.set(key, report.to_dict())
            self._bus.publish(EventType.REPORT_CREATED, report.id, report)

        logger.info(
            "Report stored: %s (%s)", report.id, report.category.value,
            extra={"report_id": report.id, "thread_id": report.id},
        )
        return report.id

    async def append_response(self, response: Response) -> Response:
        _require_text(response.author_id, "author_id")
        _require_text(response.text, "text")

        async with self._lock:
            root = await self._load_report(response.thread_id)
            if root is None:
                raise ThreadNotFound(response.thread_id)

            created_at = _stamp(response.created_at)
            _not_before_root(created_at, root)
            response = replace(
                response,
                id=response.id or generate_id(),
                created_at=created_at,
                origin=root.origin,
                location_label=root.location_label,
            )
            await self._kv.set(RESPONSE_PREFIX + response.id, response.to_dict())
            self._bus.publish(EventType.RESPONSE_CREATED, response.thread_id, response)

        logger.info(
            "Response stored on thread %s", response.thread_id,
            extra={"thread_id": response.thread_id},
        )
        return response

    async def append_reply(self, reply: Reply) -> Reply:
        _require_text(reply.author_id, "author_id")
        _require_text(reply.text, "text")

        async with self._lock:
            root = await self._load_report(reply.thread_id)
            if root is None:
                raise ThreadNotFound(reply.thread_id)

            created_at = _stamp(reply.created_at)
            _not_before_root(created_at, root)
            reply = replace(
                reply,
                id=reply.id or generate_id(),
                created_at=created_at,
            )
            await self._kv.set(REPLY_PREFIX + reply.id, reply.to_dict())
            self._bus.publish(EventType.REPLY_CREATED, reply.thread_id, reply)

        logger.info(
            "Reply stored on thread %s", reply.thread_id,
            extra={"thread_id": reply.thread_id},
        )
        return reply

    # ── Reads ──

    async def _load_report(self, report_id: str) -> Optional[Report]:
        raw = await self._kv.get(REPORT_PREFIX + report_id)
        return Report.from_dict(raw) if raw is not None else None

    async def get_report(self, report_id: str) -> Report:
        report = await self._load_report(report_id)
        if report is None:
            raise NotFoundError("Report", report_id=report_id)
        return report

    async def get_thread(self, thread_id: str) -> Thread:
        report = await self._load_report(thread_id)
        if report is None:
            raise NotFoundError("Thread", thread_id=thread_id)

        responses = [
            Response.from_dict(raw)
            async for _, raw in self._kv.iterate(RESPONSE_PREFIX)
            if raw.get("thread_id") == thread_id
        ]
        replies = [
            Reply.from_dict(raw)
            async for _, raw in self._kv.iterate(REPLY_PREFIX)
            if raw.get("thread_id") == thread_id
        ]
        responses.sort(key=lambda r: (r.created_at, r.id))
        replies.sort(key=lambda r: (r.created_at, r.id))
        return Thread(report=report, responses=responses, replies=replies)

    async def list_reports(self) -> List[Report]:
        reports = [Report.from_dict(raw) async for _, raw in self._kv.iterate(REPORT_PREFIX)]
        return _newest_first(reports)

    async def list_reports_by_category(self, category: ReportCategory) -> List[Report]:
        return [r for r in await self.list_reports() if r.category == category]

    async def list_reports_by_author(self, author_id: str) -> List[Report]:
        return [r for r in await self.list_reports() if r.author_id == author_id]

    # ── Deletion ──

    async def delete_thread(self, thread_id: str) -> bool:
        """
        Remove a report and everything appended under it.

        Idempotent: deleting a missing thread returns False and publishes
        nothing.
        """
        async with self._lock:
            removed = 0
            if await self._kv.delete(REPORT_PREFIX + thread_id):
                removed += 1

            for prefix in (RESPONSE_PREFIX, REPLY_PREFIX):
                doomed = [
                    key async for key, raw in self._kv.iterate(prefix)
                    if raw.get("thread_id") == thread_id
                ]
                for key in doomed:
                    if await self._kv.delete(key):
                        removed += 1

            if removed:
                self._bus.publish(EventType.THREAD_DELETED, thread_id)

        if removed:
            logger.info(
                "Thread %s deleted (%d record(s))", thread_id, removed,
                extra={"thread_id": thread_id},
            )
        return removed > 0
