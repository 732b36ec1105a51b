"""
models.py — Core data structures for the geo-alert engine.

Defines:
    - Enums for report category, author role, notification kind/source,
      conversation role and domain event type
    - Stored records: Report, Response, Reply, Notification
    - Derived views: Thread, ConversationEntry, Conversation
    - GeoScope, the "geo:<lat>,<lon>,<radiusKm>" recipient targeting scope
    - DomainEvent, published by AlertStore on every mutation

Stored records are frozen: once written they are never updated, only
deleted. Every record converts to and from a JSON-safe dict so the
persistence substrate never sees Python objects.

═══════════════════════════════════════════════════════════════════════════
KEY LAYOUT IN THE SUBSTRATE
═══════════════════════════════════════════════════════════════════════════

    Prefix           Record          Owner
    ──────────       ─────────       ──────────────────────
    report:<id>      Report          AlertStore
    response:<id>    Response        AlertStore
    reply:<id>       Reply           AlertStore
    notif:<id>       Notification    NotificationDispatcher
    read:<user>      [ids]           ReadStateTracker
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from backend.app.core.errors import ValidationError
from backend.app.spatial.geo_index import Coordinate


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class ReportCategory(str, Enum):
    ATTACK = "attack"
    GENERAL = "general"
    INSTRUCTION = "instruction"  # government-only


class AuthorRole(str, Enum):
    CIVILIAN = "civilian"
    GOVERNMENT = "government"


class NotificationKind(str, Enum):
    THREAT = "threat"
    INFO = "info"
    EVACUATION = "evacuation"
    GENERAL = "general"


class NotificationSource(str, Enum):
    CITIZEN_REPORT = "citizen_report"
    GOVERNMENT_RESPONSE = "government_response"
    DIRECT = "direct"


class MessageRole(str, Enum):
    REPORTER = "reporter"
    GOVERNMENT = "government"
    CITIZEN_REPLY = "citizen-reply"


class EventType(str, Enum):
    REPORT_CREATED = "report.created"
    RESPONSE_CREATED = "response.created"
    REPLY_CREATED = "reply.created"
    THREAD_DELETED = "thread.deleted"


# ═══════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════

def generate_id() -> str:
    return uuid.uuid4().hex


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(ts: datetime) -> datetime:
    """Naive timestamps are taken to be UTC; aware ones are converted."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _iso(ts: Optional[datetime]) -> Optional[str]:
    return ts.isoformat() if ts else None


def _parse_ts(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    return as_utc(datetime.fromisoformat(raw))


def _coord_or_none(raw: Optional[Dict[str, Any]]) -> Optional[Coordinate]:
    return Coordinate.from_dict(raw) if raw else None


# ═══════════════════════════════════════════════════════════════════════════
# Stored records
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Report:
    """
    A citizen-submitted incident (or a government instruction).

    Attributes
    ----------
    author_id : str
        Opaque identity of the submitter.
    text : str
        Free-form content.
    category : ReportCategory
        attack / general / instruction.
    id : str
        Assigned by AlertStore when empty.
    created_at : datetime | None
        Assigned by AlertStore when None.
    origin : Coordinate | None
        GPS position; present only for attack reports sent with a location.
    location_label : str | None
        Human-readable place name (reverse-geocoded or manually chosen).
    author_role : AuthorRole
        civilian or government.
    """
    author_id: str
    text: str
    category: ReportCategory
    id: str = ""
    created_at: Optional[datetime] = None
    origin: Optional[Coordinate] = None
    location_label: Optional[str] = None
    author_role: AuthorRole = AuthorRole.CIVILIAN

    @property
    def thread_id(self) -> str:
        return self.id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "author_id": self.author_id,
            "text": self.text,
            "category": self.category.value,
            "created_at": _iso(self.created_at),
            "origin": self.origin.to_dict() if self.origin else None,
            "location_label": self.location_label,
            "author_role": self.author_role.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Report":
        return cls(
            id=data["id"],
            author_id=data["author_id"],
            text=data["text"],
            category=ReportCategory(data["category"]),
            created_at=_parse_ts(data.get("created_at")),
            origin=_coord_or_none(data.get("origin")),
            location_label=data.get("location_label"),
            author_role=AuthorRole(data.get("author_role", AuthorRole.CIVILIAN.value)),
        )


@dataclass(frozen=True)
class Response:
    """A government reply to a report; carries the thread's location."""
    thread_id: str
    author_id: str
    text: str
    id: str = ""
    created_at: Optional[datetime] = None
    origin: Optional[Coordinate] = None
    location_label: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "thread_id": self.thread_id,
            "author_id": self.author_id,
            "text": self.text,
            "created_at": _iso(self.created_at),
            "origin": self.origin.to_dict() if self.origin else None,
            "location_label": self.location_label,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Response":
        return cls(
            id=data["id"],
            thread_id=data["thread_id"],
            author_id=data["author_id"],
            text=data["text"],
            created_at=_parse_ts(data.get("created_at")),
            origin=_coord_or_none(data.get("origin")),
            location_label=data.get("location_label"),
        )


@dataclass(frozen=True)
class Reply:
    """A citizen follow-up inside a thread."""
    thread_id: str
    author_id: str
    text: str
    id: str = ""
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "thread_id": self.thread_id,
            "author_id": self.author_id,
            "text": self.text,
            "created_at": _iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Reply":
        return cls(
            id=data["id"],
            thread_id=data["thread_id"],
            author_id=data["author_id"],
            text=data["text"],
            created_at=_parse_ts(data.get("created_at")),
        )


# ═══════════════════════════════════════════════════════════════════════════
# Geo-scope
# ═══════════════════════════════════════════════════════════════════════════

GEO_SCOPE_PREFIX = "geo:"


@dataclass(frozen=True)
class GeoScope:
    """Circle a broadcast notification targets: center + radius."""
    center: Coordinate
    radius_km: float

    def to_scope(self) -> str:
        return (
            f"{GEO_SCOPE_PREFIX}{self.center.latitude},"
            f"{self.center.longitude},{self.radius_km}"
        )

    @classmethod
    def parse(cls, scope: str) -> "GeoScope":
        """
        Parse ``geo:<lat>,<lon>,<radiusKm>``.

        >>> GeoScope.parse("geo:34.08,74.8,10.0").radius_km
        10.0
        """
        if not scope.startswith(GEO_SCOPE_PREFIX):
            raise ValidationError(f"Not a geo scope: '{scope}'", field="recipient_scope")
        parts = scope[len(GEO_SCOPE_PREFIX):].split(",")
        if len(parts) != 3:
            raise ValidationError(f"Malformed geo scope: '{scope}'", field="recipient_scope")
        try:
            lat, lon, radius = (float(p) for p in parts)
        except ValueError:
            raise ValidationError(
                f"Malformed geo scope: '{scope}'", field="recipient_scope",
            ) from None
        return cls(center=Coordinate(lat, lon), radius_km=radius)


def parse_recipient_scope(scope: str) -> Union[GeoScope, str]:
    """A GeoScope for broadcast scopes, otherwise the target user id."""
    if scope.startswith(GEO_SCOPE_PREFIX):
        return GeoScope.parse(scope)
    return scope


# ═══════════════════════════════════════════════════════════════════════════
# Notification
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Notification:
    """
    A fan-out record. Created once, never mutated, deleted on acknowledge.

    ``recipient_scope`` is either a user id (direct) or a geo scope string
    (broadcast); recipients decide for themselves whether a broadcast is
    theirs, see ``dispatcher.is_visible_to``.
    """
    id: str
    source_id: str
    recipient_scope: str
    title: str
    message: str
    kind: NotificationKind
    source: NotificationSource = NotificationSource.DIRECT
    created_at: datetime = field(default_factory=utc_now)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_broadcast(self) -> bool:
        return self.recipient_scope.startswith(GEO_SCOPE_PREFIX)

    @property
    def geo_scope(self) -> Optional[GeoScope]:
        return GeoScope.parse(self.recipient_scope) if self.is_broadcast else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "source_id": self.source_id,
            "recipient_scope": self.recipient_scope,
            "title": self.title,
            "message": self.message,
            "kind": self.kind.value,
            "source": self.source.value,
            "created_at": self.created_at.isoformat(),
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Notification":
        return cls(
            id=data["id"],
            source_id=data["source_id"],
            recipient_scope=data["recipient_scope"],
            title=data["title"],
            message=data["message"],
            kind=NotificationKind(data["kind"]),
            source=NotificationSource(data.get("source", NotificationSource.DIRECT.value)),
            created_at=_parse_ts(data["created_at"]),
            metadata=data.get("metadata") or {},
        )


# ═══════════════════════════════════════════════════════════════════════════
# Derived views
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class Thread:
    """A report plus everything appended under its id. Never stored."""
    report: Report
    responses: List[Response] = field(default_factory=list)
    replies: List[Reply] = field(default_factory=list)

    @property
    def id(self) -> str:
        return self.report.id

    @property
    def is_answered(self) -> bool:
        """False while the government has not responded yet."""
        return len(self.responses) > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "report": self.report.to_dict(),
            "responses": [r.to_dict() for r in self.responses],
            "replies": [r.to_dict() for r in self.replies],
            "is_answered": self.is_answered,
        }


@dataclass(frozen=True)
class ConversationEntry:
    """One rendered line of a thread."""
    entry_id: str
    role: MessageRole
    text: str
    author_id: str
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.entry_id,
            "role": self.role.value,
            "text": self.text,
            "author": self.author_id,
            "timestamp": self.created_at.isoformat(),
        }


@dataclass
class Conversation:
    """A citizen-facing thread summary: only answered threads qualify."""
    thread_id: str
    report: Report
    entries: List[ConversationEntry]
    response_count: int
    last_activity: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "thread_id": self.thread_id,
            "report": self.report.to_dict(),
            "entries": [e.to_dict() for e in self.entries],
            "response_count": self.response_count,
            "last_activity": self.last_activity.isoformat(),
        }


# ═══════════════════════════════════════════════════════════════════════════
# Domain events
# ═══════════════════════════════════════════════════════════════════════════

Record = Union[Report, Response, Reply]


@dataclass(frozen=True)
class DomainEvent:
    """Published by AlertStore after each committed mutation."""
    sequence: int
    event_type: EventType
    thread_id: str
    record: Optional[Record] = None
    occurred_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sequence": self.sequence,
            "event": self.event_type.value,
            "thread_id": self.thread_id,
            "record": self.record.to_dict() if self.record else None,
            "occurred_at": self.occurred_at.isoformat(),
        }
