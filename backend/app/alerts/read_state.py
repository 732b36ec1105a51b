"""
read_state.py — Per-recipient read bookkeeping.

Each recipient owns one key, ``read:<recipient_id>``, holding the JSON list
of notification ids they have seen. Read state is never shared: marking a
notification read affects only that recipient's count.

``dismiss`` is the exception. It marks the notification read AND deletes it
from the shared store, so it disappears for every recipient.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable, Set

from backend.app.alerts.dispatcher import NotificationDispatcher
from backend.app.alerts.models import Notification
from backend.app.core.errors import ValidationError
from backend.app.core.storage import KeyValueStore

logger = logging.getLogger(__name__)

READ_PREFIX = "read:"


class ReadStateTracker:

    def __init__(self, kv: KeyValueStore, dispatcher: NotificationDispatcher):
        self._kv = kv
        self._dispatcher = dispatcher
        self._lock = asyncio.Lock()

    @staticmethod
    def _key(recipient_id: str) -> str:
        if not recipient_id or not recipient_id.strip():
            raise ValidationError("'recipient_id' must not be empty", field="recipient_id")
        return READ_PREFIX + recipient_id

    async def read_ids(self, recipient_id: str) -> Set[str]:
        raw = await self._kv.get(self._key(recipient_id))
        return set(raw.get("ids", [])) if raw else set()

    async def _write(self, recipient_id: str, ids: Set[str]) -> None:
        await self._kv.set(self._key(recipient_id), {"ids": sorted(ids)})

    async def is_read(self, recipient_id: str, notification_id: str) -> bool:
        return notification_id in await self.read_ids(recipient_id)

    async def mark_read(self, recipient_id: str, notification_id: str) -> bool:
        """Returns False when the id was already read."""
        async with self._lock:
            ids = await self.read_ids(recipient_id)
            if notification_id in ids:
                return False
            ids.add(notification_id)
            await self._write(recipient_id, ids)
        logger.debug(
            "Marked %s read", notification_id,
            extra={"recipient_id": recipient_id, "notification_id": notification_id},
        )
        return True

    async def mark_all_read(
        self,
        recipient_id: str,
        notifications: Iterable[Notification],
    ) -> int:
        """Mark every given notification read; returns how many were new."""
        async with self._lock:
            ids = await self.read_ids(recipient_id)
            before = len(ids)
            ids.update(n.id for n in notifications)
            added = len(ids) - before
            if added:
                await self._write(recipient_id, ids)
        return added

    async def unread_count(
        self,
        recipient_id: str,
        notifications: Iterable[Notification],
    ) -> int:
        ids = await self.read_ids(recipient_id)
        return sum(1 for n in notifications if n.id not in ids)

    async def clear_all(self, recipient_id: str) -> None:
        """Forget everything this recipient has read. Notifications stay."""
        async with self._lock:
            await self._kv.delete(self._key(recipient_id))
        logger.info("Read state cleared", extra={"recipient_id": recipient_id})

    async def dismiss(self, recipient_id: str, notification_id: str) -> None:
        """Delete the notification for everyone, then mark it read.

        A missing notification raises NotFoundError and leaves no read entry.
        """
        await self._dispatcher.acknowledge(notification_id)
        await self.mark_read(recipient_id, notification_id)
