"""
conversation.py — Render threads as ordered, role-labelled conversations.

Ordering of an assembled thread:

    1. the root report (role=reporter), always first
    2. responses (role=government) and replies (role=citizen-reply),
       ascending by created_at; on equal timestamps a response comes
       before a reply, then ids break the remaining ties

A one-entry conversation means the report is still awaiting a response.
"""

from __future__ import annotations

import logging
from typing import List, Tuple

from backend.app.alerts.alert_store import AlertStore
from backend.app.alerts.models import (
    Conversation,
    ConversationEntry,
    MessageRole,
    Thread,
)
from backend.app.core.errors import NotFoundError

logger = logging.getLogger(__name__)

# Tie-break rank on equal timestamps
_ROLE_RANK = {
    MessageRole.GOVERNMENT: 0,
    MessageRole.CITIZEN_REPLY: 1,
}


def _sort_key(entry: ConversationEntry) -> Tuple:
    return entry.created_at, _ROLE_RANK[entry.role], entry.entry_id


def entries_for(thread: Thread) -> List[ConversationEntry]:
    root = thread.report
    head = ConversationEntry(
        entry_id=root.id,
        role=MessageRole.REPORTER,
        text=root.text,
        author_id=root.author_id,
        created_at=root.created_at,
    )
    tail = [
        ConversationEntry(r.id, MessageRole.GOVERNMENT, r.text, r.author_id, r.created_at)
        for r in thread.responses
    ] + [
        ConversationEntry(r.id, MessageRole.CITIZEN_REPLY, r.text, r.author_id, r.created_at)
        for r in thread.replies
    ]
    tail.sort(key=_sort_key)
    return [head] + tail


class ConversationAssembler:

    def __init__(self, store: AlertStore):
        self._store = store

    async def assemble(self, thread_id: str) -> List[ConversationEntry]:
        thread = await self._store.get_thread(thread_id)
        return entries_for(thread)

    async def conversations_for(self, author_id: str) -> List[Conversation]:
        """
        The citizen's answered threads, most recently responded-to first.
        Unanswered reports are left out.
        """
        conversations: List[Conversation] = []
        for report in await self._store.list_reports_by_author(author_id):
            try:
                thread = await self._store.get_thread(report.id)
            except NotFoundError:
                continue  # deleted meanwhile
            if not thread.is_answered:
                continue
            conversations.append(Conversation(
                thread_id=thread.id,
                report=report,
                entries=entries_for(thread),
                response_count=len(thread.responses),
                last_activity=thread.responses[-1].created_at,
            ))

        conversations.sort(key=lambda c: (c.last_activity, c.thread_id), reverse=True)
        return conversations
