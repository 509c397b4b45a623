"""Conversation state and message persistence.

The store is the single authoritative source for resuming a conversation: a
ConversationRecord holds phase, emotion and funnel bookkeeping, and the
ordered MessageRecords hold the history. Any context cache in front of it is
an optimization only.

Writers serialize per conversation id through ``lock(conversation_id)``, so
two concurrent turns in the same conversation never interleave their state
mutations. Different conversations never contend. A lock lives only as long
as someone holds or waits on it, so ended conversations leave nothing behind.

The shipped implementation keeps everything in process memory; a persistent
backend only needs to provide the same async methods.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from typing import Any

from pydantic import BaseModel

from src.knowledge.models import (
    ConversationRecord,
    ConversationStatus,
    MessageRecord,
)

logger = logging.getLogger(__name__)


class ConversationNotFoundError(KeyError):
    """Raised when an operation targets an unknown conversation id."""

    def __init__(self, conversation_id: str) -> None:
        super().__init__(conversation_id)
        self.conversation_id = conversation_id

    def __str__(self) -> str:
        return f"Conversation not found: {self.conversation_id}"


class ConversationStats(BaseModel):
    """Aggregate funnel counters over every stored conversation."""

    total_conversations: int = 0
    active_conversations: int = 0
    converted_conversations: int = 0
    conversion_rate: float = 0.0


class ConversationStore:
    """In-memory conversation store with per-conversation writer locks.

    Records are copied on the way in and out so callers can never mutate
    stored state without going through ``update``.
    """

    def __init__(self) -> None:
        self._conversations: dict[str, ConversationRecord] = {}
        self._messages: dict[str, list[MessageRecord]] = {}
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def lock(self, conversation_id: str) -> asyncio.Lock:
        """Writer lock for one conversation id.

        Usage::

            async with store.lock(conversation_id):
                ...
        """
        return self._locks.setdefault(conversation_id, asyncio.Lock())

    async def create(self, record: ConversationRecord) -> ConversationRecord:
        """Persist a new conversation.

        Raises:
            ValueError: If a conversation with the same id already exists.
        """
        if record.id in self._conversations:
            raise ValueError(f"Conversation already exists: {record.id}")
        self._conversations[record.id] = record.model_copy(deep=True)
        self._messages[record.id] = []
        logger.info(
            "Created conversation %s on %s channel %s",
            record.id,
            record.channel_type.value,
            record.channel_id,
        )
        return record.model_copy(deep=True)

    async def get(self, conversation_id: str) -> ConversationRecord | None:
        """Return a copy of the conversation, or None if unknown."""
        record = self._conversations.get(conversation_id)
        return record.model_copy(deep=True) if record is not None else None

    async def update(self, conversation_id: str, **changes: Any) -> ConversationRecord:
        """Apply a partial update and return the new record.

        Args:
            conversation_id: Conversation to update.
            **changes: Field values to overwrite; validated by the model.

        Raises:
            ConversationNotFoundError: If the id is unknown.
            ValueError: If a change names a field the record does not have.
        """
        current = self._conversations.get(conversation_id)
        if current is None:
            raise ConversationNotFoundError(conversation_id)

        unknown = set(changes) - set(ConversationRecord.model_fields)
        if unknown:
            raise ValueError(f"Unknown conversation fields: {sorted(unknown)}")

        updated = ConversationRecord.model_validate(
            {**current.model_dump(), **changes, "id": conversation_id}
        )
        self._conversations[conversation_id] = updated
        logger.debug("Updated conversation %s: %s", conversation_id, sorted(changes))
        return updated.model_copy(deep=True)

    async def append_message(self, message: MessageRecord) -> MessageRecord:
        """Persist a message and bump the conversation's counters.

        Raises:
            ConversationNotFoundError: If the owning conversation is unknown.
        """
        current = self._conversations.get(message.conversation_id)
        if current is None:
            raise ConversationNotFoundError(message.conversation_id)

        self._messages[message.conversation_id].append(message.model_copy(deep=True))
        self._conversations[message.conversation_id] = current.model_copy(
            update={
                "message_count": current.message_count + 1,
                "last_activity_at": message.created_at,
            }
        )
        logger.debug(
            "Stored %s message %s for conversation %s",
            message.role.value,
            message.id,
            message.conversation_id,
        )
        return message

    async def list_messages(
        self, conversation_id: str, limit: int | None = None
    ) -> list[MessageRecord]:
        """Messages of a conversation in insertion order.

        Args:
            conversation_id: Conversation to read.
            limit: When given, only the most recent ``limit`` messages.

        Raises:
            ConversationNotFoundError: If the id is unknown.
        """
        if conversation_id not in self._messages:
            raise ConversationNotFoundError(conversation_id)
        messages = self._messages[conversation_id]
        if limit is not None:
            messages = messages[-limit:] if limit > 0 else []
        return [m.model_copy(deep=True) for m in messages]

    async def stats(self) -> ConversationStats:
        """Total, active and converted counts plus the conversion rate."""
        records = list(self._conversations.values())
        total = len(records)
        active = sum(1 for r in records if r.status == ConversationStatus.ACTIVE)
        converted = sum(1 for r in records if r.status == ConversationStatus.CONVERTED)
        return ConversationStats(
            total_conversations=total,
            active_conversations=active,
            converted_conversations=converted,
            conversion_rate=converted / total if total else 0.0,
        )
