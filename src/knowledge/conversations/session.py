"""Injected cache of live conversation contexts.

Keeps the working state of recently active conversations (record plus the
role/content history sent to the LLM) so a turn does not have to re-read the
full message list from the store. Entries expire after a TTL and the least
recently used entry is evicted when the cache is full. The store stays
authoritative: a cache miss is always answered by rebuilding from it.

Created explicitly and passed to the orchestrator, so every test gets an
isolated instance.
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from collections.abc import Callable
from threading import Lock

from pydantic import BaseModel, Field

from src.knowledge.config import KnowledgeConfig
from src.knowledge.models import ConversationRecord

logger = logging.getLogger(__name__)


class ChatMessage(BaseModel):
    """One turn of history as sent to the completion provider."""

    role: str
    content: str


class ConversationContext(BaseModel):
    """Working state of a conversation between turns.

    Attributes:
        conversation: Latest persisted conversation record.
        history: Ordered user/assistant turns for the LLM.
    """

    conversation: ConversationRecord
    history: list[ChatMessage] = Field(default_factory=list)


class ConversationContextCache:
    """TTL + LRU cache of ConversationContext keyed by conversation id.

    Args:
        ttl_seconds: Seconds an entry stays valid after its last write.
        max_size: Maximum number of cached conversations.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        ttl_seconds: float = 3600.0,
        max_size: int = 1024,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._max_size = max(1, max_size)
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, ConversationContext]] = OrderedDict()
        self._lock = Lock()

    @classmethod
    def from_config(cls, config: KnowledgeConfig) -> ConversationContextCache:
        return cls(
            ttl_seconds=config.conversation_ttl_seconds,
            max_size=config.conversation_cache_size,
        )

    def get(self, conversation_id: str) -> ConversationContext | None:
        """Return a copy of the cached context, or None if missing or expired."""
        now = self._clock()
        with self._lock:
            cached = self._entries.get(conversation_id)
            if cached is None:
                return None
            stored_at, context = cached
            if now - stored_at > self._ttl:
                self._entries.pop(conversation_id, None)
                logger.debug("Context for conversation %s expired", conversation_id)
                return None
            self._entries.move_to_end(conversation_id)
            return context.model_copy(deep=True)

    def put(self, context: ConversationContext) -> None:
        """Store (or refresh) a context, evicting the oldest entries if full."""
        conversation_id = context.conversation.id
        with self._lock:
            self._entries[conversation_id] = (self._clock(), context.model_copy(deep=True))
            self._entries.move_to_end(conversation_id)
            while len(self._entries) > self._max_size:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Evicted context for conversation %s", evicted)

    def evict(self, conversation_id: str) -> bool:
        """Drop a conversation's context. Returns whether one was cached."""
        with self._lock:
            return self._entries.pop(conversation_id, None) is not None

    def purge_expired(self) -> int:
        """Drop every expired entry and return how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [
                cid for cid, (stored_at, _) in self._entries.items()
                if now - stored_at > self._ttl
            ]
            for cid in expired:
                del self._entries[cid]
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, conversation_id: object) -> bool:
        return conversation_id in self._entries
