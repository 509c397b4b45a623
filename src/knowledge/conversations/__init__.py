"""Conversation persistence and the live-context cache.

Provides the authoritative conversation store (records, messages, per-id
writer locks, funnel stats) and an injected TTL cache of working contexts.
"""

from src.knowledge.conversations.session import (
    ChatMessage,
    ConversationContext,
    ConversationContextCache,
)
from src.knowledge.conversations.store import (
    ConversationNotFoundError,
    ConversationStats,
    ConversationStore,
)

__all__ = [
    "ChatMessage",
    "ConversationContext",
    "ConversationContextCache",
    "ConversationNotFoundError",
    "ConversationStats",
    "ConversationStore",
]
