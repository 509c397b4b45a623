"""Exceptions raised by the chatbot engine.

Input validation and provider failures abort the turn and reach the caller.
Per-record scoring failures never show up here; the scorers log and skip
them.
"""

from __future__ import annotations


class ChatbotError(Exception):
    """Base class for chatbot engine errors."""


class EmptyMessageError(ChatbotError, ValueError):
    """The inbound message is empty or whitespace only."""

    def __init__(self) -> None:
        super().__init__("Message text must not be empty")


class ProviderError(ChatbotError):
    """An embedding or completion provider failed during a turn.

    The original exception is chained as ``__cause__``.

    Attributes:
        provider: Which collaborator failed ("embedding" or "completion").
    """

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"{provider} provider failed: {message}")
        self.provider = provider
