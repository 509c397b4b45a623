"""Human handoff detection.

Evaluated before any classification or retrieval: when handoff is enabled
and the message contains one of the configured trigger phrases, the turn
short-circuits to a canned acknowledgment and no LLM call is made.
"""

from __future__ import annotations

import structlog
from pydantic import BaseModel

from src.app.chatbot.schemas import ChatbotConfig

logger = structlog.get_logger(__name__)

HANDOFF_MESSAGE = (
    "I understand you would like to speak with a person. Let me connect you "
    "with someone who can help. Please hold on a moment."
)


class HandoffDecision(BaseModel):
    """Whether the customer asked for a person, and which phrase said so."""

    requested: bool = False
    trigger: str | None = None


def check_handoff(message: str, config: ChatbotConfig) -> HandoffDecision:
    """Check a message against the chatbot's handoff triggers.

    Args:
        message: Raw customer message.
        config: Chatbot configuration with the enable flag and triggers.

    Returns:
        A decision naming the first matching trigger, if any.
    """
    if not config.human_handoff_enabled:
        return HandoffDecision()

    message_lower = message.lower()
    for trigger in config.human_handoff_triggers:
        if trigger and trigger.lower() in message_lower:
            logger.info("human_handoff_requested", trigger=trigger)
            return HandoffDecision(requested=True, trigger=trigger)
    return HandoffDecision()
