"""Phase-aware sales chatbot engine.

Runs customer conversations turn by turn: human handoff check, phase and
emotion classification, knowledge and methodology retrieval, prompt
assembly, and a blocking or streaming completion call, with every decision
recorded in a per-turn debug trace.

Usage:
    from src.app.chatbot import ChatbotOrchestrator

    orchestrator = ChatbotOrchestrator(knowledge, methodology, embedder, llm, store)
    conversation = await orchestrator.start_conversation("site-widget")
    result = await orchestrator.chat(conversation.id, "quanto fica a parcela?")
"""

from src.app.chatbot.classifier import detect_emotion, detect_phase
from src.app.chatbot.errors import ChatbotError, EmptyMessageError, ProviderError
from src.app.chatbot.handoff import HANDOFF_MESSAGE, check_handoff
from src.app.chatbot.orchestrator import ChatbotOrchestrator, StreamingTurn
from src.app.chatbot.prompts import build_system_prompt
from src.app.chatbot.schemas import (
    ChatbotConfig,
    ChatbotProfile,
    TurnDebugInfo,
    TurnResult,
)
from src.app.chatbot.streaming import ResponseStream, StreamStatus

__all__ = [
    "HANDOFF_MESSAGE",
    "ChatbotConfig",
    "ChatbotError",
    "ChatbotOrchestrator",
    "ChatbotProfile",
    "EmptyMessageError",
    "ProviderError",
    "ResponseStream",
    "StreamStatus",
    "StreamingTurn",
    "TurnDebugInfo",
    "TurnResult",
    "build_system_prompt",
    "check_handoff",
    "detect_emotion",
    "detect_phase",
]
