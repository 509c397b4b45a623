"""Pydantic schemas for chatbot configuration, debug traces and turn results.

Defines:
- ChatbotConfig: per-chatbot tunables, stored as JSON in the config sentinel.
- ChatbotProfile: tenant identity rendered into the system prompt.
- CapsuleDebugInfo / MethodologyDebugInfo / TurnDebugInfo: the glass-box
  trace of every decision taken during a turn.
- TurnResult: what a blocking turn returns to the caller.
"""

from __future__ import annotations

import json

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from src.knowledge.corpus import KnowledgeCorpus
from src.knowledge.models import (
    ContextType,
    Emotion,
    MethodologyType,
    RetrievalWeights,
    SalesPhase,
)
from src.knowledge.retrieval.scorer import KnowledgeScoreDetails

logger = structlog.get_logger(__name__)

PREVIEW_LENGTH = 200


def content_preview(content: str, length: int = PREVIEW_LENGTH) -> str:
    """First ``length`` characters of content, with "..." when truncated."""
    return content[:length] + ("..." if len(content) > length else "")


# ── Configuration ───────────────────────────────────────────────────────────


class ChatbotConfig(BaseModel):
    """Per-chatbot configuration, read-only during a turn.

    Accepts both snake_case and the camelCase keys of the stored JSON.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    retrieval_weights: RetrievalWeights = Field(default_factory=RetrievalWeights)
    max_capsules_per_query: int = Field(default=5, ge=0)
    max_methodologies_per_query: int = Field(default=5, ge=0)
    enable_context_enrichment: bool = True
    max_enrichment_additions: int = Field(default=2, ge=0)
    max_conversation_turns: int = Field(default=50, ge=1)
    human_handoff_enabled: bool = True
    human_handoff_triggers: list[str] = Field(
        default_factory=lambda: ["talk to human", "real person", "speak to someone"]
    )
    system_prompt_additions: str | None = None
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens_per_response: int = Field(default=500, ge=1)

    @classmethod
    def from_json(cls, raw: str | None) -> ChatbotConfig:
        """Parse stored config JSON, falling back to defaults when invalid."""
        if not raw or not raw.strip():
            return cls()
        try:
            return cls.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError, TypeError) as exc:
            logger.warning("chatbot_config_invalid", error=str(exc))
            return cls()

    @classmethod
    def from_corpus(cls, corpus: KnowledgeCorpus) -> ChatbotConfig:
        """Read the config stored in the corpus's ``__chatbot_config__`` record."""
        record = corpus.config_record
        if record is None:
            logger.debug("chatbot_config_missing")
            return cls()
        return cls.from_json(record.content)


class ChatbotProfile(BaseModel):
    """Identity of the chatbot as presented to the customer."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    name: str = "Assistant"
    product_name: str = "our product"
    product_type: str = "product"
    industry: str | None = None
    personality: str | None = None
    welcome_message: str | None = None


# ── Debug Trace ─────────────────────────────────────────────────────────────


class CapsuleDebugInfo(BaseModel):
    """Why one knowledge capsule was injected."""

    id: str
    source_document: str = ""
    context_type: ContextType | None = None
    content_preview: str = ""
    relevance_score: float = 0.0
    value_score: float = 0.0
    final_score: float = 0.0
    details: KnowledgeScoreDetails = Field(default_factory=KnowledgeScoreDetails)
    matched_triggers: list[str] = Field(default_factory=list)
    matched_tags: list[str] = Field(default_factory=list)
    is_enriched: bool = False


class MethodologyDebugInfo(BaseModel):
    """Why one methodology record was injected."""

    id: str
    title: str = ""
    methodology_type: MethodologyType | None = None
    content_preview: str = ""
    relevance_score: float = 0.0
    phase_score: float = 0.0
    emotion_score: float = 0.0
    priority_score: float = 0.0
    final_score: float = 0.0
    matched_triggers: list[str] = Field(default_factory=list)
    phase_match: bool = False
    emotion_match: bool = False


class TurnDebugInfo(BaseModel):
    """Glass-box trace of a single turn.

    Attributes:
        phase_reasoning: Which indicator moved (or kept) the phase.
        emotion_reasoning: Which indicator set the emotion.
        matched_phase_indicators: Indicators behind the phase decision.
        matched_emotion_indicators: Indicators behind the emotion decision.
        capsules: Per-capsule scores in prompt order.
        methodologies: Per-methodology scores in prompt order.
        total_capsules_scanned: Knowledge corpus size (sentinel excluded).
        total_methodologies_scanned: Methodology corpus size.
        injected_knowledge: The knowledge block as placed in the prompt.
        injected_methodology: The methodology block as placed in the prompt.
        system_prompt: The exact system prompt sent to the provider.
        embedding_time_ms: Time spent embedding the message.
        retrieval_time_ms: Time spent scoring and enriching.
        total_time_ms: Time from turn start until the prompt was ready.
        turn_limit_reached: Whether the conversation hit its turn limit.
        handoff_trigger: Trigger phrase when the turn was a handoff.
    """

    phase_reasoning: str = ""
    emotion_reasoning: str = ""
    matched_phase_indicators: list[str] = Field(default_factory=list)
    matched_emotion_indicators: list[str] = Field(default_factory=list)
    capsules: list[CapsuleDebugInfo] = Field(default_factory=list)
    methodologies: list[MethodologyDebugInfo] = Field(default_factory=list)
    total_capsules_scanned: int = 0
    total_methodologies_scanned: int = 0
    injected_knowledge: str = ""
    injected_methodology: str = ""
    system_prompt: str = ""
    embedding_time_ms: float = 0.0
    retrieval_time_ms: float = 0.0
    total_time_ms: float = 0.0
    turn_limit_reached: bool = False
    handoff_trigger: str | None = None


# ── Turn Results ────────────────────────────────────────────────────────────


class TurnResult(BaseModel):
    """Outcome of a blocking chat turn."""

    conversation_id: str
    response: str
    phase: SalesPhase
    emotion: Emotion
    capsule_ids: list[str] = Field(default_factory=list)
    human_handoff_requested: bool = False
    debug: TurnDebugInfo = Field(default_factory=TurnDebugInfo)
