"""Pydantic models for the chatbot knowledge domain.

Defines the record types consumed by the retrieval engine: knowledge capsules
(curated product knowledge with ten retrieval dimensions), methodology records
(sales techniques), the tunable retrieval weights, and the persisted
conversation and message records. These models are the
contract between the external curation step, the corpus, and the scorers.

Records arrive from a schema-less store, so every field is coerced on the way
in: missing lists become empty, missing or out-of-range floats fall back to a
neutral default or are clamped into [0, 1], and unknown enum strings map to a
documented default instead of failing the whole corpus.

Both snake_case and the curated camelCase keys (``triggerPhrases``,
``importanceWeight``, ...) are accepted.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

CONFIG_RECORD_ID = "__chatbot_config__"
"""Reserved id of the record holding the chatbot config. Never retrieved."""

DEFAULT_IMPORTANCE = 0.5
DEFAULT_CONFIDENCE = 0.5
DEFAULT_PRIORITY = 5


# ── Enums ───────────────────────────────────────────────────────────────────


class SalesPhase(str, Enum):
    """Funnel stage of a sales conversation."""

    GREETING = "greeting"
    QUALIFICATION = "qualification"
    PRESENTATION = "presentation"
    NEGOTIATION = "negotiation"
    CLOSING = "closing"
    POST_SALE = "post_sale"


PHASE_ORDER: tuple[SalesPhase, ...] = (
    SalesPhase.GREETING,
    SalesPhase.QUALIFICATION,
    SalesPhase.PRESENTATION,
    SalesPhase.NEGOTIATION,
    SalesPhase.CLOSING,
    SalesPhase.POST_SALE,
)


class Emotion(str, Enum):
    """Customer emotional state, also used as a capsule's emotional resonance."""

    NEUTRAL = "neutral"
    EXCITEMENT = "excitement"
    CONCERN = "concern"
    SKEPTICISM = "skepticism"
    CONFUSION = "confusion"
    URGENCY = "urgency"
    HESITATION = "hesitation"
    FRUSTRATION = "frustration"


class ContextType(str, Enum):
    """What kind of sales information a capsule carries."""

    PRODUCT_INFO = "product_info"
    PRICING = "pricing"
    OBJECTION_HANDLING = "objection_handling"
    COMPETITOR_COMPARISON = "competitor_comparison"
    TRUST_BUILDING = "trust_building"
    PROCESS_EXPLANATION = "process_explanation"
    LEGAL_TERMS = "legal_terms"
    FAQ = "faq"
    CLOSING_TECHNIQUE = "closing_technique"
    FOLLOW_UP = "follow_up"


class TemporalRelevance(str, Enum):
    """How long a capsule stays relevant."""

    PERSISTENT = "persistent"
    SEASONAL = "seasonal"
    CONDITIONAL = "conditional"
    ARCHIVED = "archived"


class MethodologyType(str, Enum):
    """Kind of sales technique a methodology record describes."""

    PHASE_DEFINITION = "phase_definition"
    TRANSITION_TRIGGER = "transition_trigger"
    OBJECTION_RESPONSE = "objection_response"
    CLOSING_TECHNIQUE = "closing_technique"
    QUALIFICATION_QUESTION = "qualification_question"
    VALUE_PROPOSITION = "value_proposition"
    URGENCY_CREATOR = "urgency_creator"
    TRUST_BUILDER = "trust_builder"


# ── Coercion helpers ────────────────────────────────────────────────────────


def _coerce_str_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, (list, tuple, set, frozenset)):
        return [str(item) for item in value if item is not None and str(item).strip()]
    return []


def _coerce_unit_float(value: Any, default: float) -> float:
    if value is None or isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number != number:  # NaN
        return default
    return min(max(number, 0.0), 1.0)


def _coerce_enum(enum_cls: type[Enum], value: Any) -> Enum | None:
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        try:
            return enum_cls(value.strip().lower())
        except ValueError:
            return None
    return None


def _coerce_enum_list(enum_cls: type[Enum], value: Any) -> list[Enum]:
    if value is None:
        return []
    if isinstance(value, (str, enum_cls)):
        items = [value]
    elif isinstance(value, (list, tuple)):
        items = list(value)
    elif isinstance(value, (set, frozenset)):
        # Unordered input: fall back to declaration order
        declared = list(enum_cls)
        members = {_coerce_enum(enum_cls, item) for item in value} - {None}
        return sorted(members, key=declared.index)
    else:
        return []

    members: list[Enum] = []
    for item in items:
        member = _coerce_enum(enum_cls, item)
        if member is not None and member not in members:
            members.append(member)
    return members


def _coerce_embedding(value: Any) -> list[float]:
    if value is None:
        return []
    try:
        return [float(x) for x in value]
    except (TypeError, ValueError):
        return []


_RECORD_CONFIG = ConfigDict(
    alias_generator=to_camel,
    populate_by_name=True,
    frozen=True,
    extra="ignore",
)


# ── Knowledge Capsule ───────────────────────────────────────────────────────


class KnowledgeRecord(BaseModel):
    """A knowledge capsule: sales-relevant text plus retrieval metadata.

    The metadata dimensions are used only for retrieval scoring, never for
    display logic. Records are created by the external curation step and are
    read-only for the retrieval engine.

    Attributes:
        id: Unique record identifier.
        content: The knowledge text injected into the prompt.
        source_document: Original document filename.
        trigger_phrases: Situational activation descriptions.
        question_types: Canonical question patterns this capsule answers.
        semantic_tags: Keyword-level tags for matching and enrichment.
        context_type: Kind of information; None when the stored value is unknown.
        sales_phase: Phases where this capsule applies.
        emotional_resonance: Emotion this capsule speaks to.
        temporal_relevance: Lifetime class; None when unknown.
        importance_weight: Curator importance in [0, 1].
        confidence_score: Curator confidence in [0, 1].
        action_required: Blocking info that gets a flat score boost.
        objection_pattern: Objection + response pair.
        anti_triggers: Situations that suppress this capsule.
        embedding: Dense vector of the content.
    """

    model_config = _RECORD_CONFIG

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    content: str = ""
    source_document: str = ""
    source_type: str = "manual"
    chunk_index: int = 0
    total_chunks: int = 1
    trigger_phrases: list[str] = Field(default_factory=list)
    question_types: list[str] = Field(default_factory=list)
    semantic_tags: list[str] = Field(default_factory=list)
    context_type: ContextType | None = None
    sales_phase: list[SalesPhase] = Field(default_factory=list)
    emotional_resonance: Emotion = Emotion.NEUTRAL
    temporal_relevance: TemporalRelevance | None = None
    importance_weight: float = DEFAULT_IMPORTANCE
    confidence_score: float = DEFAULT_CONFIDENCE
    action_required: bool = False
    objection_pattern: bool = False
    anti_triggers: list[str] = Field(default_factory=list)
    embedding: list[float] = Field(default_factory=list)

    @field_validator("content", "source_document", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @field_validator(
        "trigger_phrases", "question_types", "semantic_tags", "anti_triggers",
        mode="before",
    )
    @classmethod
    def _lists(cls, value: Any) -> list[str]:
        return _coerce_str_list(value)

    @field_validator("context_type", mode="before")
    @classmethod
    def _context_type(cls, value: Any) -> ContextType | None:
        return _coerce_enum(ContextType, value)

    @field_validator("sales_phase", mode="before")
    @classmethod
    def _phases(cls, value: Any) -> list[SalesPhase]:
        return _coerce_enum_list(SalesPhase, value)

    @field_validator("emotional_resonance", mode="before")
    @classmethod
    def _emotion(cls, value: Any) -> Emotion:
        return _coerce_enum(Emotion, value) or Emotion.NEUTRAL

    @field_validator("temporal_relevance", mode="before")
    @classmethod
    def _temporal(cls, value: Any) -> TemporalRelevance | None:
        return _coerce_enum(TemporalRelevance, value)

    @field_validator("importance_weight", mode="before")
    @classmethod
    def _importance(cls, value: Any) -> float:
        return _coerce_unit_float(value, DEFAULT_IMPORTANCE)

    @field_validator("confidence_score", mode="before")
    @classmethod
    def _confidence(cls, value: Any) -> float:
        return _coerce_unit_float(value, DEFAULT_CONFIDENCE)

    @field_validator("action_required", "objection_pattern", mode="before")
    @classmethod
    def _flags(cls, value: Any) -> bool:
        return bool(value) if value is not None else False

    @field_validator("embedding", mode="before")
    @classmethod
    def _embedding(cls, value: Any) -> list[float]:
        return _coerce_embedding(value)

    @property
    def is_config_sentinel(self) -> bool:
        """Whether this is the reserved chatbot-config record."""
        return self.id == CONFIG_RECORD_ID


# ── Methodology ─────────────────────────────────────────────────────────────


class MethodologyRecord(BaseModel):
    """A sales technique ("how to sell"), as opposed to product knowledge.

    Attributes:
        id: Unique record identifier.
        content: Technique description injected into the prompt.
        title: Short title.
        summary: One-line summary.
        methodology_type: Kind of technique; None when unknown.
        sales_phase: Phases where the technique applies.
        priority: Order within its type, 1 is highest. Clamped to >= 1.
        trigger_phrases: Situations where the technique should be used.
        applicable_emotions: Customer states where the technique applies.
        is_user_provided: Whether the seller wrote this technique.
        source_template: Template this record came from, if any.
        embedding: Dense vector of the content.
    """

    model_config = _RECORD_CONFIG

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    content: str = ""
    title: str = ""
    summary: str = ""
    methodology_type: MethodologyType | None = None
    sales_phase: list[SalesPhase] = Field(default_factory=list)
    priority: int = DEFAULT_PRIORITY
    trigger_phrases: list[str] = Field(default_factory=list)
    applicable_emotions: list[Emotion] = Field(default_factory=list)
    is_user_provided: bool = False
    source_template: str | None = None
    embedding: list[float] = Field(default_factory=list)

    @field_validator("content", "title", "summary", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @field_validator("methodology_type", mode="before")
    @classmethod
    def _methodology_type(cls, value: Any) -> MethodologyType | None:
        return _coerce_enum(MethodologyType, value)

    @field_validator("sales_phase", mode="before")
    @classmethod
    def _phases(cls, value: Any) -> list[SalesPhase]:
        return _coerce_enum_list(SalesPhase, value)

    @field_validator("applicable_emotions", mode="before")
    @classmethod
    def _emotions(cls, value: Any) -> list[Emotion]:
        return _coerce_enum_list(Emotion, value)

    @field_validator("priority", mode="before")
    @classmethod
    def _priority(cls, value: Any) -> int:
        try:
            return max(int(value), 1)
        except (TypeError, ValueError):
            return DEFAULT_PRIORITY

    @field_validator("trigger_phrases", mode="before")
    @classmethod
    def _lists(cls, value: Any) -> list[str]:
        return _coerce_str_list(value)

    @field_validator("is_user_provided", mode="before")
    @classmethod
    def _flag(cls, value: Any) -> bool:
        return bool(value) if value is not None else False

    @field_validator("embedding", mode="before")
    @classmethod
    def _embedding(cls, value: Any) -> list[float]:
        return _coerce_embedding(value)


# ── Retrieval Weights ───────────────────────────────────────────────────────


class RetrievalWeights(BaseModel):
    """Tunable weights and thresholds for the two-stage knowledge scorer.

    Four relevance-stage weights feed the gatekeeper, six value-stage weights
    rank the gated-in capsules, and two thresholds cut the result set. The
    defaults sum to 1.0 across both stages. Overridable per chatbot; never
    mutated by retrieval.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )

    # Relevance (gatekeeper)
    trigger_phrases: float = Field(default=0.15, ge=0.0)
    vector_similarity: float = Field(default=0.15, ge=0.0)
    semantic_tags: float = Field(default=0.05, ge=0.0)
    question_types: float = Field(default=0.05, ge=0.0)

    # Value
    importance_weight: float = Field(default=0.20, ge=0.0)
    temporal_relevance: float = Field(default=0.10, ge=0.0)
    context_alignment: float = Field(default=0.10, ge=0.0)
    confidence_score: float = Field(default=0.05, ge=0.0)
    emotional_resonance: float = Field(default=0.10, ge=0.0)
    objection_pattern: float = Field(default=0.05, ge=0.0)

    # Thresholds
    relevance_gatekeeper: float = Field(default=0.05, ge=0.0)
    minimum_final_score: float = Field(default=0.30, ge=0.0)


# ── Conversations ───────────────────────────────────────────────────────────


class ChannelType(str, Enum):
    """Surface a conversation arrives through."""

    WEB_WIDGET = "web_widget"
    WHATSAPP = "whatsapp"
    TELEGRAM = "telegram"
    API = "api"


class ConversationStatus(str, Enum):
    ACTIVE = "active"
    WAITING_HUMAN = "waiting_human"
    COMPLETED = "completed"
    CONVERTED = "converted"
    ABANDONED = "abandoned"


class ConversationOutcome(str, Enum):
    CONVERSION = "conversion"
    APPOINTMENT = "appointment"
    HUMAN_HANDOFF = "human_handoff"
    FOLLOW_UP_SCHEDULED = "follow_up_scheduled"
    NOT_INTERESTED = "not_interested"
    NO_OUTCOME = "no_outcome"


class MessageRole(str, Enum):
    CUSTOMER = "customer"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    HUMAN_AGENT = "human_agent"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConversationRecord(BaseModel):
    """Persisted state of one conversation.

    Holds everything needed to resume a conversation after a restart: the
    current phase and emotion plus the funnel bookkeeping. Message history
    lives in separate MessageRecord rows.

    Attributes:
        id: Unique conversation identifier (UUID4).
        channel_id: Channel the conversation belongs to.
        channel_type: Surface the conversation arrives through.
        customer_identifier: Optional customer handle (phone, email, ...).
        status: Lifecycle status.
        outcome: Sales outcome, set when the conversation ends.
        current_sales_phase: Phase after the latest customer message.
        detected_emotion: Emotion of the latest customer message.
        reached_phases: Every phase visited, in first-visit order.
        objections_faced: Ids of objection capsules retrieved so far.
        human_requested: Whether the customer asked for a person.
        human_handoff_reason: The trigger phrase that caused the handoff.
        message_count: Number of persisted messages.
        started_at: Creation time.
        last_activity_at: Time of the latest persisted message.
        ended_at: Set by end_conversation.
        duration_seconds: Set by end_conversation.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    channel_id: str = ""
    channel_type: ChannelType = ChannelType.WEB_WIDGET
    customer_identifier: str | None = None
    status: ConversationStatus = ConversationStatus.ACTIVE
    outcome: ConversationOutcome = ConversationOutcome.NO_OUTCOME
    current_sales_phase: SalesPhase = SalesPhase.GREETING
    detected_emotion: Emotion = Emotion.NEUTRAL
    reached_phases: list[SalesPhase] = Field(
        default_factory=lambda: [SalesPhase.GREETING]
    )
    objections_faced: list[str] = Field(default_factory=list)
    human_requested: bool = False
    human_handoff_reason: str | None = None
    message_count: int = 0
    started_at: datetime = Field(default_factory=_utcnow)
    last_activity_at: datetime = Field(default_factory=_utcnow)
    ended_at: datetime | None = None
    duration_seconds: float | None = None


class MessageRecord(BaseModel):
    """A single persisted message of a conversation.

    Attributes:
        id: Unique message identifier (UUID4).
        conversation_id: Owning conversation.
        role: Who wrote the message.
        content: Message text.
        created_at: When the message was persisted.
        sales_phase_at_time: Conversation phase when the message was handled.
        detected_emotion: Emotion detected on customer messages.
        capsules_used: Ids of knowledge capsules injected for assistant replies.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    conversation_id: str
    role: MessageRole
    content: str
    created_at: datetime = Field(default_factory=_utcnow)
    sales_phase_at_time: SalesPhase | None = None
    detected_emotion: Emotion | None = None
    capsules_used: list[str] = Field(default_factory=list)
