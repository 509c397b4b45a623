"""Score lookup tables for the value-stage dimensions.

Every enum-driven score the knowledge scorer uses lives here, one table per
dimension, together with the fallback applied when a record carries an
unknown value. The scorer never hard-codes these numbers inline.

Note that ``EMOTION_KEYWORDS`` is tuned for scoring capsules and is
independent from the classifier's emotion indicator lists.
"""

from __future__ import annotations

from src.knowledge.models import (
    PHASE_ORDER,
    ContextType,
    Emotion,
    SalesPhase,
    TemporalRelevance,
)
from src.knowledge.retrieval.lexical import matched_substrings

# ── Temporal relevance ─────────────────────────────────────────────────────

TEMPORAL_SCORES: dict[TemporalRelevance, float] = {
    TemporalRelevance.PERSISTENT: 0.8,
    TemporalRelevance.SEASONAL: 0.6,
    TemporalRelevance.CONDITIONAL: 0.4,
    TemporalRelevance.ARCHIVED: 0.1,
}
UNKNOWN_TEMPORAL_SCORE = 0.5


def temporal_score(temporal: TemporalRelevance | None) -> float:
    """Score for a capsule's temporal class (unknown -> 0.5)."""
    if temporal is None:
        return UNKNOWN_TEMPORAL_SCORE
    return TEMPORAL_SCORES.get(temporal, UNKNOWN_TEMPORAL_SCORE)


# ── Context alignment ──────────────────────────────────────────────────────

CONTEXT_KEYWORDS: dict[ContextType, tuple[str, ...]] = {
    ContextType.PRODUCT_INFO: (
        "what", "tell", "about", "explain", "describe", "features",
        "como", "qual", "sobre",
    ),
    ContextType.PRICING: (
        "price", "cost", "how much", "payment",
        "valor", "preço", "quanto", "parcela", "mensalidade",
    ),
    ContextType.OBJECTION_HANDLING: (
        "but", "however", "concern", "worried", "not sure",
        "mas", "porém", "preocupado", "dúvida",
    ),
    ContextType.COMPETITOR_COMPARISON: (
        "compare", "vs", "versus", "better", "difference",
        "comparar", "diferença", "melhor",
    ),
    ContextType.TRUST_BUILDING: (
        "trust", "guarantee", "safe", "reliable", "reviews",
        "confiança", "garantia", "seguro",
    ),
    ContextType.PROCESS_EXPLANATION: (
        "how", "process", "steps", "work",
        "como funciona", "processo", "etapas", "passo",
    ),
    ContextType.LEGAL_TERMS: (
        "contract", "terms", "conditions", "legal",
        "contrato", "termos", "condições", "cláusula",
    ),
    ContextType.FAQ: (
        "question", "doubt", "clarify",
        "pergunta", "dúvida", "esclarecer",
    ),
    ContextType.CLOSING_TECHNIQUE: (
        "decide", "buy", "purchase", "ready",
        "decidir", "comprar", "fechar", "pronto",
    ),
    ContextType.FOLLOW_UP: (
        "after", "support", "help", "issue",
        "depois", "suporte", "ajuda", "problema",
    ),
}

CONTEXT_DENSITY_FACTOR = 0.3
"""A message matching 30% of a context's keywords scores 1.0."""


def context_keyword_score(message_lower: str, context_type: ContextType | None) -> float:
    """Keyword density of the message against the capsule's context type.

    matches / max(len(keywords) * 0.3, 1), capped at 1. Unknown context
    types have no keywords and score 0.
    """
    keywords = CONTEXT_KEYWORDS.get(context_type, ()) if context_type else ()
    if not keywords:
        return 0.0
    matches = len(matched_substrings(message_lower, keywords))
    return min(matches / max(len(keywords) * CONTEXT_DENSITY_FACTOR, 1), 1.0)


# ── Sales phase alignment ──────────────────────────────────────────────────

PHASE_DISTANCE_SCORES: dict[int, float] = {0: 1.0, 1: 0.6, 2: 0.3}
DISTANT_PHASE_SCORE = 0.1
UNKNOWN_PHASE_SCORE = 0.5


def phase_alignment_score(
    capsule_phases: list[SalesPhase], current_phase: SalesPhase | None
) -> float:
    """How close the conversation's phase is to the capsule's phases.

    1.0 on an exact match, 0.6 / 0.3 for the nearest phase one / two steps
    away in funnel order, 0.1 otherwise. 0.5 when the current phase or the
    capsule's phases are unknown.
    """
    if current_phase is None or not capsule_phases:
        return UNKNOWN_PHASE_SCORE
    current_index = PHASE_ORDER.index(current_phase)
    nearest = min(abs(current_index - PHASE_ORDER.index(p)) for p in capsule_phases)
    return PHASE_DISTANCE_SCORES.get(nearest, DISTANT_PHASE_SCORE)


# ── Emotional resonance ────────────────────────────────────────────────────

EMOTION_KEYWORDS: dict[Emotion, tuple[str, ...]] = {
    Emotion.NEUTRAL: (),
    Emotion.EXCITEMENT: (
        "excited", "great", "amazing", "love", "perfect",
        "animado", "ótimo", "incrível", "adorei",
    ),
    Emotion.CONCERN: (
        "worried", "concern", "afraid", "risk",
        "preocupado", "medo", "risco", "receio",
    ),
    Emotion.SKEPTICISM: (
        "really", "sure", "doubt", "prove", "evidence",
        "certeza", "dúvida", "provar", "verdade",
    ),
    Emotion.CONFUSION: (
        "understand", "confused", "unclear", "explain",
        "entender", "confuso", "explicar", "como assim",
    ),
    Emotion.URGENCY: (
        "now", "today", "urgent", "asap", "quickly",
        "agora", "hoje", "urgente", "rápido",
    ),
    Emotion.HESITATION: (
        "maybe", "perhaps", "think about", "not sure",
        "talvez", "pensar", "não sei", "será",
    ),
    Emotion.FRUSTRATION: (
        "frustrated", "annoyed", "problem", "issue", "wrong",
        "frustrado", "problema", "errado",
    ),
}

DETECTED_EMOTION_MATCH_SCORE = 0.9
KEYWORD_EMOTION_BASE = 0.3
KEYWORD_EMOTION_STEP = 0.2
KEYWORD_EMOTION_CAP = 0.8
NEUTRAL_CAPSULE_SCORE = 0.3


def emotion_resonance_score(
    message_lower: str,
    capsule_emotion: Emotion,
    detected_emotion: Emotion | None,
) -> float:
    """Score the capsule's emotional resonance against the message.

    0.9 when the classifier already detected the capsule's emotion. Otherwise
    the capsule emotion's keywords are scanned in the message:
    min(0.3 + 0.2 * matches, 0.8) on any match, 0.3 for neutral capsules,
    else 0.
    """
    if detected_emotion is not None and detected_emotion == capsule_emotion:
        return DETECTED_EMOTION_MATCH_SCORE

    matches = len(matched_substrings(message_lower, EMOTION_KEYWORDS.get(capsule_emotion, ())))
    if matches > 0:
        return min(KEYWORD_EMOTION_BASE + matches * KEYWORD_EMOTION_STEP, KEYWORD_EMOTION_CAP)

    if capsule_emotion == Emotion.NEUTRAL:
        return NEUTRAL_CAPSULE_SCORE
    return 0.0


# ── Flags ──────────────────────────────────────────────────────────────────

OBJECTION_PATTERN_SCORE = 0.8
ACTION_REQUIRED_BOOST = 0.30
