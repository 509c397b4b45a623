"""Rule-based sales phase and customer emotion classifier.

Both detectors are pure functions over the lowercased message using literal
substring matches against fixed bilingual (English + Portuguese) indicator
lists. Each returns the decision together with the indicators that caused
it and a human-readable reasoning line for the debug trace.

Phase detection scans phases in reverse-funnel order (post_sale first,
greeting last), so a message that mixes a greeting with a later-stage signal
("oi, quanto fica?") resolves to the later stage. When nothing matches, the
phase stays where it was; the detector never looks further back than the
previous phase.

Emotion detection scans emotions in a fixed order and returns the first one
with a matching indicator, or neutral. It has no memory between turns.

Note that these indicator lists are tuned for classification and are
maintained separately from the keyword lists the knowledge scorer uses for
emotional resonance.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from src.knowledge.models import Emotion, SalesPhase

# ── Phase Indicators ────────────────────────────────────────────────────────

PHASE_INDICATORS: dict[SalesPhase, tuple[str, ...]] = {
    SalesPhase.GREETING: (
        "hello", "hi", "hey", "good morning", "good afternoon",
        "olá", "oi", "bom dia", "boa tarde", "boa noite",
    ),
    SalesPhase.QUALIFICATION: (
        "need", "looking for", "want", "interested in",
        "preciso", "procuro", "quero", "busco",
    ),
    SalesPhase.PRESENTATION: (
        "tell me more", "how does it work", "features", "benefits",
        "como funciona", "me conta", "explica",
    ),
    SalesPhase.NEGOTIATION: (
        "price", "cost", "how much", "discount", "expensive", "afford",
        "preço", "valor", "quanto", "parcela", "desconto", "caro",
    ),
    SalesPhase.CLOSING: (
        "ready", "buy", "purchase", "sign up", "start",
        "quero fechar", "vamos fazer", "quero contratar",
    ),
    SalesPhase.POST_SALE: (
        "support", "help", "problem", "issue", "question about my",
        "suporte", "ajuda", "problema",
    ),
}

PHASE_PRIORITY: tuple[SalesPhase, ...] = (
    SalesPhase.POST_SALE,
    SalesPhase.CLOSING,
    SalesPhase.NEGOTIATION,
    SalesPhase.PRESENTATION,
    SalesPhase.QUALIFICATION,
    SalesPhase.GREETING,
)
"""Scan order for phase detection: latest funnel stage wins."""

# ── Emotion Indicators ──────────────────────────────────────────────────────

EMOTION_INDICATORS: dict[Emotion, tuple[str, ...]] = {
    Emotion.EXCITEMENT: (
        "excited", "great", "amazing", "love", "perfect", "awesome",
        "animado", "ótimo", "incrível", "adorei", "!",
    ),
    Emotion.CONCERN: (
        "worried", "concern", "afraid", "risk", "safe",
        "preocupado", "medo", "risco", "seguro",
    ),
    Emotion.SKEPTICISM: (
        "really", "sure", "doubt", "prove", "true", "seriously",
        "certeza", "dúvida", "verdade", "sério",
    ),
    Emotion.CONFUSION: (
        "understand", "confused", "unclear", "don't get", "what do you mean",
        "entender", "confuso", "não entendi", "como assim",
    ),
    Emotion.URGENCY: (
        "now", "today", "urgent", "asap", "quickly", "hurry",
        "agora", "hoje", "urgente", "rápido",
    ),
    Emotion.HESITATION: (
        "maybe", "perhaps", "think about", "not sure", "later",
        "talvez", "pensar", "não sei", "depois",
    ),
    Emotion.FRUSTRATION: (
        "frustrated", "annoyed", "angry", "terrible", "worst",
        "frustrado", "irritado", "raiva", "péssimo",
    ),
}
"""Scan order for emotion detection is the insertion order of this dict."""


# ── Results ─────────────────────────────────────────────────────────────────


class PhaseDetection(BaseModel):
    """Result of phase detection for one message."""

    phase: SalesPhase
    previous_phase: SalesPhase
    matched_indicators: list[str] = Field(default_factory=list)
    reasoning: str = ""

    @property
    def changed(self) -> bool:
        return self.phase != self.previous_phase


class EmotionDetection(BaseModel):
    """Result of emotion detection for one message."""

    emotion: Emotion
    matched_indicators: list[str] = Field(default_factory=list)
    reasoning: str = ""


# ── Detectors ───────────────────────────────────────────────────────────────


def _matches(message_lower: str, indicators: tuple[str, ...]) -> list[str]:
    return [indicator for indicator in indicators if indicator in message_lower]


def detect_phase(
    message: str, previous_phase: SalesPhase = SalesPhase.GREETING
) -> PhaseDetection:
    """Detect the sales phase of a message.

    Args:
        message: Raw customer message.
        previous_phase: Phase after the previous turn.

    Returns:
        The first phase in reverse-funnel order with a matching indicator,
        or ``previous_phase`` unchanged when none matches.
    """
    message_lower = message.lower()
    for phase in PHASE_PRIORITY:
        matched = _matches(message_lower, PHASE_INDICATORS[phase])
        if matched:
            return PhaseDetection(
                phase=phase,
                previous_phase=previous_phase,
                matched_indicators=matched,
                reasoning=(
                    f'Detected "{phase.value}" phase based on keywords: '
                    + ", ".join(f'"{m}"' for m in matched)
                ),
            )

    return PhaseDetection(
        phase=previous_phase,
        previous_phase=previous_phase,
        reasoning=f'No phase change detected, staying in "{previous_phase.value}" phase',
    )


def detect_emotion(message: str) -> EmotionDetection:
    """Detect the customer's emotion in a message.

    Returns:
        The first emotion with a matching indicator, or neutral.
    """
    message_lower = message.lower()
    for emotion, indicators in EMOTION_INDICATORS.items():
        matched = _matches(message_lower, indicators)
        if matched:
            return EmotionDetection(
                emotion=emotion,
                matched_indicators=matched,
                reasoning=(
                    f'Detected "{emotion.value}" emotion based on: '
                    + ", ".join(f'"{m}"' for m in matched)
                ),
            )

    return EmotionDetection(
        emotion=Emotion.NEUTRAL,
        reasoning='No strong emotional indicators detected, defaulting to "neutral"',
    )
