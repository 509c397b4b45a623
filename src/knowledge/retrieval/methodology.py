"""Single-stage scorer for sales methodology records.

Methodology records describe *how* to sell rather than *what* is sold, so the
model is simpler than the knowledge scorer: trigger phrases and vector
similarity are blended with binary phase and emotion fit, then multiplied by
a priority factor (priority 1 keeps the full score, each step down costs 10%).
"""

from __future__ import annotations

import logging
from collections.abc import Collection, Sequence

from pydantic import BaseModel

from src.knowledge.models import Emotion, MethodologyRecord, MethodologyType
from src.knowledge.retrieval.lexical import best_phrase_score
from src.knowledge.retrieval.query import RetrievalQuery
from src.knowledge.retrieval.vector import cosine_similarity

logger = logging.getLogger(__name__)

DEFAULT_MAX_RESULTS = 3

TRIGGER_WEIGHT = 0.35
VECTOR_WEIGHT = 0.25
PHASE_WEIGHT = 0.20
EMOTION_WEIGHT = 0.20

PHASE_MATCH_SCORE = 1.0
PHASE_MISMATCH_SCORE = 0.3
EMOTION_MATCH_SCORE = 1.0
EMOTION_MISMATCH_SCORE = 0.4

MINIMUM_RELEVANCE = 0.15
PRIORITY_STEP = 0.1


class ScoredMethodology(BaseModel):
    """A methodology record that passed the relevance threshold.

    Attributes:
        record: The scored methodology.
        relevance_score: Weighted trigger/vector/phase/emotion blend.
        phase_score: 1.0 on phase fit, 0.3 otherwise.
        emotion_score: 1.0 on emotion fit, 0.4 otherwise.
        priority_score: Multiplier derived from the record's priority.
        final_score: relevance * priority.
        trigger_score: Best trigger phrase match.
        vector_score: Cosine similarity to the query embedding.
        phase_match: Whether the phase check passed.
        emotion_match: Whether the emotion check passed.
    """

    record: MethodologyRecord
    relevance_score: float
    phase_score: float
    emotion_score: float
    priority_score: float
    final_score: float
    trigger_score: float = 0.0
    vector_score: float = 0.0
    phase_match: bool = False
    emotion_match: bool = False


def priority_score(priority: int) -> float:
    """Multiplier for a priority rank: 1.0 at priority 1, never below 0."""
    return max(1.0 - (max(priority, 1) - 1) * PRIORITY_STEP, 0.0)


class MethodologyScorer:
    """Ranks methodology records for the current conversational state.

    Args:
        max_results: Default result cap.
    """

    def __init__(self, max_results: int = DEFAULT_MAX_RESULTS) -> None:
        self._max_results = max_results

    def score(
        self,
        candidates: Sequence[MethodologyRecord],
        query: RetrievalQuery,
        type_filter: Collection[MethodologyType] | None = None,
        max_results: int | None = None,
    ) -> list[ScoredMethodology]:
        """Score, threshold, and rank methodology records.

        Args:
            candidates: Records to consider.
            query: The classified, embedded user message.
            type_filter: When given, only records of these types are scored.
            max_results: Result cap for this call (defaults to the scorer's).

        Returns:
            Records sorted by final score descending, ties in input order.
        """
        limit = self._max_results if max_results is None else max_results
        scored: list[ScoredMethodology] = []

        for record in candidates:
            if type_filter is not None and record.methodology_type not in type_filter:
                continue
            try:
                result = self.score_candidate(record, query)
            except Exception:
                logger.warning(
                    "Skipping methodology record %s: scoring failed",
                    getattr(record, "id", "<unknown>"),
                    exc_info=True,
                )
                continue
            if result is not None:
                scored.append(result)

        scored.sort(key=lambda s: s.final_score, reverse=True)
        return scored[: max(limit, 0)]

    def score_candidate(
        self, record: MethodologyRecord, query: RetrievalQuery
    ) -> ScoredMethodology | None:
        """Score one record, or return None below the relevance threshold."""
        phase_match = query.phase is None or query.phase in record.sales_phase
        phase = PHASE_MATCH_SCORE if phase_match else PHASE_MISMATCH_SCORE

        emotion_match = (
            query.emotion is None
            or query.emotion in record.applicable_emotions
            or Emotion.NEUTRAL in record.applicable_emotions
        )
        emotion = EMOTION_MATCH_SCORE if emotion_match else EMOTION_MISMATCH_SCORE

        trigger = best_phrase_score(query.keywords, record.trigger_phrases)
        vector = cosine_similarity(query.embedding, record.embedding)

        relevance = (
            trigger * TRIGGER_WEIGHT
            + vector * VECTOR_WEIGHT
            + phase * PHASE_WEIGHT
            + emotion * EMOTION_WEIGHT
        )
        if relevance < MINIMUM_RELEVANCE:
            return None

        priority = priority_score(record.priority)
        return ScoredMethodology(
            record=record,
            relevance_score=relevance,
            phase_score=phase,
            emotion_score=emotion,
            priority_score=priority,
            final_score=relevance * priority,
            trigger_score=trigger,
            vector_score=vector,
            phase_match=phase_match,
            emotion_match=emotion_match,
        )
