"""Two-stage knowledge capsule scorer.

Pure mechanical retrieval: no LLM calls, no I/O, no randomness. Each
candidate capsule is scored independently against the shared read-only query
and weights, so the per-candidate loop may run on a thread pool.

Stage 1 (relevance, the gatekeeper) combines trigger phrases, vector
similarity, semantic tags and question types. Capsules below the gatekeeper
threshold are dropped outright and never reach Stage 2.

Stage 2 (value) combines importance, temporal relevance, context alignment
(keyword density blended 50/50 with phase alignment), confidence, emotional
resonance and the objection flag.

final = relevance + value, plus a flat 0.30 when ``action_required`` is set.
The boost is applied before the minimum-final-score gate, so it can rescue a
capsule in Stage 2 but never one rejected by the Stage 1 gatekeeper.

Anti-triggers are checked before any scoring: a capsule is skipped when more
than half the keywords of any of its anti-trigger phrases are in the query.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from concurrent.futures import Executor

from pydantic import BaseModel, Field

from src.knowledge.models import KnowledgeRecord, RetrievalWeights
from src.knowledge.retrieval.lexical import (
    best_phrase_score,
    exact_overlap_ratio,
    question_match_score,
    tag_match_score,
)
from src.knowledge.retrieval.query import RetrievalQuery
from src.knowledge.retrieval.tables import (
    ACTION_REQUIRED_BOOST,
    OBJECTION_PATTERN_SCORE,
    context_keyword_score,
    emotion_resonance_score,
    phase_alignment_score,
    temporal_score,
)
from src.knowledge.retrieval.vector import cosine_similarity

logger = logging.getLogger(__name__)

DEFAULT_MAX_RESULTS = 5
ANTI_TRIGGER_THRESHOLD = 0.5


class KnowledgeScoreDetails(BaseModel):
    """Every sub-score behind a capsule's ranking, each in [0, 1].

    ``context_score`` is the blended value actually weighted (keyword density
    and phase alignment averaged); its two halves are kept alongside it.
    """

    trigger_score: float = 0.0
    vector_score: float = 0.0
    tag_score: float = 0.0
    question_score: float = 0.0
    importance_score: float = 0.0
    temporal_score: float = 0.0
    context_score: float = 0.0
    context_keyword_score: float = 0.0
    phase_score: float = 0.0
    confidence_score: float = 0.0
    emotion_score: float = 0.0
    objection_score: float = 0.0


class ScoredKnowledge(BaseModel):
    """A capsule that survived both gates, with its scores.

    Attributes:
        record: The scored capsule.
        relevance_score: Stage 1 weighted sum.
        value_score: Stage 2 weighted sum.
        final_score: relevance + value (+ action boost).
        details: Per-dimension sub-scores.
        is_enriched: True when added by tag-overlap enrichment rather than
            matched directly.
    """

    record: KnowledgeRecord
    relevance_score: float
    value_score: float
    final_score: float
    details: KnowledgeScoreDetails = Field(default_factory=KnowledgeScoreDetails)
    is_enriched: bool = False


class KnowledgeScorer:
    """Ranks knowledge capsules against a query.

    Args:
        weights: Default weights when a call does not pass its own.
        max_results: Default result cap.
        executor: Optional executor used to score candidates in parallel.
            Results are identical to the sequential path.
    """

    def __init__(
        self,
        weights: RetrievalWeights | None = None,
        max_results: int = DEFAULT_MAX_RESULTS,
        executor: Executor | None = None,
    ) -> None:
        self._weights = weights or RetrievalWeights()
        self._max_results = max_results
        self._executor = executor

    @property
    def weights(self) -> RetrievalWeights:
        """Default weights used when a call does not pass its own."""
        return self._weights

    def score(
        self,
        candidates: Sequence[KnowledgeRecord],
        query: RetrievalQuery,
        weights: RetrievalWeights | None = None,
        max_results: int | None = None,
    ) -> list[ScoredKnowledge]:
        """Score, gate, and rank candidate capsules.

        Args:
            candidates: Capsules to consider. The config sentinel is skipped.
            query: The classified, embedded user message.
            weights: Weights for this call (defaults to the scorer's).
            max_results: Result cap for this call (defaults to the scorer's).

        Returns:
            Surviving capsules sorted by final score descending, at most
            ``max_results`` long. Ties keep corpus order.
        """
        active_weights = weights or self._weights
        limit = self._max_results if max_results is None else max_results

        if self._executor is not None:
            outcomes = list(
                self._executor.map(
                    lambda record: self._safe_score(record, query, active_weights),
                    candidates,
                )
            )
        else:
            outcomes = [
                self._safe_score(record, query, active_weights)
                for record in candidates
            ]

        scored = [outcome for outcome in outcomes if outcome is not None]
        scored.sort(key=lambda s: s.final_score, reverse=True)

        logger.debug(
            "Scored %d candidates, %d passed both gates",
            len(candidates),
            len(scored),
        )
        return scored[: max(limit, 0)]

    def _safe_score(
        self,
        record: KnowledgeRecord,
        query: RetrievalQuery,
        weights: RetrievalWeights,
    ) -> ScoredKnowledge | None:
        """Score one capsule, isolating failures to that capsule."""
        try:
            return self.score_candidate(record, query, weights)
        except Exception:
            logger.warning(
                "Skipping knowledge record %s: scoring failed",
                getattr(record, "id", "<unknown>"),
                exc_info=True,
            )
            return None

    def score_candidate(
        self,
        record: KnowledgeRecord,
        query: RetrievalQuery,
        weights: RetrievalWeights,
    ) -> ScoredKnowledge | None:
        """Run both stages for a single capsule.

        Returns:
            The scored capsule, or None when it is the config sentinel, is
            anti-triggered, fails the gatekeeper, or ends below the minimum
            final score.
        """
        if record.is_config_sentinel:
            return None
        if self.is_anti_triggered(record, query):
            logger.debug("Record %s suppressed by anti-trigger", record.id)
            return None

        # Stage 1: relevance
        trigger = best_phrase_score(query.keywords, record.trigger_phrases)
        vector = cosine_similarity(query.embedding, record.embedding)
        tag = tag_match_score(query.keywords, record.semantic_tags)
        question = question_match_score(query.lowered, record.question_types)

        relevance = (
            trigger * weights.trigger_phrases
            + vector * weights.vector_similarity
            + tag * weights.semantic_tags
            + question * weights.question_types
        )
        if relevance < weights.relevance_gatekeeper:
            return None

        # Stage 2: value
        importance = record.importance_weight
        temporal = temporal_score(record.temporal_relevance)
        context_keywords = context_keyword_score(query.lowered, record.context_type)
        phase = phase_alignment_score(record.sales_phase, query.phase)
        context = context_keywords * 0.5 + phase * 0.5
        confidence = record.confidence_score
        emotion = emotion_resonance_score(
            query.lowered, record.emotional_resonance, query.emotion
        )
        objection = OBJECTION_PATTERN_SCORE if record.objection_pattern else 0.0

        value = (
            importance * weights.importance_weight
            + temporal * weights.temporal_relevance
            + context * weights.context_alignment
            + confidence * weights.confidence_score
            + emotion * weights.emotional_resonance
            + objection * weights.objection_pattern
        )

        final = relevance + value
        if record.action_required:
            final += ACTION_REQUIRED_BOOST
        if final < weights.minimum_final_score:
            return None

        return ScoredKnowledge(
            record=record,
            relevance_score=relevance,
            value_score=value,
            final_score=final,
            details=KnowledgeScoreDetails(
                trigger_score=trigger,
                vector_score=vector,
                tag_score=tag,
                question_score=question,
                importance_score=importance,
                temporal_score=temporal,
                context_score=context,
                context_keyword_score=context_keywords,
                phase_score=phase,
                confidence_score=confidence,
                emotion_score=emotion,
                objection_score=objection,
            ),
        )

    @staticmethod
    def is_anti_triggered(record: KnowledgeRecord, query: RetrievalQuery) -> bool:
        """Whether any anti-trigger phrase is more than half present in the query."""
        return any(
            exact_overlap_ratio(query.keywords, anti) > ANTI_TRIGGER_THRESHOLD
            for anti in record.anti_triggers
        )
