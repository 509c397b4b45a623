"""Tag-overlap enrichment of a knowledge selection.

After scoring, capsules that were not selected but share at least two
semantic tags with the selected set are appended as related context. They
carry a fixed relevance of 0.3 and a value of half their importance, and are
flagged ``is_enriched`` so the prompt and trace can tell them apart.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from src.knowledge.models import KnowledgeRecord
from src.knowledge.retrieval.scorer import KnowledgeScoreDetails, ScoredKnowledge

logger = logging.getLogger(__name__)

DEFAULT_MAX_ADDITIONAL = 2
MIN_SHARED_TAGS = 2
ENRICHMENT_RELEVANCE = 0.3
ENRICHMENT_IMPORTANCE_FACTOR = 0.5


def enrich(
    selected: Sequence[ScoredKnowledge],
    all_candidates: Sequence[KnowledgeRecord],
    max_additional: int = DEFAULT_MAX_ADDITIONAL,
) -> list[ScoredKnowledge]:
    """Append related capsules that share tags with the current selection.

    Args:
        selected: Capsules already chosen by the scorer, in rank order.
        all_candidates: The full corpus to draw related capsules from.
        max_additional: Maximum number of capsules to append.

    Returns:
        ``selected`` unchanged and in order, followed by up to
        ``max_additional`` enriched capsules sorted by their score.
    """
    selected_ids = {s.record.id for s in selected}
    selected_tags = {
        tag.lower() for s in selected for tag in s.record.semantic_tags if tag
    }

    related: list[ScoredKnowledge] = []
    if selected_tags and max_additional > 0:
        for record in all_candidates:
            if record.id in selected_ids or record.is_config_sentinel:
                continue
            shared = {tag.lower() for tag in record.semantic_tags} & selected_tags
            if len(shared) < MIN_SHARED_TAGS:
                continue

            value = record.importance_weight * ENRICHMENT_IMPORTANCE_FACTOR
            related.append(
                ScoredKnowledge(
                    record=record,
                    relevance_score=ENRICHMENT_RELEVANCE,
                    value_score=value,
                    final_score=ENRICHMENT_RELEVANCE + value,
                    details=KnowledgeScoreDetails(
                        tag_score=len(shared) / len(record.semantic_tags),
                        importance_score=record.importance_weight,
                        confidence_score=record.confidence_score,
                    ),
                    is_enriched=True,
                )
            )

    related.sort(key=lambda s: s.final_score, reverse=True)
    additions = related[: max(max_additional, 0)]
    if additions:
        logger.debug(
            "Enriched selection with %d related records: %s",
            len(additions),
            [a.record.id for a in additions],
        )
    return [*selected, *additions]
