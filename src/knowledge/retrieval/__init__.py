"""Mechanical (non-LLM) retrieval over knowledge and methodology records.

Exports the query type, both scorers, and tag-overlap enrichment.
"""

from src.knowledge.retrieval.enrichment import enrich
from src.knowledge.retrieval.methodology import MethodologyScorer, ScoredMethodology
from src.knowledge.retrieval.query import RetrievalQuery
from src.knowledge.retrieval.scorer import (
    KnowledgeScoreDetails,
    KnowledgeScorer,
    ScoredKnowledge,
)

__all__ = [
    "KnowledgeScoreDetails",
    "KnowledgeScorer",
    "MethodologyScorer",
    "RetrievalQuery",
    "ScoredKnowledge",
    "ScoredMethodology",
    "enrich",
]
