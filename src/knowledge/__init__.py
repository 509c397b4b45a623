"""Knowledge layer: curated records, mechanical retrieval, conversation state.

Provides the pydantic record models (knowledge capsules, methodology records,
conversations), read-only corpora, the local embedding service, and the
conversation store the chatbot orchestrator persists to.
"""

from src.knowledge.config import KnowledgeConfig
from src.knowledge.corpus import KnowledgeCorpus, MethodologyCorpus, corpus_stats
from src.knowledge.embeddings import EmbeddingService
from src.knowledge.models import (
    CONFIG_RECORD_ID,
    ConversationRecord,
    Emotion,
    KnowledgeRecord,
    MessageRecord,
    MethodologyRecord,
    RetrievalWeights,
    SalesPhase,
)

__all__ = [
    "CONFIG_RECORD_ID",
    "ConversationRecord",
    "Emotion",
    "EmbeddingService",
    "KnowledgeConfig",
    "KnowledgeCorpus",
    "KnowledgeRecord",
    "MessageRecord",
    "MethodologyCorpus",
    "MethodologyRecord",
    "RetrievalWeights",
    "SalesPhase",
    "corpus_stats",
]
