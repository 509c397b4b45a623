"""Knowledge layer configuration via Pydantic BaseSettings.

All settings load from environment variables with the KNOWLEDGE_ prefix.
For example, KNOWLEDGE_EMBEDDING_MODEL sets embedding_model.
"""

from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class KnowledgeConfig(BaseSettings):
    """Configuration for embeddings, conversation caching and streaming.

    Attributes:
        embedding_model: fastembed model name for dense embeddings. Must
            match the model that embedded the stored records.
        embedding_dimensions: Dimensionality agreed with the stored records.
        embedding_cache_dir: Where fastembed keeps downloaded model files
            (None = fastembed default).
        conversation_ttl_seconds: Idle time after which a cached
            conversation context is evicted.
        conversation_cache_size: Maximum number of cached conversation
            contexts before the least recently used is evicted.
        stream_buffer_size: Bounded queue size between the completion
            provider and a streaming consumer.
    """

    model_config = SettingsConfigDict(
        env_prefix="KNOWLEDGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Embedding
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    embedding_dimensions: int = 384
    embedding_cache_dir: str | None = None

    # Conversation context cache
    conversation_ttl_seconds: float = 3600.0
    conversation_cache_size: int = 1024

    # Streaming
    stream_buffer_size: int = 64
