"""Embedding service for dense vector generation with a local fastembed model.

Messages and records are embedded with the same small sentence-transformer
(all-MiniLM-L6-v2, 384 dims) so the scorers can compare them with cosine
similarity. The model runs locally; inference is pushed to a worker thread
so the event loop is never blocked.

The service is constructed explicitly and injected into the orchestrator.
The model itself is loaded lazily on first use (heavy import).
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any

from src.knowledge.config import KnowledgeConfig

logger = logging.getLogger(__name__)


class EmbeddingService:
    """Generates dense embeddings for messages and records.

    ``embed("")`` (or whitespace only) returns a zero vector of the configured
    dimensionality instead of failing. Any other model failure propagates to
    the caller.

    Args:
        config: Knowledge configuration with model name and dimensions.
    """

    def __init__(self, config: KnowledgeConfig | None = None) -> None:
        self._config = config or KnowledgeConfig()
        self._model_name = self._config.embedding_model
        self._dimensions = self._config.embedding_dimensions

        # Lazy-initialize the model on first use (heavy import)
        self._model: Any = None
        self._model_lock = threading.Lock()

    @property
    def dimensions(self) -> int:
        """Dimensionality of produced vectors."""
        return self._dimensions

    @property
    def is_ready(self) -> bool:
        """Whether the model has been loaded."""
        return self._model is not None

    def _get_model(self) -> Any:
        """Lazy-load the fastembed text embedding model.

        Returns:
            Initialized fastembed TextEmbedding model.
        """
        with self._model_lock:
            if self._model is None:
                from fastembed import TextEmbedding

                logger.info("Loading embedding model %s", self._model_name)
                self._model = TextEmbedding(
                    model_name=self._model_name,
                    cache_dir=self._config.embedding_cache_dir,
                )
        return self._model

    async def warm_up(self) -> None:
        """Load the model ahead of the first request."""
        await asyncio.to_thread(self._get_model)

    async def embed(self, text: str) -> list[float]:
        """Generate a dense embedding for a single text.

        Args:
            text: Input text to embed.

        Returns:
            Dense vector of length ``dimensions``.
        """
        vectors = await self.embed_batch([text])
        return vectors[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate dense embeddings for a batch of texts.

        Blank texts get zero vectors without touching the model.

        Args:
            texts: Input texts to embed.

        Returns:
            One vector per input text, in input order.
        """
        results: list[list[float] | None] = [None] * len(texts)
        pending: list[tuple[int, str]] = []
        for i, text in enumerate(texts):
            if not text or not text.strip():
                results[i] = [0.0] * self._dimensions
            else:
                pending.append((i, text.strip()))

        if pending:
            vectors = await asyncio.to_thread(
                self._embed_dense, [text for _, text in pending]
            )
            for (i, _text), vector in zip(pending, vectors, strict=True):
                results[i] = vector

        return [vector for vector in results if vector is not None]

    def _embed_dense(self, texts: list[str]) -> list[list[float]]:
        """Run the model synchronously (called from a worker thread).

        Raises:
            ValueError: If the model returns vectors of an unexpected size.
        """
        model = self._get_model()
        vectors = [embedding.tolist() for embedding in model.embed(texts)]
        for vector in vectors:
            if len(vector) != self._dimensions:
                raise ValueError(
                    f"Embedding model {self._model_name} returned "
                    f"{len(vector)} dims, expected {self._dimensions}"
                )
        return vectors
