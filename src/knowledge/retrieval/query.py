"""The per-turn query shared, read-only, by every scorer."""

from __future__ import annotations

from dataclasses import dataclass, field

from src.knowledge.models import Emotion, SalesPhase
from src.knowledge.retrieval.lexical import extract_keywords


@dataclass(frozen=True)
class RetrievalQuery:
    """A conversational query with its precomputed lexical views.

    Attributes:
        text: The raw user message.
        embedding: Dense vector of the message (may be empty).
        phase: Conversation phase after classification, if known.
        emotion: Detected customer emotion, if known.
        lowered: Lowercased text for substring checks.
        keywords: Normalized keyword set of the text.
    """

    text: str
    embedding: tuple[float, ...] = ()
    phase: SalesPhase | None = None
    emotion: Emotion | None = None
    lowered: str = field(init=False, repr=False)
    keywords: frozenset[str] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "embedding", tuple(self.embedding))
        object.__setattr__(self, "lowered", self.text.lower())
        object.__setattr__(self, "keywords", extract_keywords(self.text))
