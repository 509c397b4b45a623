"""Read-only knowledge and methodology corpora.

A corpus is the per-chatbot collection of curated records the scorers read
from. It exposes ``all()`` and ``get(id)`` and never writes back; the only
special case is the ``__chatbot_config__`` sentinel, which ``get`` can return
(the chatbot config lives in its content) but ``all`` never does.

Loading is tolerant: each payload is validated on its own, and a payload
that cannot be turned into a record is logged and skipped so a single
corrupt record never takes the whole chatbot down.

Supported sources:
- Python payload dicts (e.g. rows from a document store)
- JSON or YAML files holding a list of records (or ``{"records": [...]}``)
- Curated capsule text: ``---``-delimited YAML frontmatter followed by the
  capsule content, optionally wrapped in ```` ```yaml ```` fences
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any, ClassVar

import yaml
from pydantic import BaseModel, ValidationError

from src.knowledge.embeddings import EmbeddingService
from src.knowledge.models import CONFIG_RECORD_ID, KnowledgeRecord, MethodologyRecord

logger = logging.getLogger(__name__)

_FENCED_BLOCK = re.compile(r"```ya?ml\s*(.*?)```", re.DOTALL)
_FRONTMATTER_SPLIT = re.compile(r"^---\s*$", re.MULTILINE)


# ── Base Corpus ────────────────────────────────────────────────────────────


class _RecordCorpus:
    """Ordered, id-indexed collection of validated records."""

    record_type: ClassVar[type[BaseModel]]

    def __init__(self, records: Iterable[Any] = ()) -> None:
        self._records: dict[str, Any] = {}
        for record in records:
            if record.id in self._records:
                logger.warning("Duplicate record id %s, keeping the last one", record.id)
            self._records[record.id] = record

    @classmethod
    def from_payloads(cls, payloads: Iterable[Mapping[str, Any]]):
        """Validate raw payloads into a corpus, skipping the invalid ones.

        Args:
            payloads: Dicts in snake_case or curated camelCase.

        Returns:
            A corpus holding every payload that validated.
        """
        records = []
        skipped = 0
        for index, payload in enumerate(payloads):
            try:
                records.append(cls.record_type.model_validate(payload))
            except (ValidationError, TypeError) as exc:
                skipped += 1
                record_id = payload.get("id") if isinstance(payload, Mapping) else None
                logger.warning(
                    "Skipping %s payload #%d (id=%s): %s",
                    cls.record_type.__name__,
                    index,
                    record_id,
                    exc,
                )
        if skipped:
            logger.info(
                "Loaded %d %s records, skipped %d",
                len(records),
                cls.record_type.__name__,
                skipped,
            )
        return cls(records)

    @classmethod
    def from_file(cls, path: str | Path):
        """Load records from a JSON or YAML file.

        The file holds either a list of record payloads or a mapping with a
        ``records`` list.

        Raises:
            FileNotFoundError: If the file does not exist.
            ValueError: If the file does not hold a list of records.
        """
        file_path = Path(path)
        text = file_path.read_text(encoding="utf-8")
        if file_path.suffix.lower() == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)

        if isinstance(data, Mapping):
            data = data.get("records")
        if not isinstance(data, list):
            raise ValueError(f"{file_path} does not contain a list of records")

        payloads = [item for item in data if isinstance(item, Mapping)]
        if len(payloads) != len(data):
            logger.warning(
                "Ignoring %d non-mapping entries in %s",
                len(data) - len(payloads),
                file_path,
            )
        return cls.from_payloads(payloads)

    def all(self) -> list[Any]:
        """Every retrievable record in load order (sentinel excluded)."""
        return [r for r in self._records.values() if r.id != CONFIG_RECORD_ID]

    def get(self, record_id: str) -> Any | None:
        """Record by id, including the config sentinel; None if unknown."""
        return self._records.get(record_id)

    def __len__(self) -> int:
        return sum(1 for rid in self._records if rid != CONFIG_RECORD_ID)

    def __iter__(self):
        return iter(self.all())

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._records

    async def with_embeddings(self, embedder: EmbeddingService):
        """Return a copy where records missing an embedding get one.

        Records that already carry an embedding are kept as-is. Embedding
        errors propagate.
        """
        missing = [r for r in self._records.values() if not r.embedding]
        if not missing:
            return type(self)(self._records.values())

        vectors = await embedder.embed_batch([r.content for r in missing])
        filled = {
            r.id: r.model_copy(update={"embedding": vector})
            for r, vector in zip(missing, vectors, strict=True)
        }
        logger.info("Embedded %d records missing vectors", len(filled))
        return type(self)(filled.get(r.id, r) for r in self._records.values())


# ── Concrete Corpora ───────────────────────────────────────────────────────


class KnowledgeCorpus(_RecordCorpus):
    """Knowledge capsules of one chatbot."""

    record_type = KnowledgeRecord

    @property
    def config_record(self) -> KnowledgeRecord | None:
        """The ``__chatbot_config__`` sentinel, if present."""
        return self._records.get(CONFIG_RECORD_ID)

    @classmethod
    def from_curated_text(cls, text: str, source_document: str = "") -> KnowledgeCorpus:
        """Parse curated capsule blocks into a corpus.

        Args:
            text: One or more capsule blocks.
            source_document: Filename used when a block does not name one.
        """
        return cls.from_payloads(parse_capsule_blocks(text, source_document))


class MethodologyCorpus(_RecordCorpus):
    """Sales methodology records of one chatbot."""

    record_type = MethodologyRecord


# ── Curated Capsule Parsing ────────────────────────────────────────────────


def _split_block(block: str) -> tuple[dict[str, Any] | None, str]:
    """Split one capsule block into (frontmatter, content)."""
    parts = [p for p in _FRONTMATTER_SPLIT.split(block.strip()) if p.strip()]
    if not parts:
        return None, ""
    try:
        frontmatter = yaml.safe_load(parts[0])
    except yaml.YAMLError:
        logger.warning("Failed to parse capsule frontmatter, skipping block")
        return None, ""
    if not isinstance(frontmatter, dict):
        return None, ""
    content = "\n---\n".join(p.strip() for p in parts[1:]).strip()
    return frontmatter, content


def parse_capsule_blocks(text: str, source_document: str = "") -> list[dict[str, Any]]:
    """Turn curated capsule text into record payloads.

    Each block is YAML frontmatter between ``---`` lines followed by the
    capsule content. When the text contains ```` ```yaml ```` fences only the
    fenced blocks are read; otherwise the whole text is one block. Blocks
    without content are dropped. ``chunkIndex`` and ``totalChunks`` are filled
    in when the frontmatter omits them.

    Returns:
        Payload dicts ready for ``KnowledgeCorpus.from_payloads``.
    """
    blocks = _FENCED_BLOCK.findall(text) or [text]

    payloads: list[dict[str, Any]] = []
    for block in blocks:
        frontmatter, content = _split_block(block)
        if frontmatter is None or not content:
            continue
        payload = dict(frontmatter)
        payload["content"] = content
        payload.setdefault("sourceDocument", source_document)
        payload.setdefault("chunkIndex", len(payloads))
        payloads.append(payload)

    for payload in payloads:
        payload.setdefault("totalChunks", len(payloads))
    logger.debug("Parsed %d capsules from %s", len(payloads), source_document or "<text>")
    return payloads


# ── Stats ──────────────────────────────────────────────────────────────────


class CorpusStats(BaseModel):
    """Record counts of a chatbot's corpora (sentinel excluded)."""

    knowledge_records: int = 0
    methodology_records: int = 0
    knowledge_without_embedding: int = 0
    has_config_record: bool = False


def corpus_stats(
    knowledge: KnowledgeCorpus, methodology: MethodologyCorpus | None = None
) -> CorpusStats:
    return CorpusStats(
        knowledge_records=len(knowledge),
        methodology_records=len(methodology) if methodology is not None else 0,
        knowledge_without_embedding=sum(1 for r in knowledge.all() if not r.embedding),
        has_config_record=knowledge.config_record is not None,
    )
