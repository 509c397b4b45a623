"""Tests for the read-only knowledge and methodology corpora.

Tests cover:
- Tolerant loading from payload dicts (invalid payloads skipped)
- The config sentinel: returned by get(), excluded from all()
- JSON and YAML files
- Curated capsule text with YAML frontmatter
- Filling in missing embeddings
- Corpus stats
"""

from __future__ import annotations

import json
import math
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.knowledge.corpus import (
    KnowledgeCorpus,
    MethodologyCorpus,
    corpus_stats,
    parse_capsule_blocks,
)
from src.knowledge.embeddings import EmbeddingService
from src.knowledge.models import CONFIG_RECORD_ID, ContextType, SalesPhase


def _make_dense_vector(seed: float = 0.1, dims: int = 384) -> list[float]:
    """Generate a deterministic dense vector for testing."""
    return [math.sin(seed * (i + 1)) for i in range(dims)]


CURATED_TEXT = """
Some preamble the curation step left behind.

```yaml
---
id: pricing-installments
triggerPhrases:
  - quanto custa a parcela
semanticTags: [parcela, preço]
contextType: pricing
salesPhase: [negotiation]
importanceWeight: 0.9
---
O plano anual pode ser pago em 12 parcelas de R$ 99.
```

```yaml
---
id: warranty
contextType: trust_building
---
Two-year warranty on every device.
```

```yaml
---
id: empty-capsule
---
```
"""


@pytest.fixture
def payloads() -> list[dict]:
    return [
        {"id": "k1", "content": "First", "triggerPhrases": ["first"]},
        {"id": CONFIG_RECORD_ID, "content": '{"maxCapsulesPerQuery": 3}'},
        {"id": "k2", "content": "Second", "embedding": _make_dense_vector(0.2)},
    ]


class TestKnowledgeCorpus:
    """Access and tolerant loading."""

    def test_all_excludes_config_sentinel(self, payloads):
        corpus = KnowledgeCorpus.from_payloads(payloads)
        assert [r.id for r in corpus.all()] == ["k1", "k2"]
        assert len(corpus) == 2
        assert [r.id for r in corpus] == ["k1", "k2"]

    def test_get_returns_config_sentinel(self, payloads):
        corpus = KnowledgeCorpus.from_payloads(payloads)
        assert corpus.get(CONFIG_RECORD_ID) is corpus.config_record
        assert corpus.config_record.content == '{"maxCapsulesPerQuery": 3}'
        assert CONFIG_RECORD_ID in corpus

    def test_get_unknown_returns_none(self, payloads):
        assert KnowledgeCorpus.from_payloads(payloads).get("missing") is None

    def test_invalid_payload_is_skipped(self, payloads):
        corpus = KnowledgeCorpus.from_payloads(
            [*payloads, {"id": "bad", "chunkIndex": "not-a-number"}, "not a mapping"]
        )
        assert [r.id for r in corpus.all()] == ["k1", "k2"]

    def test_duplicate_ids_keep_last(self):
        corpus = KnowledgeCorpus.from_payloads(
            [{"id": "k1", "content": "old"}, {"id": "k1", "content": "new"}]
        )
        assert len(corpus) == 1
        assert corpus.get("k1").content == "new"

    def test_empty_corpus(self):
        corpus = KnowledgeCorpus()
        assert corpus.all() == []
        assert corpus.config_record is None


class TestCorpusFiles:
    """Loading from JSON and YAML files."""

    def test_json_list(self, tmp_path, payloads):
        path = tmp_path / "knowledge.json"
        path.write_text(json.dumps(payloads), encoding="utf-8")
        corpus = KnowledgeCorpus.from_file(path)
        assert [r.id for r in corpus.all()] == ["k1", "k2"]

    def test_yaml_records_mapping(self, tmp_path):
        path = tmp_path / "methodology.yaml"
        path.write_text(
            "records:\n"
            "  - id: m1\n"
            "    title: Anchor on value\n"
            "    methodologyType: objection_response\n"
            "    priority: 2\n",
            encoding="utf-8",
        )
        corpus = MethodologyCorpus.from_file(path)
        (record,) = corpus.all()
        assert record.title == "Anchor on value"
        assert record.priority == 2

    def test_file_without_records_raises(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("just: a mapping\n", encoding="utf-8")
        with pytest.raises(ValueError):
            KnowledgeCorpus.from_file(path)

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            KnowledgeCorpus.from_file(tmp_path / "absent.json")


class TestCuratedText:
    """Capsule blocks with YAML frontmatter."""

    def test_parses_fenced_blocks(self):
        payloads = parse_capsule_blocks(CURATED_TEXT, "precos.md")
        assert [p["id"] for p in payloads] == ["pricing-installments", "warranty"]
        assert payloads[0]["content"].startswith("O plano anual")
        assert payloads[0]["sourceDocument"] == "precos.md"
        assert [p["chunkIndex"] for p in payloads] == [0, 1]
        assert all(p["totalChunks"] == 2 for p in payloads)

    def test_curated_corpus_records(self):
        corpus = KnowledgeCorpus.from_curated_text(CURATED_TEXT, "precos.md")
        record = corpus.get("pricing-installments")
        assert record.context_type == ContextType.PRICING
        assert record.sales_phase == [SalesPhase.NEGOTIATION]
        assert record.semantic_tags == ["parcela", "preço"]
        assert record.importance_weight == 0.9
        assert record.source_document == "precos.md"

    def test_unfenced_single_block(self):
        text = "---\nid: solo\nsemanticTags: [frete]\n---\nFree shipping over R$ 200."
        (payload,) = parse_capsule_blocks(text)
        assert payload["id"] == "solo"
        assert payload["content"] == "Free shipping over R$ 200."

    def test_invalid_frontmatter_is_skipped(self):
        text = "---\nid: [unclosed\n---\nContent"
        assert parse_capsule_blocks(text) == []


class TestCorpusEmbeddings:
    """Filling in vectors for records stored without one."""

    async def test_with_embeddings_fills_missing_only(self, payloads):
        embedder = MagicMock(spec=EmbeddingService)
        embedder.embed_batch = AsyncMock(
            side_effect=lambda texts: [_make_dense_vector(0.5) for _ in texts]
        )
        corpus = KnowledgeCorpus.from_payloads(payloads)

        embedded = await corpus.with_embeddings(embedder)

        embedder.embed_batch.assert_awaited_once_with(["First", '{"maxCapsulesPerQuery": 3}'])
        assert embedded.get("k1").embedding == _make_dense_vector(0.5)
        assert embedded.get("k2").embedding == _make_dense_vector(0.2)
        # Original corpus is untouched
        assert corpus.get("k1").embedding == []

    async def test_with_embeddings_noop_when_complete(self):
        embedder = MagicMock(spec=EmbeddingService)
        embedder.embed_batch = AsyncMock()
        corpus = KnowledgeCorpus.from_payloads(
            [{"id": "k1", "content": "x", "embedding": [1.0, 0.0]}]
        )
        embedded = await corpus.with_embeddings(embedder)
        embedder.embed_batch.assert_not_awaited()
        assert embedded.get("k1").embedding == [1.0, 0.0]


def test_corpus_stats(payloads):
    knowledge = KnowledgeCorpus.from_payloads(payloads)
    methodology = MethodologyCorpus.from_payloads([{"id": "m1"}, {"id": "m2"}])
    stats = corpus_stats(knowledge, methodology)
    assert stats.knowledge_records == 2
    assert stats.methodology_records == 2
    assert stats.knowledge_without_embedding == 1
    assert stats.has_config_record is True
