"""Tests for tag-overlap context enrichment.

Enrichment is strictly additive: the original selection is returned
unchanged and in order, and related capsules are appended after it.
"""

from __future__ import annotations

import pytest

from src.knowledge.models import CONFIG_RECORD_ID, KnowledgeRecord
from src.knowledge.retrieval import ScoredKnowledge, enrich


def _record(record_id: str, tags: list[str], importance: float = 0.5) -> KnowledgeRecord:
    return KnowledgeRecord(
        id=record_id,
        content=f"Content of {record_id}",
        semantic_tags=tags,
        importance_weight=importance,
    )


def _selected(record: KnowledgeRecord, score: float = 0.8) -> ScoredKnowledge:
    return ScoredKnowledge(
        record=record, relevance_score=0.4, value_score=score - 0.4, final_score=score
    )


@pytest.fixture
def corpus() -> list[KnowledgeRecord]:
    return [
        _record("pricing", ["parcela", "preço", "plano"]),
        _record("financing", ["Parcela", "plano", "juros"], importance=0.9),
        _record("plans", ["plano", "preço"], importance=0.4),
        _record("one-tag", ["parcela", "frete"]),
        _record("unrelated", ["garantia", "suporte"]),
        _record(CONFIG_RECORD_ID, ["parcela", "plano"]),
    ]


class TestEnrichment:
    """Related capsules are appended after the selection."""

    def test_selection_is_preserved_and_related_appended(self, corpus):
        selected = [_selected(corpus[0])]
        result = enrich(selected, corpus)

        assert result[0] is selected[0]
        assert [r.record.id for r in result[1:]] == ["financing", "plans"]
        assert all(r.is_enriched for r in result[1:])

    def test_requires_two_shared_tags(self, corpus):
        result = enrich([_selected(corpus[0])], corpus, max_additional=10)
        ids = {r.record.id for r in result}
        assert "unrelated" not in ids
        # "one-tag" shares only "parcela"
        assert "one-tag" not in ids

    def test_tag_comparison_ignores_case(self, corpus):
        result = enrich([_selected(corpus[0])], corpus)
        assert "financing" in [r.record.id for r in result]

    def test_enriched_scores(self, corpus):
        result = enrich([_selected(corpus[0])], corpus)
        financing = next(r for r in result if r.record.id == "financing")
        assert financing.relevance_score == 0.3
        assert financing.value_score == pytest.approx(0.45)
        assert financing.final_score == pytest.approx(0.75)

    def test_respects_max_additional(self, corpus):
        result = enrich([_selected(corpus[0])], corpus, max_additional=1)
        assert [r.record.id for r in result] == ["pricing", "financing"]

    def test_zero_additions_returns_selection(self, corpus):
        selected = [_selected(corpus[0])]
        assert enrich(selected, corpus, max_additional=0) == selected

    def test_config_sentinel_is_never_added(self, corpus):
        result = enrich([_selected(corpus[0])], corpus, max_additional=10)
        assert CONFIG_RECORD_ID not in [r.record.id for r in result]

    def test_empty_selection_adds_nothing(self, corpus):
        assert enrich([], corpus) == []

    def test_selected_records_are_not_duplicated(self, corpus):
        selected = [_selected(corpus[0]), _selected(corpus[1], score=0.7)]
        result = enrich(selected, corpus, max_additional=10)
        ids = [r.record.id for r in result]
        assert len(ids) == len(set(ids))
        assert ids[:2] == ["pricing", "financing"]
