"""Tests for rule-based phase and emotion classification.

Tests cover:
- Reverse-funnel priority (later stages win over greetings)
- Phase persistence when nothing matches
- Bilingual indicators
- Emotion scan order and neutral default
- Reasoning strings for the debug trace
"""

from __future__ import annotations

import pytest

from src.app.chatbot.classifier import detect_emotion, detect_phase
from src.knowledge.models import Emotion, SalesPhase


class TestDetectPhase:
    """Phase detection."""

    def test_greeting_with_price_question_is_negotiation(self):
        """A mixed greeting + price message resolves to the later stage."""
        result = detect_phase("oi, quanto fica?")
        assert result.phase == SalesPhase.NEGOTIATION
        assert result.matched_indicators == ["quanto"]
        assert result.changed

    def test_plain_greeting(self):
        result = detect_phase("Bom dia!")
        assert result.phase == SalesPhase.GREETING
        assert not result.changed

    @pytest.mark.parametrize(
        ("message", "expected"),
        [
            ("I am looking for a CRM", SalesPhase.QUALIFICATION),
            ("como funciona a instalação?", SalesPhase.PRESENTATION),
            ("qual o preço do plano anual", SalesPhase.NEGOTIATION),
            ("quero contratar o plano", SalesPhase.CLOSING),
            ("preciso de suporte com meu pedido", SalesPhase.POST_SALE),
        ],
    )
    def test_phase_indicators(self, message, expected):
        assert detect_phase(message, SalesPhase.GREETING).phase == expected

    def test_no_indicator_keeps_previous_phase(self):
        result = detect_phase("ok", SalesPhase.PRESENTATION)
        assert result.phase == SalesPhase.PRESENTATION
        assert result.matched_indicators == []
        assert result.reasoning == 'No phase change detected, staying in "presentation" phase'

    def test_reasoning_lists_matched_keywords(self):
        result = detect_phase("quanto fica a parcela?")
        assert result.reasoning == (
            'Detected "negotiation" phase based on keywords: "quanto", "parcela"'
        )

    def test_detection_is_case_insensitive(self):
        assert detect_phase("QUANTO CUSTA?").phase == SalesPhase.NEGOTIATION


class TestDetectEmotion:
    """Emotion detection."""

    def test_neutral_default(self):
        result = detect_emotion("ok")
        assert result.emotion == Emotion.NEUTRAL
        assert result.reasoning == (
            'No strong emotional indicators detected, defaulting to "neutral"'
        )

    @pytest.mark.parametrize(
        ("message", "expected"),
        [
            ("estou preocupado com o contrato", Emotion.CONCERN),
            ("can you prove it?", Emotion.SKEPTICISM),
            ("não entendi a cobrança", Emotion.CONFUSION),
            ("hurry please", Emotion.URGENCY),
            ("talvez depois", Emotion.HESITATION),
            ("péssimo atendimento", Emotion.FRUSTRATION),
        ],
    )
    def test_emotion_indicators(self, message, expected):
        assert detect_emotion(message).emotion == expected

    def test_first_emotion_in_scan_order_wins(self):
        """Excitement is scanned before urgency."""
        result = detect_emotion("amazing, I want it today")
        assert result.emotion == Emotion.EXCITEMENT

    def test_exclamation_signals_excitement(self):
        assert detect_emotion("Legal!").emotion == Emotion.EXCITEMENT

    def test_matched_indicators_are_reported(self):
        result = detect_emotion("preciso disso hoje, urgente")
        assert result.emotion == Emotion.URGENCY
        # "urgent" is also a substring of "urgente"
        assert result.matched_indicators == ["urgent", "hoje", "urgente"]
