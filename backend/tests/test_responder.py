"""Tests for services/responder.py: templates, LLM path, fallbacks, personalisation."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

from langchain_core.messages import AIMessage

from services.responder import (
    APOLOGY,
    GENERIC_FALLBACKS,
    INTENT_FALLBACKS,
    NEGATIVE_FALLBACK,
    RESPONSE_TEMPLATES,
    TemplateResponseGenerator,
    all_fallbacks,
    build_system_prompt,
    fallback_response,
    personalize,
)


def _no_llm(**kwargs):
    return None


def _history(*intents):
    return {"conversation_history": [{"message": "m", "intent": {"name": n}} for n in intents]}


def _generate(responder, intent, sentiment="neutral", context=None, text="hello"):
    return asyncio.run(responder.generate(text, intent, [], sentiment, context or {}))


class TestPersonalize:
    def test_positive_replaces_periods(self):
        assert personalize("Sure. Done.", "positive", {}) == "Sure! 😊 Done! 😊"

    def test_positive_keeps_existing_emoji(self):
        assert personalize("Hello 👋. Hi.", "positive", {}) == "Hello 👋. Hi."

    def test_negative_adds_support_to_trailing_period(self):
        result = personalize("Let us look.", "negative", {})
        assert result == "Let us look. I'm here to help you through this! 😊"

    def test_negative_skips_when_already_empathetic(self):
        result = personalize("I understand this is hard.", "negative", {})
        assert "help you through this" not in result

    def test_recurring_topic(self):
        result = personalize("Tell me more.", "neutral", _history("learning", "learning", "learning"))
        assert "I notice you're interested in learning" in result

    def test_mixed_topics_not_recurring(self):
        result = personalize("Tell me more.", "neutral", _history("learning", "greeting", "learning"))
        assert "I notice" not in result

    def test_neutral_plain_sentence_gets_cheer(self):
        assert personalize("Okay.", "neutral", {}) == "Okay! 😊"

    def test_exclamation_left_alone(self):
        assert personalize("Okay!", "neutral", {}) == "Okay!"


class TestFallbacks:
    def test_intent_specific(self):
        assert fallback_response({"name": "question"}, "negative") == INTENT_FALLBACKS["question"]

    def test_negative(self):
        assert fallback_response({"name": "other"}, "negative") == NEGATIVE_FALLBACK

    def test_generic(self):
        assert fallback_response({"name": "other"}, "neutral") in GENERIC_FALLBACKS

    def test_pool(self):
        pool = all_fallbacks()
        assert NEGATIVE_FALLBACK in pool
        assert set(GENERIC_FALLBACKS) <= pool


class TestSystemPrompt:
    def test_includes_signals(self):
        prompt = build_system_prompt(
            {"name": "question"},
            [{"type": "place", "value": "Paris"}],
            "negative",
            _history("question"),
        )
        assert "intent appears to be: question" in prompt
        assert "sentiment is negative" in prompt
        assert "place: Paris" in prompt
        assert "conversation context" in prompt

    def test_neutral_omits_sentiment(self):
        assert "sentiment is" not in build_system_prompt({"name": "x"}, [], "neutral", {})


class TestGenerate:
    def test_confident_template(self):
        responder = TemplateResponseGenerator(model_factory=_no_llm)
        reply = _generate(responder, {"name": "greeting", "confidence": 0.9})
        assert reply in {personalize(t, "neutral", {}) for t in RESPONSE_TEMPLATES["greeting"]}

    def test_low_confidence_without_llm_uses_fallback(self):
        responder = TemplateResponseGenerator(model_factory=_no_llm)
        reply = _generate(responder, {"name": "question", "confidence": 0.5})
        assert reply == personalize(INTENT_FALLBACKS["question"], "neutral", {})

    def test_template_confidence_is_exclusive(self):
        responder = TemplateResponseGenerator(model_factory=_no_llm)
        reply = _generate(responder, {"name": "greeting", "confidence": 0.7})
        assert reply in {personalize(t, "neutral", {}) for t in GENERIC_FALLBACKS}

    def test_llm_completion(self):
        llm = MagicMock()
        llm.ainvoke = AsyncMock(return_value=AIMessage(content="Paris is lovely in spring!"))
        responder = TemplateResponseGenerator(model_factory=lambda **kw: llm)
        reply = _generate(responder, {"name": "question", "confidence": 0.4}, text="Tell me about Paris")
        assert reply == "Paris is lovely in spring!"
        messages = llm.ainvoke.await_args.args[0]
        assert messages[1].content == "Tell me about Paris"

    def test_llm_failure_falls_back(self):
        llm = MagicMock()
        llm.ainvoke = AsyncMock(side_effect=RuntimeError("quota"))
        responder = TemplateResponseGenerator(model_factory=lambda **kw: llm)
        reply = _generate(responder, {"name": "other", "confidence": 0.4}, sentiment="negative")
        assert reply == personalize(NEGATIVE_FALLBACK, "negative", {})

    def test_unexpected_error_apologises(self):
        responder = TemplateResponseGenerator(model_factory=_no_llm)
        responder.templates = None
        assert _generate(responder, {"name": "greeting", "confidence": 0.9}) == APOLOGY
