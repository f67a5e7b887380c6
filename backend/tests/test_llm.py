"""Tests for services/llm.py: chat model factory and response text extraction."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

from services.llm import create_chat_model, message_text


class TestCreateChatModel:
    def test_disabled_without_key(self, monkeypatch):
        monkeypatch.setattr("services.llm.settings.OPENAI_API_KEY", "")
        assert create_chat_model() is None

    def test_passes_only_given_options(self, monkeypatch):
        monkeypatch.setattr("services.llm.settings.OPENAI_API_KEY", "sk-test")
        monkeypatch.setattr("services.llm.settings.OPENAI_MODEL", "gpt-test")
        mock_cls = MagicMock()
        with patch.dict("sys.modules", {"langchain_openai": MagicMock(ChatOpenAI=mock_cls)}):
            create_chat_model(temperature=0.1, max_tokens=50)
        mock_cls.assert_called_once_with(api_key="sk-test", model="gpt-test", temperature=0.1, max_tokens=50)


class TestMessageText:
    def test_plain_content(self):
        assert message_text(SimpleNamespace(content="  hi there \n")) == "hi there"

    def test_content_parts(self):
        parts = [{"type": "text", "text": "Hello"}, {"type": "text", "text": " world"}]
        assert message_text(SimpleNamespace(content=parts)) == "Hello world"

    def test_bare_string_and_none(self):
        assert message_text("ok") == "ok"
        assert message_text(SimpleNamespace(content=None)) == ""
