"""Chat model factory for intent escalation and generated replies."""

from __future__ import annotations

from langchain_core.language_models import BaseChatModel

from config import settings


def create_chat_model(
    *,
    temperature: float | None = None,
    max_tokens: int | None = None,
    timeout: int | None = None,
) -> BaseChatModel | None:
    """Return a ChatOpenAI client, or None when no API key is configured."""
    if not settings.llm_enabled:
        return None

    from langchain_openai import ChatOpenAI

    kwargs: dict = {"model": settings.OPENAI_MODEL}
    if temperature is not None:
        kwargs["temperature"] = temperature
    if max_tokens is not None:
        kwargs["max_tokens"] = max_tokens
    if timeout is not None:
        kwargs["timeout"] = timeout
    return ChatOpenAI(api_key=settings.OPENAI_API_KEY, **kwargs)


def message_text(response) -> str:
    """Extract plain text from a chat model response."""
    content = getattr(response, "content", response)
    if isinstance(content, list):
        content = "".join(
            part.get("text", "") if isinstance(part, dict) else str(part) for part in content
        )
    return str(content or "").strip()
