"""Reply generation: canned templates, an optional LLM completion, and fallbacks."""

from __future__ import annotations

import logging
import random
import re

from langchain_core.messages import HumanMessage, SystemMessage

from services.llm import create_chat_model, message_text

logger = logging.getLogger(__name__)

TEMPLATE_CONFIDENCE = 0.7

APOLOGY = (
    "I apologize, but I'm having trouble generating a response right now. "
    "Could you please try again?"
)

RESPONSE_TEMPLATES: dict[str, tuple[str, ...]] = {
    "greeting": (
        "Hello! 👋 How can I help you today? I'm here to assist with questions, provide information, or just chat!",
        "Hi there! 😊 I'm your AI assistant and I'm excited to help. What would you like to explore or work on together?",
        "Hey! Great to see you. I'm ready to help with whatever you need - questions, tasks, or just conversation.",
        "Greetings! I'm your AI companion. What would you like to learn about or discuss today?",
    ),
    "farewell": (
        "Goodbye! Have a wonderful day ahead! 🌟",
        "See you later! Feel free to come back anytime if you need help.",
        "Take care! I'll be here when you need assistance or want to chat again.",
        "Bye! It was great chatting with you. Come back soon! 👋",
    ),
    "help": (
        "I'm here to help! I can answer questions, provide information, assist with tasks, help with "
        "problem-solving, or just be a great conversation partner. What specific area do you need help with?",
        "Absolutely! I'm your AI assistant and I'm ready to help. I can provide information, answer questions, "
        "help with various topics, or just chat. What would you like to work on?",
        "I'm glad you asked! I'm designed to help with a wide range of topics. Whether you need information, "
        "have questions, want to explore something new, or just need someone to talk to, I'm here for you. "
        "What can I help you with today?",
    ),
    "question": (
        "That's an interesting question! I'd be happy to help you with that. Could you provide a bit more "
        "detail so I can give you the most accurate and helpful response?",
        "Great question! I'm here to help. To give you the best answer, could you tell me a bit more about "
        "what you're looking for?",
        "I'd love to help with that! To provide you with the most relevant information, could you share a "
        "bit more context about your question?",
    ),
    "complaint": (
        "I'm sorry to hear you're experiencing an issue. Let me help you resolve this problem together.",
        "I understand your frustration. Let's work together to find a solution and get this sorted out.",
        "I apologize for the inconvenience. Let me assist you in finding a resolution to this problem.",
    ),
    "compliment": (
        "Thank you! 😊 I'm glad I could help and I appreciate your kind words.",
        "You're welcome! I'm happy to assist and I really appreciate your feedback.",
        "Thank you! It's my pleasure to help you. I'm here whenever you need assistance.",
    ),
    "information_request": (
        "I'd be happy to provide you with that information! Let me gather the details you need.",
        "Great! I can help you with that information. Let me find the most relevant details for you.",
        "Absolutely! I'll get you that information right away. What specific details are you looking for?",
    ),
    "task_request": (
        "I'm ready to help you with that task! Let me understand what you need and guide you through it.",
        "Great! I can assist you with that. Let me break down what we need to do and help you accomplish it.",
        "I'd love to help you with that task! Let me understand your requirements and provide the best assistance.",
    ),
    "learning": (
        "Learning is wonderful! I'm excited to help you explore this topic. What specific aspect would you "
        "like to dive into?",
        "That's a great topic to learn about! I'm here to help you understand it better. What would you "
        "like to focus on?",
        "I love helping people learn! Let me guide you through this topic. What's your current level of "
        "understanding?",
    ),
    "creative": (
        "Creativity is amazing! I'd love to help you explore ideas and develop your creative project.",
        "That sounds like a wonderful creative endeavor! I'm here to help you brainstorm and develop your ideas.",
        "I'm excited to help with your creative project! Let's explore possibilities and bring your vision to life.",
    ),
}

INTENT_FALLBACKS: dict[str, str] = {
    "question": (
        "I'd love to help with your question! To give you the best answer, could you provide a bit more "
        "context or rephrase it in a different way?"
    ),
    "information_request": (
        "I'm here to help you find that information! Could you be more specific about what you're looking for?"
    ),
    "task_request": (
        "I'm ready to help you with that task! Let me understand what you need - could you break it down "
        "into smaller steps?"
    ),
    "learning": (
        "I'm excited to help you learn! To make this most helpful, could you tell me what you already know "
        "about this topic?"
    ),
    "creative": (
        "I'd love to help with your creative project! Could you share more details about what you're working on?"
    ),
}

NEGATIVE_FALLBACK = (
    "I understand this might be frustrating. Let me try to help you in a different way. "
    "Could you explain what you need in simpler terms?"
)

GENERIC_FALLBACKS: tuple[str, ...] = (
    "I want to make sure I understand you correctly. Could you rephrase that or provide a bit more context?",
    "I'm here to help, but I need to understand better what you're looking for. Could you try explaining "
    "it differently?",
    "I'd love to assist you with that! To give you the most helpful response, could you provide a bit more detail?",
    "I'm still learning and want to make sure I get this right. Could you help me understand what you need "
    "by explaining it another way?",
)

_CELEBRATORY = ("😊", "👋", "🌟")
_EMPATHETIC = ("I understand", "I'm here")
_TRAILING_PERIOD = re.compile(r"\.$")


def all_fallbacks() -> set[str]:
    return {*INTENT_FALLBACKS.values(), NEGATIVE_FALLBACK, *GENERIC_FALLBACKS}


def fallback_response(intent: dict | None, sentiment: str) -> str:
    name = (intent or {}).get("name")
    if name in INTENT_FALLBACKS:
        return INTENT_FALLBACKS[name]
    if sentiment == "negative":
        return NEGATIVE_FALLBACK
    return random.choice(GENERIC_FALLBACKS)


def build_system_prompt(intent: dict, entities: list[dict], sentiment: str, context: dict) -> str:
    parts = [
        "You are a helpful, friendly, and engaging AI assistant. Respond to the user's message in a "
        "natural, conversational way that feels like talking to a knowledgeable friend."
    ]
    if intent.get("name"):
        parts.append(f"The user's intent appears to be: {intent['name']}.")
    if sentiment != "neutral":
        parts.append(
            f"The user's sentiment is {sentiment}, so adjust your tone accordingly - be more enthusiastic "
            "for positive sentiment and more empathetic and supportive for negative sentiment."
        )
    if entities:
        entity_list = ", ".join(f"{e['type']}: {e['value']}" for e in entities)
        parts.append(
            f"The message contains these entities: {entity_list}. Use this information to provide more "
            "relevant and specific responses."
        )
    if context.get("conversation_history"):
        parts.append(
            "Consider the conversation context when responding. If the user is building on previous "
            "topics, acknowledge that and provide continuity."
        )
    parts.append(
        "Keep your response concise (1-3 sentences), helpful, and engaging. Use a warm, friendly tone "
        "and occasionally add appropriate emojis to make the conversation more pleasant."
    )
    return " ".join(parts)


def _recurring_intent(context: dict) -> str | None:
    recent = [
        (turn.get("intent") or {}).get("name")
        for turn in (context.get("conversation_history") or [])[-3:]
    ]
    names = {name for name in recent if name}
    return names.pop() if len(names) == 1 else None


def personalize(text: str, sentiment: str, context: dict) -> str:
    """Adjust tone for *sentiment* and acknowledge a recurring topic."""
    result = text
    if sentiment == "positive":
        if not any(marker in result for marker in _CELEBRATORY):
            result = result.replace(".", "! 😊")
    elif sentiment == "negative":
        if not any(phrase in result for phrase in _EMPATHETIC):
            result = _TRAILING_PERIOD.sub(". I'm here to help you through this.", result)

    topic = _recurring_intent(context)
    if topic:
        result = _TRAILING_PERIOD.sub(
            f". I notice you're interested in {topic} - I'd be happy to explore that further with you!",
            result,
        )

    if not any(marker in result for marker in _CELEBRATORY) and "!" not in result:
        if result.endswith("."):
            result = result[:-1] + "! 😊"
    return result


class TemplateResponseGenerator:
    """ResponseGenerator: template, then LLM completion, then canned fallback."""

    def __init__(self, templates: dict[str, tuple[str, ...]] | None = None, model_factory=create_chat_model):
        self.templates = templates if templates is not None else RESPONSE_TEMPLATES
        self._model_factory = model_factory

    async def _complete(self, text: str, intent: dict, entities: list[dict], sentiment: str, context: dict) -> str | None:
        llm = self._model_factory(temperature=0.7, max_tokens=150)
        if llm is None:
            return None
        prompt = build_system_prompt(intent, entities, sentiment, context)
        try:
            response = await llm.ainvoke([SystemMessage(content=prompt), HumanMessage(content=text)])
        except Exception:
            logger.warning("LLM response generation failed, using fallback", exc_info=True)
            return None
        return message_text(response) or None

    async def generate(self, text: str, intent: dict, entities: list[dict], sentiment: str, context: dict) -> str:
        try:
            templates = self.templates.get(intent.get("name"))
            if templates and intent.get("confidence", 0) > TEMPLATE_CONFIDENCE:
                chosen = random.choice(templates)
            else:
                chosen = await self._complete(text, intent, entities, sentiment, context)
                if chosen is None:
                    chosen = fallback_response(intent, sentiment)
            return personalize(chosen, sentiment, context)
        except Exception:
            logger.exception("Response generation error")
            return APOLOGY
