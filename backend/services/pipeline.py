"""MessagePipeline: intent, entities, sentiment, reply, context, transcript, cache.

``process`` is the single entry point used by the REST and WebSocket layers.
Each stage degrades on its own; anything that still escapes is turned into a
fixed low-confidence fallback result, so callers never see an exception.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import Counter, deque
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy.orm import Session

from config import settings
from services.cache import ResponseCache, response_cache
from services.chat import ChatService, chat_service
from services.context import ContextStore

logger = logging.getLogger(__name__)

RESPONSE_TTL = 3600
LEARNING_BUFFER_SIZE = 1000

FALLBACK_RESPONSE = (
    "I apologize, but I'm having trouble processing your message right now. "
    "Could you please try rephrasing it?"
)


class IntentDetector(Protocol):
    async def detect(self, text: str) -> dict: ...


class EntityExtractor(Protocol):
    def extract(self, text: str) -> list[dict]: ...


class SentimentAnalyzer(Protocol):
    def analyze(self, text: str) -> str: ...


class ResponseGenerator(Protocol):
    async def generate(
        self, text: str, intent: dict, entities: list[dict], sentiment: str, context: dict
    ) -> str: ...


def response_cache_key(text: str) -> str:
    # Keyed on the text alone: identical input shares a reply across users and rooms.
    return f"ai_response:{text.lower().strip()}"


def fallback_result(elapsed_ms: float) -> dict:
    return {
        "response": FALLBACK_RESPONSE,
        "intent": {"name": "fallback", "confidence": 0.1, "source": "fallback"},
        "entities": [],
        "sentiment": "neutral",
        "confidence": 0.1,
        "response_time": elapsed_ms,
        "cached": False,
    }


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)


class MessagePipeline:
    def __init__(
        self,
        intent_detector: IntentDetector,
        entity_extractor: EntityExtractor,
        sentiment_analyzer: SentimentAnalyzer,
        responder: ResponseGenerator,
        cache: ResponseCache,
        chats: ChatService | None = None,
        learning_limit: int = LEARNING_BUFFER_SIZE,
    ):
        self.intent_detector = intent_detector
        self.entity_extractor = entity_extractor
        self.sentiment_analyzer = sentiment_analyzer
        self.responder = responder
        self.cache = cache
        self.contexts = ContextStore(cache)
        self.chats = chats
        self._learning: deque[dict] = deque(maxlen=learning_limit)

    async def process(
        self,
        text: str,
        user_id: int,
        room_id: str,
        db: Session | None = None,
        metadata: dict | None = None,
    ) -> dict:
        """Run one message through the pipeline and return the reply record.

        When *db* is given, the exchange is appended to the room's transcript
        and the result carries the stored ``message_id``.
        """
        start = time.perf_counter()
        try:
            key = response_cache_key(text)
            cached = await self.cache.get(key)
            if cached:
                logger.debug("Response cache hit for %s", key)
                result = {**cached, "response_time": _elapsed_ms(start), "cached": True}
            else:
                result = await self._compute(text, user_id, room_id, start)

            message_id = self._persist(db, text, user_id, room_id, result, metadata)

            if not result["cached"]:
                await self.cache.set(key, result, RESPONSE_TTL)

            if message_id is not None:
                result = {**result, "message_id": message_id}
            return result
        except Exception:
            logger.exception("Error processing message for room %s", room_id)
            if db is not None:
                db.rollback()
            return fallback_result(_elapsed_ms(start))

    async def _compute(self, text: str, user_id: int, room_id: str, start: float) -> dict:
        intent = await self.intent_detector.detect(text)
        entities = await asyncio.to_thread(self.entity_extractor.extract, text)
        sentiment = self.sentiment_analyzer.analyze(text)
        context = await self.contexts.get_context(user_id, room_id)

        response = await self.responder.generate(text, intent, entities, sentiment, context)

        await self.contexts.record_turn(user_id, room_id, text, intent, entities)
        self._remember(text, intent, entities, sentiment, response, user_id)

        return {
            "response": response,
            "intent": intent,
            "entities": entities,
            "sentiment": sentiment,
            "confidence": intent.get("confidence", 0.0),
            "response_time": _elapsed_ms(start),
            "cached": False,
        }

    def _persist(
        self, db: Session | None, text: str, user_id: int, room_id: str, result: dict, metadata: dict | None
    ) -> int | None:
        if db is None or self.chats is None:
            return None
        record = self.chats.save_message(
            db,
            user_id=user_id,
            room_id=room_id,
            message=text,
            response=result["response"],
            intent=result["intent"],
            entities=result["entities"],
            sentiment=result["sentiment"],
            confidence=result["confidence"],
            response_time=result["response_time"],
            metadata=metadata,
        )
        return record.id

    # ── Learning buffer ────────────────────────────────────────────────────

    def _remember(self, text, intent, entities, sentiment, response, user_id) -> None:
        self._learning.append(
            {
                "message": text,
                "intent": intent,
                "entities": entities,
                "sentiment": sentiment,
                "response": response,
                "user_id": user_id,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        )

    @property
    def learning_buffer(self) -> list[dict]:
        return list(self._learning)

    def retrain(self) -> int:
        """Feed buffered examples to the intent classifier and refit it.

        Returns the number of examples added; the buffer is emptied on success.
        """
        add_examples = getattr(self.intent_detector, "add_examples", None)
        fit = getattr(self.intent_detector, "fit", None)
        if add_examples is None or fit is None:
            logger.info("Intent detector does not support retraining")
            return 0
        examples = [
            (entry["message"], (entry.get("intent") or {}).get("name"))
            for entry in self._learning
        ]
        added = add_examples(examples)
        fit()
        self._learning.clear()
        logger.info("Intent classifier retrained with %d new examples", added)
        return added

    def stats(self) -> dict:
        entries = list(self._learning)
        distribution = Counter(
            (e.get("intent") or {}).get("name") for e in entries if (e.get("intent") or {}).get("name")
        )
        confidences = [
            e["intent"]["confidence"] for e in entries if (e.get("intent") or {}).get("confidence")
        ]
        return {
            "total_processed": len(entries),
            "intent_distribution": dict(distribution),
            "average_confidence": sum(confidences) / len(confidences) if confidences else 0,
            "model_status": {
                "intent_classifier": bool(getattr(self.intent_detector, "ready", True)),
                "entity_extractor": self.entity_extractor is not None,
                "sentiment_analyzer": self.sentiment_analyzer is not None,
                "openai": settings.llm_enabled,
            },
        }


_pipeline: MessagePipeline | None = None


def build_pipeline(cache: ResponseCache | None = None, chats: ChatService | None = None) -> MessagePipeline:
    from services.entities import SpacyEntityExtractor
    from services.intent import NaiveBayesIntentDetector
    from services.responder import TemplateResponseGenerator
    from services.sentiment import LexiconSentimentAnalyzer

    return MessagePipeline(
        intent_detector=NaiveBayesIntentDetector(),
        entity_extractor=SpacyEntityExtractor(),
        sentiment_analyzer=LexiconSentimentAnalyzer(),
        responder=TemplateResponseGenerator(),
        cache=cache or response_cache,
        chats=chats or chat_service,
    )


def get_pipeline() -> MessagePipeline:
    """Process-wide pipeline, built on first use."""
    global _pipeline
    if _pipeline is None:
        _pipeline = build_pipeline()
    return _pipeline


def set_pipeline(pipeline: MessagePipeline | None) -> None:
    global _pipeline
    _pipeline = pipeline
