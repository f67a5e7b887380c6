"""ChatService: conversation lifecycle, transcript persistence, and queries."""

from __future__ import annotations

import logging
import secrets
import string
import time
from datetime import timedelta

from sqlalchemy import case, func
from sqlalchemy.orm import Session

import errors
from database import utcnow
from models.chat import (
    AI_MODELS,
    CONVERSATION_CATEGORIES,
    DEFAULT_SETTINGS,
    LANGUAGES,
    RESPONSE_STYLES,
    ChatMessage,
    Conversation,
    InvalidStatusTransition,
    Participant,
)
from models.user import User
from services.registry import ActiveChatRegistry, active_chats

logger = logging.getLogger(__name__)

INACTIVITY_THRESHOLD = timedelta(hours=24)
MAX_CONTEXT_LENGTH_RANGE = (1, 50)

_BASE36 = string.digits + string.ascii_lowercase


def _base36(number: int) -> str:
    digits = ""
    while number:
        number, rem = divmod(number, 36)
        digits = _BASE36[rem] + digits
    return digits or "0"


def generate_room_id() -> str:
    stamp = _base36(int(time.time() * 1000))
    suffix = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"room_{stamp}_{suffix}"


def validate_settings(data: dict) -> dict:
    """Return *data* restricted to known settings keys; AppError(400) on bad values."""
    allowed = {
        "language": LANGUAGES,
        "ai_model": AI_MODELS,
        "response_style": RESPONSE_STYLES,
    }
    cleaned: dict = {}
    for key, value in data.items():
        if value is None:
            continue
        if key in allowed:
            if value not in allowed[key]:
                raise errors.validation(f"Invalid {key}: {value}")
            cleaned[key] = value
        elif key == "max_context_length":
            low, high = MAX_CONTEXT_LENGTH_RANGE
            if not isinstance(value, int) or not low <= value <= high:
                raise errors.validation(f"max_context_length must be between {low} and {high}")
            cleaned[key] = value
        else:
            raise errors.validation(f"Unknown setting: {key}")
    return cleaned


class ChatService:
    def __init__(self, registry: ActiveChatRegistry | None = None):
        self.registry = registry if registry is not None else active_chats

    # ── Lookup ─────────────────────────────────────────────────────────────

    def get_chat(self, db: Session, room_id: str) -> Conversation | None:
        return db.query(Conversation).filter(Conversation.room_id == room_id).first()

    def require_chat(self, db: Session, room_id: str) -> Conversation:
        chat = self.get_chat(db, room_id)
        if chat is None:
            raise errors.not_found("Chat not found")
        return chat

    def check_can_post(self, db: Session, room_id: str, user_id: int) -> None:
        """Only participants may post to a stored room; unknown rooms are created on first message."""
        chat = self.get_chat(db, room_id)
        if chat is not None and chat.find_participant(user_id) is None:
            raise errors.forbidden("Not a participant in this chat")

    # ── Lifecycle ──────────────────────────────────────────────────────────

    def create_chat(
        self,
        db: Session,
        user_id: int,
        *,
        room_id: str | None = None,
        category: str = "general",
        tags: list[str] | None = None,
        settings: dict | None = None,
    ) -> Conversation:
        if category not in CONVERSATION_CATEGORIES:
            raise errors.validation(f"Invalid category: {category}")
        chat = Conversation(
            room_id=room_id or generate_room_id(),
            category=category,
            tags=list(tags or []),
            context={},
            settings={**DEFAULT_SETTINGS, **validate_settings(settings or {})},
        )
        chat.add_participant(user_id, "user")
        db.add(chat)
        db.commit()
        db.refresh(chat)
        self.registry.register(chat.room_id, chat.id, [user_id])
        logger.info("New chat created: %s for user %s", chat.room_id, user_id)
        return chat

    def join_chat(self, db: Session, user_id: int, room_id: str) -> Conversation:
        chat = self.require_chat(db, room_id)
        if chat.status == "archived":
            raise errors.conflict("Chat is archived")
        if chat.status != "active":
            chat.transition("active")
        chat.add_participant(user_id, "user")
        db.commit()
        self.registry.register(chat.room_id, chat.id, [p.user_id for p in chat.active_participants])
        logger.info("User %s joined chat %s", user_id, room_id)
        return chat

    def end_chat(self, db: Session, room_id: str, user_id: int) -> Conversation:
        chat = self.require_chat(db, room_id)
        if chat.find_participant(user_id) is None:
            raise errors.forbidden("User is not a participant in this chat")
        chat.remove_participant(user_id)
        if not chat.active_participants and chat.status == "active":
            chat.transition("ended")
            chat.last_activity = utcnow()
        db.commit()
        if chat.status != "active":
            self.registry.evict(room_id)
        logger.info("User %s left chat %s (status=%s)", user_id, room_id, chat.status)
        return chat

    def archive_chat(self, db: Session, room_id: str, user: User) -> Conversation:
        chat = self.require_chat(db, room_id)
        if user.role not in ("admin", "moderator"):
            raise errors.forbidden("Insufficient permissions")
        try:
            chat.transition("archived")
        except InvalidStatusTransition as exc:
            raise errors.conflict(str(exc))
        db.commit()
        self.registry.evict(room_id)
        logger.info("Chat archived: %s by user %s", room_id, user.id)
        return chat

    # ── Messages ───────────────────────────────────────────────────────────

    def save_message(
        self,
        db: Session,
        *,
        user_id: int,
        room_id: str,
        message: str,
        response: str,
        intent: dict | str,
        entities: list[dict] | None = None,
        sentiment: str = "neutral",
        confidence: float | None = None,
        response_time: float = 0.0,
        metadata: dict | None = None,
    ) -> ChatMessage:
        """Append one exchange; the conversation is created on its first message."""
        chat = self.get_chat(db, room_id)
        if chat is None:
            chat = self.create_chat(db, user_id, room_id=room_id)
        if chat.status == "archived":
            raise errors.conflict("Chat is archived")
        if chat.status == "ended":
            raise errors.conflict("Chat has ended")
        if chat.status == "paused":
            chat.transition("active")
        chat.add_participant(user_id, "user")

        record = ChatMessage(
            user_id=user_id,
            message=message,
            response=response,
            intent=intent.get("name", "unknown") if isinstance(intent, dict) else str(intent),
            entities=list(entities or []),
            sentiment=sentiment or "neutral",
            confidence=confidence if confidence is not None else 0.5,
            response_time=response_time or 0.0,
            metadata_=dict(metadata or {}),
        )
        chat.add_message(record)
        db.commit()
        db.refresh(record)
        self.registry.register(chat.room_id, chat.id, [user_id])
        logger.debug("Message saved to chat %s", room_id)
        return record

    def get_history(self, db: Session, room_id: str, limit: int = 50, offset: int = 0) -> list[ChatMessage]:
        chat = self.get_chat(db, room_id)
        if chat is None:
            return []
        return (
            db.query(ChatMessage)
            .filter(ChatMessage.conversation_id == chat.id)
            .order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )

    def add_feedback(
        self, db: Session, room_id: str, message_id: int, rating: int, comment: str | None = None
    ) -> ChatMessage:
        if not 1 <= rating <= 5:
            raise errors.validation("Rating must be between 1 and 5")
        chat = self.require_chat(db, room_id)
        record = next((m for m in chat.messages if m.id == message_id), None)
        if record is None:
            raise errors.not_found("Message not found")
        if record.has_feedback:
            raise errors.conflict("Feedback already submitted for this message")
        record.feedback_rating = rating
        record.feedback_comment = comment
        record.feedback_at = utcnow()
        chat.recompute_analytics()
        db.commit()
        return record

    def search_messages(self, db: Session, room_id: str, query: str, limit: int = 20) -> list[ChatMessage]:
        chat = self.get_chat(db, room_id)
        if chat is None or not query:
            return []
        needle = query.lower()
        matches = [
            m for m in chat.messages
            if needle in (m.message or "").lower() or needle in (m.response or "").lower()
        ]
        return matches[:limit]

    # ── Settings / context ─────────────────────────────────────────────────

    def update_settings(self, db: Session, room_id: str, data: dict) -> Conversation:
        chat = self.require_chat(db, room_id)
        chat.update_settings(validate_settings(data))
        db.commit()
        return chat

    def update_context(self, db: Session, room_id: str, data: dict) -> Conversation:
        chat = self.require_chat(db, room_id)
        chat.update_context(data)
        db.commit()
        return chat

    # ── Listings / statistics ──────────────────────────────────────────────

    def get_user_chats(self, db: Session, user_id: int, limit: int = 20, offset: int = 0) -> list[Conversation]:
        return (
            db.query(Conversation)
            .join(Participant, Participant.conversation_id == Conversation.id)
            .filter(Participant.user_id == user_id)
            .order_by(Conversation.last_activity.desc(), Conversation.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )

    def get_active_chats(self, db: Session) -> list[Conversation]:
        return (
            db.query(Conversation)
            .filter(Conversation.status == "active")
            .order_by(Conversation.last_activity.desc())
            .all()
        )

    def get_statistics(self, db: Session) -> dict:
        total, active, messages, satisfaction, response_time = db.query(
            func.count(Conversation.id),
            func.coalesce(func.sum(case((Conversation.status == "active", 1), else_=0)), 0),
            func.coalesce(func.sum(Conversation.total_messages), 0),
            func.coalesce(func.avg(Conversation.user_satisfaction), 0.0),
            func.coalesce(func.avg(Conversation.average_response_time), 0.0),
        ).one()
        return {
            "total_chats": int(total or 0),
            "active_chats": int(active or 0),
            "total_messages": int(messages or 0),
            "average_satisfaction": float(satisfaction or 0),
            "average_response_time": float(response_time or 0),
        }

    def cleanup_inactive(self, db: Session, threshold: timedelta = INACTIVITY_THRESHOLD) -> int:
        """Pause active chats idle longer than *threshold*; returns how many."""
        cutoff = utcnow() - threshold
        stale = (
            db.query(Conversation)
            .filter(Conversation.status == "active", Conversation.last_activity < cutoff)
            .all()
        )
        for chat in stale:
            chat.transition("paused")
            self.registry.evict(chat.room_id)
        db.commit()
        logger.info("Cleaned up %d inactive chats", len(stale))
        return len(stale)

    def service_stats(self) -> dict:
        return {"active_chats": len(self.registry)}


chat_service = ChatService()
