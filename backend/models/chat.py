"""Conversation, participant, and chat message models."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base, utcnow

CONVERSATION_STATUSES = ("active", "paused", "ended", "archived")
CONVERSATION_CATEGORIES = ("general", "support", "sales", "technical", "personal")
PARTICIPANT_ROLES = ("user", "ai", "moderator")
SENTIMENTS = ("positive", "negative", "neutral")

LANGUAGES = ("en", "es", "fr", "de", "zh", "ja", "ko")
AI_MODELS = ("gpt-3.5-turbo", "gpt-4", "bert-base", "custom")
RESPONSE_STYLES = ("conversational", "formal", "casual", "technical")

DEFAULT_SETTINGS = {
    "language": "en",
    "ai_model": "gpt-3.5-turbo",
    "response_style": "conversational",
    "max_context_length": 10,
}

# Allowed status moves. "ended" -> "active" only happens when someone joins.
_TRANSITIONS: dict[str, set[str]] = {
    "active": {"paused", "ended", "archived"},
    "paused": {"active", "archived"},
    "ended": {"active", "archived"},
    "archived": set(),
}


class InvalidStatusTransition(ValueError):
    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot move chat from '{current}' to '{target}'")
        self.current = current
        self.target = target


class Conversation(Base):
    __tablename__ = "conversations"

    id: Mapped[int] = mapped_column(primary_key=True)
    room_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    status: Mapped[str] = mapped_column(String(15), default="active", index=True)
    category: Mapped[str] = mapped_column(String(15), default="general", index=True)
    tags: Mapped[list] = mapped_column(JSON, default=list)
    context: Mapped[dict] = mapped_column(JSON, default=dict)
    settings: Mapped[dict] = mapped_column(JSON, default=lambda: dict(DEFAULT_SETTINGS))

    # Derived analytics, refreshed by recompute_analytics()
    total_messages: Mapped[int] = mapped_column(Integer, default=0)
    average_response_time: Mapped[float] = mapped_column(Float, default=0.0)
    user_satisfaction: Mapped[float] = mapped_column(Float, default=0.0)
    last_activity: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    participants: Mapped[list["Participant"]] = relationship(
        "Participant",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="Participant.id",
    )
    messages: Mapped[list["ChatMessage"]] = relationship(
        "ChatMessage",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="ChatMessage.id",
    )

    @property
    def active_participants(self) -> list["Participant"]:
        return [p for p in self.participants if p.left_at is None]

    @property
    def message_count(self) -> int:
        return len(self.messages)

    @property
    def duration_ms(self) -> float:
        if not self.messages:
            return 0
        first, last = self.messages[0].created_at, self.messages[-1].created_at
        return (last - first).total_seconds() * 1000

    def find_participant(self, user_id: int) -> "Participant | None":
        return next((p for p in self.participants if p.user_id == user_id), None)

    def add_participant(self, user_id: int, role: str = "user") -> "Participant":
        """Add *user_id* once; a returning participant gets its left_at cleared."""
        participant = self.find_participant(user_id)
        if participant is None:
            participant = Participant(user_id=user_id, role=role)
            self.participants.append(participant)
        elif participant.left_at is not None:
            participant.left_at = None
            participant.joined_at = utcnow()
        return participant

    def remove_participant(self, user_id: int) -> None:
        participant = self.find_participant(user_id)
        if participant is not None and participant.left_at is None:
            participant.left_at = utcnow()

    def add_message(self, message: "ChatMessage") -> "ChatMessage":
        self.messages.append(message)
        self.recompute_analytics()
        return message

    def recompute_analytics(self) -> None:
        """Refresh message count, mean latency, and mean satisfaction."""
        self.total_messages = len(self.messages)
        if self.messages:
            self.average_response_time = (
                sum(m.response_time or 0 for m in self.messages) / len(self.messages)
            )
            self.last_activity = utcnow()
        rated = [m.feedback_rating for m in self.messages if m.feedback_rating]
        if rated:
            self.user_satisfaction = sum(rated) / len(rated)

    def transition(self, target: str) -> None:
        if target not in CONVERSATION_STATUSES:
            raise InvalidStatusTransition(self.status, target)
        if target == self.status:
            return
        if target not in _TRANSITIONS.get(self.status, set()):
            raise InvalidStatusTransition(self.status, target)
        self.status = target

    def update_context(self, data: dict) -> None:
        # Reassign so the JSON column is flagged dirty
        self.context = {**(self.context or {}), **data}

    def update_settings(self, data: dict) -> None:
        self.settings = {**(self.settings or DEFAULT_SETTINGS), **data}

    def recent_context(self, limit: int = 5) -> list[dict]:
        return [
            {
                "message": m.message,
                "response": m.response,
                "intent": m.intent,
                "timestamp": m.created_at,
            }
            for m in self.messages[-limit:]
        ]

    def __repr__(self):
        return f"<Conversation {self.room_id} ({self.status})>"


class Participant(Base):
    __tablename__ = "conversation_participants"

    id: Mapped[int] = mapped_column(primary_key=True)
    conversation_id: Mapped[int] = mapped_column(
        ForeignKey("conversations.id", ondelete="CASCADE"), index=True
    )
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    role: Mapped[str] = mapped_column(String(15), default="user")
    joined_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    left_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    conversation: Mapped[Conversation] = relationship("Conversation", back_populates="participants")
    user: Mapped["User"] = relationship("User")  # noqa: F821


class ChatMessage(Base):
    __tablename__ = "chat_messages"

    id: Mapped[int] = mapped_column(primary_key=True)
    conversation_id: Mapped[int] = mapped_column(
        ForeignKey("conversations.id", ondelete="CASCADE"), index=True
    )
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))
    message: Mapped[str] = mapped_column(Text)
    response: Mapped[str] = mapped_column(Text)
    intent: Mapped[str] = mapped_column(String(50))
    entities: Mapped[list] = mapped_column(JSON, default=list)
    sentiment: Mapped[str] = mapped_column(String(10), default="neutral")
    confidence: Mapped[float] = mapped_column(Float, default=0.5)
    response_time: Mapped[float] = mapped_column(Float, default=0.0)

    feedback_rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    feedback_comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    feedback_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    metadata_: Mapped[dict] = mapped_column("metadata", JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)

    conversation: Mapped[Conversation] = relationship("Conversation", back_populates="messages")

    @property
    def has_feedback(self) -> bool:
        return self.feedback_rating is not None

    def __repr__(self):
        return f"<ChatMessage {self.id} intent={self.intent}>"
