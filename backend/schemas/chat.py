"""Chat schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

Language = Literal["en", "es", "fr", "de", "zh", "ja", "ko"]
AIModel = Literal["gpt-3.5-turbo", "gpt-4", "bert-base", "custom"]
ResponseStyle = Literal["conversational", "formal", "casual", "technical"]
Category = Literal["general", "support", "sales", "technical", "personal"]


class ChatSettingsIn(BaseModel):
    language: Language | None = None
    ai_model: AIModel | None = None
    response_style: ResponseStyle | None = None
    max_context_length: int | None = Field(default=None, ge=1, le=50)


class ChatCreate(BaseModel):
    category: Category = "general"
    tags: list[str] = Field(default_factory=list)
    settings: ChatSettingsIn | None = None


class ContextUpdate(BaseModel):
    current_topic: str | None = None
    user_preferences: dict | None = None
    conversation_flow: list[str] | None = None


class MessageIn(BaseModel):
    message: str = Field(min_length=1, max_length=4000)


class FeedbackIn(BaseModel):
    rating: int = Field(ge=1, le=5)
    comment: str | None = Field(default=None, max_length=1000)


class ParticipantOut(BaseModel):
    user_id: int
    role: str
    joined_at: datetime
    left_at: datetime | None = None

    model_config = {"from_attributes": True}


class MessageOut(BaseModel):
    id: int
    user_id: int
    message: str
    response: str
    intent: str
    entities: list[dict]
    sentiment: str
    confidence: float
    response_time: float
    feedback_rating: int | None = None
    feedback_comment: str | None = None
    feedback_at: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class ConversationOut(BaseModel):
    id: int
    room_id: str
    status: str
    category: str
    tags: list[str]
    context: dict
    settings: dict
    total_messages: int
    average_response_time: float
    user_satisfaction: float
    last_activity: datetime
    created_at: datetime
    participants: list[ParticipantOut]

    model_config = {"from_attributes": True}


class ChatStatistics(BaseModel):
    total_chats: int
    active_chats: int
    total_messages: int
    average_satisfaction: float
    average_response_time: float
