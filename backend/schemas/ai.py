"""AI pipeline schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field


class IntentOut(BaseModel):
    name: str
    confidence: float
    source: str | None = None


class EntityOut(BaseModel):
    type: str
    value: str
    confidence: float


class AIChatRequest(BaseModel):
    message: str = Field(min_length=1, max_length=4000)
    room_id: str | None = Field(default=None, max_length=64)


class AIChatResponse(BaseModel):
    response: str
    intent: IntentOut
    entities: list[EntityOut]
    sentiment: str
    confidence: float
    response_time: float
    cached: bool
    room_id: str | None = None
    message_id: int | None = None


class RetrainResponse(BaseModel):
    success: bool = True
    examples_added: int
