"""Conversation endpoints under /api/chat."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

import errors
from auth import get_current_user, require_roles
from database import get_db
from models.chat import Conversation
from models.user import User
from schemas.ai import AIChatResponse
from schemas.chat import (
    ChatCreate,
    ChatSettingsIn,
    ContextUpdate,
    ConversationOut,
    FeedbackIn,
    MessageIn,
    MessageOut,
)
from services.analytics import track_exchange
from services.chat import chat_service
from services.pipeline import MessagePipeline, get_pipeline
from services.rate_limit import client_ip

logger = logging.getLogger(__name__)

router = APIRouter()

_STAFF_ROLES = ("admin", "moderator")


def _serialize(chat: Conversation) -> dict:
    return ConversationOut.model_validate(chat).model_dump(mode="json")


def _visible_chat(db: Session, room_id: str, user: User) -> Conversation:
    chat = chat_service.require_chat(db, room_id)
    if chat.find_participant(user.id) is None and user.role not in _STAFF_ROLES:
        raise errors.forbidden("Not a participant in this chat")
    return chat


# ---------------------------------------------------------------------------
# Collection
# ---------------------------------------------------------------------------


@router.get("/")
def list_my_chats(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    chats = chat_service.get_user_chats(db, user.id, limit=limit, offset=offset)
    return {"success": True, "data": {"chats": [_serialize(c) for c in chats], "limit": limit, "offset": offset}}


@router.post("/", status_code=201)
def create_chat(
    payload: ChatCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    settings = payload.settings.model_dump(exclude_none=True) if payload.settings else {}
    chat = chat_service.create_chat(db, user.id, category=payload.category, tags=payload.tags, settings=settings)
    return {"success": True, "message": "Chat created", "data": {"chat": _serialize(chat)}}


@router.get("/active")
def list_active_chats(
    user: User = Depends(require_roles(*_STAFF_ROLES)),
    db: Session = Depends(get_db),
):
    return {"success": True, "data": {"chats": [_serialize(c) for c in chat_service.get_active_chats(db)]}}


@router.get("/stats")
def chat_statistics(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {
        "success": True,
        "data": {"statistics": chat_service.get_statistics(db), "service": chat_service.service_stats()},
    }


@router.post("/cleanup")
def cleanup_inactive_chats(
    user: User = Depends(require_roles("admin")),
    db: Session = Depends(get_db),
):
    paused = chat_service.cleanup_inactive(db)
    return {"success": True, "message": f"Paused {paused} inactive chats", "data": {"paused": paused}}


# ---------------------------------------------------------------------------
# Single conversation
# ---------------------------------------------------------------------------


@router.get("/{room_id}")
def get_chat(room_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"success": True, "data": {"chat": _serialize(_visible_chat(db, room_id, user))}}


@router.post("/{room_id}/join")
def join_chat(room_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    chat = chat_service.join_chat(db, user.id, room_id)
    return {"success": True, "message": "Joined chat", "data": {"chat": _serialize(chat)}}


@router.post("/{room_id}/end")
def end_chat(room_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    chat = chat_service.end_chat(db, room_id, user.id)
    return {"success": True, "message": "Left chat", "data": {"chat": _serialize(chat)}}


@router.post("/{room_id}/archive")
def archive_chat(
    room_id: str,
    user: User = Depends(require_roles(*_STAFF_ROLES)),
    db: Session = Depends(get_db),
):
    chat = chat_service.archive_chat(db, room_id, user)
    return {"success": True, "message": "Chat archived", "data": {"chat": _serialize(chat)}}


@router.get("/{room_id}/messages")
def chat_history(
    room_id: str,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    _visible_chat(db, room_id, user)
    messages = chat_service.get_history(db, room_id, limit=limit, offset=offset)
    return {
        "success": True,
        "data": {"messages": [MessageOut.model_validate(m).model_dump(mode="json") for m in messages]},
    }


@router.post("/{room_id}/messages", response_model=AIChatResponse)
async def send_message(
    room_id: str,
    payload: MessageIn,
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    pipeline: MessagePipeline = Depends(get_pipeline),
):
    chat_service.check_can_post(db, room_id, user.id)
    metadata = {"ip_address": client_ip(request), "user_agent": request.headers.get("user-agent", "")}
    result = await pipeline.process(payload.message, user.id, room_id, db=db, metadata=metadata)
    track_exchange(user.id, room_id, payload.message, result, metadata)
    return {**result, "room_id": room_id}


@router.get("/{room_id}/search")
def search_messages(
    room_id: str,
    q: str = Query(..., min_length=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    _visible_chat(db, room_id, user)
    messages = chat_service.search_messages(db, room_id, q, limit=limit)
    return {
        "success": True,
        "data": {"messages": [MessageOut.model_validate(m).model_dump(mode="json") for m in messages]},
    }


@router.put("/{room_id}/settings")
def update_settings(
    room_id: str,
    payload: ChatSettingsIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    _visible_chat(db, room_id, user)
    chat = chat_service.update_settings(db, room_id, payload.model_dump(exclude_none=True))
    return {"success": True, "message": "Settings updated", "data": {"chat": _serialize(chat)}}


@router.put("/{room_id}/context")
def update_context(
    room_id: str,
    payload: ContextUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    _visible_chat(db, room_id, user)
    chat = chat_service.update_context(db, room_id, payload.model_dump(exclude_none=True))
    return {"success": True, "message": "Context updated", "data": {"chat": _serialize(chat)}}


@router.post("/{room_id}/messages/{message_id}/feedback")
def add_feedback(
    room_id: str,
    message_id: int,
    payload: FeedbackIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    _visible_chat(db, room_id, user)
    record = chat_service.add_feedback(db, room_id, message_id, payload.rating, payload.comment)
    return {
        "success": True,
        "message": "Feedback recorded",
        "data": {"message": MessageOut.model_validate(record).model_dump(mode="json")},
    }
