"""Direct access to the message pipeline under /api/ai."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from auth import get_current_user, require_roles
from database import get_db
from models.user import User
from schemas.ai import AIChatRequest, AIChatResponse, RetrainResponse
from services.analytics import track_exchange
from services.chat import chat_service
from services.pipeline import MessagePipeline, get_pipeline
from services.rate_limit import client_ip

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/chat", response_model=AIChatResponse)
async def ai_chat(
    payload: AIChatRequest,
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    pipeline: MessagePipeline = Depends(get_pipeline),
):
    """Run one message through the pipeline.

    With ``room_id`` the exchange is stored in that room's transcript;
    without it the reply is computed against a per-user scratch context only.
    """
    if payload.room_id:
        chat_service.check_can_post(db, payload.room_id, user.id)
    room_id = payload.room_id or f"direct_{user.id}"
    metadata = {"ip_address": client_ip(request), "user_agent": request.headers.get("user-agent", "")}
    result = await pipeline.process(
        payload.message,
        user.id,
        room_id,
        db=db if payload.room_id else None,
        metadata=metadata,
    )
    track_exchange(user.id, room_id, payload.message, result, metadata)
    return {**result, "room_id": payload.room_id}


@router.get("/stats")
def ai_stats(user: User = Depends(get_current_user), pipeline: MessagePipeline = Depends(get_pipeline)):
    return {"success": True, "data": pipeline.stats()}


@router.post("/retrain", response_model=RetrainResponse)
def retrain(user: User = Depends(require_roles("admin")), pipeline: MessagePipeline = Depends(get_pipeline)):
    added = pipeline.retrain()
    logger.info("Retrain requested by user %s: %d examples", user.id, added)
    return {"success": True, "examples_added": added}
