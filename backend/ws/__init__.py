"""WebSocket endpoints for live chat rooms."""

from fastapi import APIRouter

from ws.chat import router as chat_ws_router

ws_router = APIRouter()
ws_router.include_router(chat_ws_router)

__all__ = ["ws_router"]
