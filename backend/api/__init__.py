"""FastAPI router aggregation."""

from fastapi import APIRouter

from api.ai import router as ai_router
from api.analytics import router as analytics_router
from api.auth import router as auth_router
from api.chat import router as chat_router

api_router = APIRouter(prefix="/api")

api_router.include_router(auth_router, prefix="/auth", tags=["auth"])
api_router.include_router(chat_router, prefix="/chat", tags=["chat"])
api_router.include_router(analytics_router, prefix="/analytics", tags=["analytics"])
api_router.include_router(ai_router, prefix="/ai", tags=["ai"])
