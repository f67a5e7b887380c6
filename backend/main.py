"""FastAPI application entry point."""

from __future__ import annotations

import asyncio
import logging
import sys
import time
import uuid
from contextlib import asynccontextmanager, suppress
from datetime import datetime, timezone
from pathlib import Path

# Ensure backend/ is on sys.path for absolute imports
_backend_dir = str(Path(__file__).resolve().parent)
if _backend_dir not in sys.path:  # pragma: no cover
    sys.path.insert(0, _backend_dir)

try:
    __version__ = (Path(__file__).resolve().parent.parent / "VERSION").read_text().strip()
except Exception:  # pragma: no cover
    __version__ = "0.0.0-dev"

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from api import api_router
from config import DEFAULT_JWT_SECRET, settings
from database import Base, SessionLocal, engine
from errors import fail_fast_handler, register_exception_handlers
from logging_config import request_id_var
from services.analytics import analytics_service
from services.background import dispatcher
from services.cache import response_cache
from services.chat import chat_service
from services.rate_limit import RateLimiter
from ws import ws_router

logger = logging.getLogger(__name__)

CLEANUP_INTERVAL = 3600  # seconds

_started_at = time.monotonic()


async def _cleanup_loop(interval: float = CLEANUP_INTERVAL) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            paused = await asyncio.to_thread(_cleanup_once)
            if paused:
                logger.info("Paused %d inactive chats", paused)
        except Exception:
            logger.exception("Inactive chat cleanup failed")


def _cleanup_once() -> int:
    with SessionLocal() as db:
        return chat_service.cleanup_inactive(db)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Configure unified logging before anything else
    from logging_config import setup_logging
    setup_logging("Server")

    if settings.is_production and settings.JWT_SECRET == DEFAULT_JWT_SECRET:
        raise RuntimeError("JWT_SECRET must be set in production")

    # Startup: create tables if they don't exist
    Base.metadata.create_all(bind=engine)

    asyncio.get_running_loop().set_exception_handler(fail_fast_handler)

    background = [
        asyncio.create_task(analytics_service.run_periodic(), name="analytics-refresh"),
        asyncio.create_task(_cleanup_loop(), name="chat-cleanup"),
    ]
    logger.info("Server started (env=%s, llm=%s)", settings.APP_ENV, settings.llm_enabled)

    yield

    for task in background:
        task.cancel()
    for task in background:
        with suppress(asyncio.CancelledError):
            await task
    dispatcher.cancel_all()
    await response_cache.close()
    logger.info("Server stopped")


app = FastAPI(title="AI Chatbot API", version=__version__, lifespan=lifespan)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.CLIENT_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

rate_limiter = RateLimiter()
app.middleware("http")(rate_limiter)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or f"req_{uuid.uuid4().hex[:12]}"
    request.state.request_id = request_id
    token = request_id_var.set(request_id)
    try:
        response = await call_next(request)
    finally:
        request_id_var.reset(token)
    response.headers["X-Request-ID"] = request_id
    return response


register_exception_handlers(app)

# API routes
app.include_router(api_router)

# WebSocket endpoints
app.include_router(ws_router)


@app.get("/health")
def health() -> dict:
    return {
        "status": "OK",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": round(time.monotonic() - _started_at, 3),
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=settings.PORT, log_config=None)
