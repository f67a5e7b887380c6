"""Application error taxonomy and the global FastAPI exception handlers."""

from __future__ import annotations

import logging
import os
import re
import signal
import traceback
from datetime import datetime, timezone

import redis
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from jose import ExpiredSignatureError, JWTError
from sqlalchemy.exc import DataError, IntegrityError, NoResultFound, StatementError
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import settings

logger = logging.getLogger(__name__)


class AppError(Exception):
    """An expected, client-facing failure with an HTTP status."""

    def __init__(self, message: str, status_code: int = 500, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details or {}

    @property
    def status(self) -> str:
        return "fail" if 400 <= self.status_code < 500 else "error"


# ── Typed constructors ─────────────────────────────────────────────────────

def validation(message: str) -> AppError:
    return AppError(message, 400)


def unauthorized(message: str = "Unauthorized access") -> AppError:
    return AppError(message, 401)


def forbidden(message: str = "Access forbidden") -> AppError:
    return AppError(message, 403)


def not_found(message: str = "Resource not found") -> AppError:
    return AppError(message, 404)


def conflict(message: str = "Resource conflict") -> AppError:
    return AppError(message, 409)


def locked(message: str = "Account is temporarily locked") -> AppError:
    return AppError(message, 423)


def rate_limited(message: str = "Too many requests") -> AppError:
    return AppError(message, 429)


def internal(message: str = "Internal server error") -> AppError:
    return AppError(message, 500)


def service_unavailable(message: str = "Service unavailable") -> AppError:
    return AppError(message, 503)


# ── Normalisation of library errors ────────────────────────────────────────

_DUPLICATE_FIELD_RE = re.compile(
    r"(?:UNIQUE constraint failed: \w+\.(\w+))|(?:Key \((\w+)\)=)|(?:Duplicate entry .* for key '(?:\w+\.)?(\w+)')"
)


def _duplicate_field(exc: IntegrityError) -> str | None:
    match = _DUPLICATE_FIELD_RE.search(str(exc.orig))
    if not match:
        return None
    return next(g for g in match.groups() if g)


def normalize_exception(exc: Exception) -> AppError:
    """Map any exception onto the AppError taxonomy."""
    if isinstance(exc, AppError):
        return exc
    if isinstance(exc, StarletteHTTPException):
        return AppError(str(exc.detail), exc.status_code)
    if isinstance(exc, RequestValidationError):
        messages = [
            f"{'.'.join(str(p) for p in err.get('loc', ())[1:]) or 'body'}: {err.get('msg', '')}"
            for err in exc.errors()
        ]
        return AppError(", ".join(messages) or "Invalid request", 400)
    if isinstance(exc, IntegrityError):
        field = _duplicate_field(exc)
        if field:
            return AppError(f"{field[:1].upper()}{field[1:]} already exists", 409)
        return AppError("Resource conflict", 409)
    if isinstance(exc, NoResultFound):
        return AppError("Resource not found", 404)
    if isinstance(exc, (DataError, StatementError)):
        # Bad id / value that the database could not cast
        return AppError("Resource not found", 404)
    if isinstance(exc, ExpiredSignatureError):
        return AppError("Token expired", 401)
    if isinstance(exc, JWTError):
        return AppError("Invalid token", 401)
    if isinstance(exc, (ConnectionError, redis.ConnectionError)):
        return AppError("Service temporarily unavailable", 503)
    if isinstance(exc, TimeoutError):
        return AppError("Request timeout", 408)
    return AppError("Internal Server Error", 500)


def error_body(error: AppError, request: Request, exc: Exception) -> dict:
    body: dict = {
        "success": False,
        "message": error.message,
        "path": request.url.path,
        "method": request.method,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        body["requestId"] = request_id
    if not settings.is_production:
        body["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        body["details"] = {"type": type(exc).__name__, **error.details}
    return body


async def handle_exception(request: Request, exc: Exception) -> JSONResponse:
    error = normalize_exception(exc)
    user = getattr(request.state, "user", None)
    log = logger.error if error.status_code >= 500 else logger.warning
    log(
        "%s %s -> %d %s (user=%s)",
        request.method,
        request.url.path,
        error.status_code,
        error.message,
        getattr(user, "id", None),
        exc_info=error.status_code >= 500,
    )
    return JSONResponse(status_code=error.status_code, content=error_body(error, request, exc))


def register_exception_handlers(app: FastAPI) -> None:
    for exc_type in (
        AppError,
        StarletteHTTPException,
        RequestValidationError,
        IntegrityError,
        NoResultFound,
        StatementError,
        JWTError,
        redis.ConnectionError,
        ConnectionError,
        Exception,
    ):
        app.add_exception_handler(exc_type, handle_exception)


# ── Process boundary ───────────────────────────────────────────────────────

def fail_fast_handler(loop, context: dict) -> None:
    """asyncio exception handler: log the unhandled error and stop the process."""
    exc = context.get("exception")
    logger.critical("Unhandled async error: %s", context.get("message", ""), exc_info=exc)
    os.kill(os.getpid(), signal.SIGTERM)
