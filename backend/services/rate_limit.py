"""Per-client fixed-window rate limiting for the REST API."""

from __future__ import annotations

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

import errors
from config import settings
from services.cache import ResponseCache, response_cache

logger = logging.getLogger(__name__)

RATE_LIMITED_MESSAGE = "Too many requests from this IP, please try again later."


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


class RateLimiter:
    def __init__(
        self,
        cache: ResponseCache | None = None,
        limit: int | None = None,
        window: int | None = None,
        prefix: str = "/api/",
    ):
        self.cache = cache or response_cache
        self.limit = limit if limit is not None else settings.RATE_LIMIT_REQUESTS
        self.window = window if window is not None else settings.RATE_LIMIT_WINDOW_SECONDS
        self.prefix = prefix

    async def hit(self, identity: str) -> tuple[bool, int | None]:
        """Count one request; returns (allowed, count). Unknown count means allowed."""
        count = await self.cache.incr(f"ratelimit:{identity}", self.window)
        if count is None:
            return True, None
        return count <= self.limit, count

    async def __call__(self, request: Request, call_next):
        if not request.url.path.startswith(self.prefix):
            return await call_next(request)

        allowed, count = await self.hit(client_ip(request))
        if not allowed:
            logger.warning("Rate limit exceeded for %s on %s", client_ip(request), request.url.path)
            error = errors.rate_limited(RATE_LIMITED_MESSAGE)
            response = JSONResponse(
                status_code=error.status_code,
                content=errors.error_body(error, request, error),
            )
            response.headers["Retry-After"] = str(self.window)
            return response

        response = await call_next(request)
        if count is not None:
            response.headers["X-RateLimit-Limit"] = str(self.limit)
            response.headers["X-RateLimit-Remaining"] = str(max(self.limit - count, 0))
        return response
