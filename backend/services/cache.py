"""ResponseCache: JSON values in Redis with per-key expiry.

Every operation degrades instead of raising: a Redis outage turns reads into
misses and writes into no-ops, so the chat keeps working without a cache.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from config import settings

logger = logging.getLogger(__name__)

_DEFAULT_TTL = 3600


class ResponseCache:
    def __init__(self, client: aioredis.Redis | None = None, url: str | None = None):
        self._client = client
        self._url = url or settings.REDIS_URL

    @property
    def client(self) -> aioredis.Redis:
        if self._client is None:
            self._client = aioredis.from_url(self._url, decode_responses=True)
        return self._client

    async def get(self, key: str) -> Any | None:
        try:
            raw = await self.client.get(key)
        except (RedisError, OSError) as exc:
            logger.warning("Cache get failed for %s: %s", key, exc)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Dropping undecodable cache entry %s", key)
            return None

    async def set(self, key: str, value: Any, ttl: int = _DEFAULT_TTL) -> bool:
        try:
            await self.client.set(key, json.dumps(value, default=str), ex=ttl)
            return True
        except (RedisError, OSError) as exc:
            logger.warning("Cache set failed for %s: %s", key, exc)
            return False

    async def delete(self, key: str) -> bool:
        try:
            await self.client.delete(key)
            return True
        except (RedisError, OSError) as exc:
            logger.warning("Cache delete failed for %s: %s", key, exc)
            return False

    async def incr(self, key: str, ttl: int) -> int | None:
        """Fixed-window counter; the window starts on the first hit."""
        try:
            count = await self.client.incr(key)
            if count == 1:
                await self.client.expire(key, ttl)
            return int(count)
        except (RedisError, OSError) as exc:
            logger.warning("Cache incr failed for %s: %s", key, exc)
            return None

    async def clear(self) -> bool:
        try:
            await self.client.flushdb()
            return True
        except (RedisError, OSError) as exc:
            logger.warning("Cache clear failed: %s", exc)
            return False

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except (RedisError, OSError):
            return False

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


response_cache = ResponseCache()
