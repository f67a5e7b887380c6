"""Tests for services/rate_limit.py."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from services.rate_limit import RATE_LIMITED_MESSAGE, RateLimiter


@pytest.fixture
def limited_app(fake_cache):
    app = FastAPI()
    app.middleware("http")(RateLimiter(cache=fake_cache, limit=2, window=60))

    @app.get("/api/ping")
    def ping():
        return {"ok": True}

    @app.get("/health")
    def health():
        return {"ok": True}

    return app


def test_limit_per_ip(limited_app):
    client = TestClient(limited_app)
    first = client.get("/api/ping")
    assert first.headers["X-RateLimit-Limit"] == "2"
    assert first.headers["X-RateLimit-Remaining"] == "1"
    assert client.get("/api/ping").status_code == 200

    blocked = client.get("/api/ping")
    assert blocked.status_code == 429
    assert blocked.json()["message"] == RATE_LIMITED_MESSAGE
    assert blocked.headers["Retry-After"] == "60"


def test_forwarded_ips_are_counted_separately(limited_app):
    client = TestClient(limited_app)
    for _ in range(3):
        client.get("/api/ping", headers={"X-Forwarded-For": "10.0.0.1"})
    resp = client.get("/api/ping", headers={"X-Forwarded-For": "10.0.0.2, 10.0.0.1"})
    assert resp.status_code == 200


def test_non_api_paths_are_not_limited(limited_app):
    client = TestClient(limited_app)
    for _ in range(5):
        assert client.get("/health").status_code == 200


def test_allows_when_redis_is_down():
    cache = MagicMock()
    cache.incr = AsyncMock(return_value=None)
    limiter = RateLimiter(cache=cache, limit=1, window=60)
    assert asyncio.run(limiter.hit("1.2.3.4")) == (True, None)
