"""Tests for /api/ai, /api/analytics, /health, and app-level middleware."""

from __future__ import annotations

from unittest.mock import patch

from models.chat import ChatMessage


class TestAIRoutes:
    def test_chat_without_room_is_not_stored(self, client, auth_headers, db):
        resp = client.post("/api/ai/chat", json={"message": "hello"}, headers=auth_headers)
        assert resp.status_code == 200
        body = resp.json()
        assert body["response"] == "Hello! How can I help you today?"
        assert body["room_id"] is None
        assert body["message_id"] is None
        assert db.query(ChatMessage).count() == 0

    def test_chat_with_room_is_stored(self, client, auth_headers, db):
        body = client.post("/api/ai/chat", json={"message": "hello", "room_id": "room_ai"}, headers=auth_headers).json()
        assert body["room_id"] == "room_ai"
        assert db.get(ChatMessage, body["message_id"]).message == "hello"

    def test_chat_into_foreign_room_forbidden(self, client, auth_headers, other_headers, db):
        client.post("/api/ai/chat", json={"message": "hello", "room_id": "room_mine"}, headers=auth_headers)
        resp = client.post("/api/ai/chat", json={"message": "hi", "room_id": "room_mine"}, headers=other_headers)
        assert resp.status_code == 403
        assert db.query(ChatMessage).count() == 1

    def test_repeat_is_cached(self, client, auth_headers):
        client.post("/api/ai/chat", json={"message": "hello"}, headers=auth_headers)
        body = client.post("/api/ai/chat", json={"message": "HELLO"}, headers=auth_headers).json()
        assert body["cached"] is True

    def test_chat_requires_auth(self, client):
        assert client.post("/api/ai/chat", json={"message": "hello"}).status_code == 401

    def test_stats(self, client, auth_headers):
        client.post("/api/ai/chat", json={"message": "hello"}, headers=auth_headers)
        data = client.get("/api/ai/stats", headers=auth_headers).json()["data"]
        assert data["total_processed"] == 1
        assert data["intent_distribution"] == {"greeting": 1}

    def test_retrain_admin_only(self, client, auth_headers, admin_headers):
        assert client.post("/api/ai/retrain", headers=auth_headers).status_code == 403
        resp = client.post("/api/ai/retrain", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "examples_added": 0}

    def test_exchange_is_tracked(self, client, auth_headers):
        with patch("api.ai.track_exchange") as track:
            client.post("/api/ai/chat", json={"message": "hello"}, headers=auth_headers)
        args = track.call_args.args
        assert args[2] == "hello"
        assert args[3]["intent"]["name"] == "greeting"


class TestAnalyticsRoutes:
    def test_dashboard(self, client, auth_headers):
        client.post("/api/ai/chat", json={"message": "hello", "room_id": "room_a"}, headers=auth_headers)
        data = client.get("/api/analytics/dashboard", params={"range": "7d"}, headers=auth_headers).json()["data"]
        assert data["range"] == "7d"
        assert data["overview"]["total_messages"] == 1
        assert len(data["trends"]) == 24

    def test_dashboard_rejects_unknown_range(self, client, auth_headers):
        resp = client.get("/api/analytics/dashboard", params={"range": "1y"}, headers=auth_headers)
        assert resp.status_code == 400

    def test_realtime_and_reset(self, client, auth_headers, admin_headers):
        from services.analytics import analytics_service

        analytics_service.update_realtime({"response_time": 40})
        data = client.get("/api/analytics/realtime", headers=auth_headers).json()["data"]
        assert data["messages_per_minute"] == 1
        assert client.post("/api/analytics/realtime/reset", headers=auth_headers).status_code == 403
        client.post("/api/analytics/realtime/reset", headers=admin_headers)
        assert analytics_service.realtime["messages_per_minute"] == 0

    def test_stats(self, client, auth_headers):
        data = client.get("/api/analytics/stats", headers=auth_headers).json()["data"]
        assert set(data) == {"metrics", "real_time", "last_update"}


class TestApp:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "OK"
        assert body["uptime"] >= 0
        assert "timestamp" in body

    def test_request_id_header(self, client):
        assert client.get("/health").headers["X-Request-ID"].startswith("req_")
        echoed = client.get("/health", headers={"X-Request-ID": "req_given"})
        assert echoed.headers["X-Request-ID"] == "req_given"

    def test_error_body_carries_request_id(self, client):
        body = client.get("/api/chat/", headers={"X-Request-ID": "req_err"}).json()
        assert body["requestId"] == "req_err"
        assert body["path"] == "/api/chat/"

    def test_rate_limit_applies_to_api(self, client, auth_headers, monkeypatch):
        from main import rate_limiter

        monkeypatch.setattr(rate_limiter, "limit", 2)
        for _ in range(2):
            assert client.get("/api/auth/me", headers=auth_headers).status_code == 200
        assert client.get("/api/auth/me", headers=auth_headers).status_code == 429
        assert client.get("/health").status_code == 200

    def test_unknown_route(self, client):
        resp = client.get("/api/nope")
        assert resp.status_code == 404
        assert resp.json()["success"] is False
