"""Root conftest: shared fixtures for all backend tests."""

from __future__ import annotations

import os
import sys
from pathlib import Path

# Ensure backend/ is on sys.path
_backend_dir = str(Path(__file__).resolve().parent)
if _backend_dir not in sys.path:
    sys.path.insert(0, _backend_dir)

# Keep tests away from a developer's .env and any real OpenAI key
os.environ["APP_ENV"] = "test"
os.environ["OPENAI_API_KEY"] = ""
os.environ["DATABASE_URL"] = "sqlite:///:memory:"

from unittest.mock import AsyncMock

import fakeredis
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base
import models  # noqa: F401  (registers all models with Base)

# In-memory SQLite for tests; StaticPool makes all connections share the same DB
TEST_ENGINE = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSession = sessionmaker(bind=TEST_ENGINE, autoflush=False, expire_on_commit=False)


@pytest.fixture(autouse=True)
def _setup_db():
    """Create all tables before each test, drop after."""
    Base.metadata.create_all(bind=TEST_ENGINE)
    yield
    Base.metadata.drop_all(bind=TEST_ENGINE)


@pytest.fixture(autouse=True)
def _reset_process_state():
    """Clear process-wide registries and counters between tests."""
    from services.analytics import analytics_service, empty_realtime
    from services.registry import active_chats

    active_chats.clear()
    analytics_service.realtime = empty_realtime()
    yield
    active_chats.clear()


@pytest.fixture
def db():
    """Yield a test database session."""
    session = TestSession()
    try:
        yield session
    finally:
        session.close()


def _make_user(db, username: str, role: str = "user", password: str = "testpass"):
    import bcrypt
    from models.user import User

    user = User(
        username=username,
        email=f"{username}@example.com",
        password_hash=bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=4)).decode(),
        first_name="Test",
        last_name="User",
        role=role,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def user(db):
    return _make_user(db, "testuser")


@pytest.fixture
def other_user(db):
    return _make_user(db, "otheruser")


@pytest.fixture
def admin_user(db):
    return _make_user(db, "adminuser", role="admin")


@pytest.fixture
def auth_headers(user):
    from auth import create_access_token

    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


@pytest.fixture
def other_headers(other_user):
    from auth import create_access_token

    return {"Authorization": f"Bearer {create_access_token(other_user.id)}"}


@pytest.fixture
def admin_headers(admin_user):
    from auth import create_access_token

    return {"Authorization": f"Bearer {create_access_token(admin_user.id)}"}


@pytest.fixture
def fake_redis():
    return fakeredis.FakeAsyncRedis(decode_responses=True)


@pytest.fixture
def fake_cache(fake_redis):
    from services.cache import ResponseCache

    return ResponseCache(client=fake_redis)


# ── Deterministic pipeline stages ─────────────────────────────────────────────

class StubIntentDetector:
    ready = True

    def __init__(self, name: str = "greeting", confidence: float = 0.9):
        self.name = name
        self.confidence = confidence
        self.calls = 0

    async def detect(self, text):
        self.calls += 1
        return {"name": self.name, "confidence": self.confidence, "source": "classifier"}


class StubEntityExtractor:
    def extract(self, text):
        return []


class StubSentimentAnalyzer:
    def analyze(self, text):
        return "neutral"


class StubResponder:
    def __init__(self, reply: str = "Hello! How can I help you today?"):
        self.reply = reply

    async def generate(self, text, intent, entities, sentiment, context):
        return self.reply


@pytest.fixture
def stub_pipeline(fake_cache):
    from services.chat import chat_service
    from services.pipeline import MessagePipeline

    return MessagePipeline(
        intent_detector=StubIntentDetector(),
        entity_extractor=StubEntityExtractor(),
        sentiment_analyzer=StubSentimentAnalyzer(),
        responder=StubResponder(),
        cache=fake_cache,
        chats=chat_service,
    )


@pytest.fixture
def app(db, fake_cache, stub_pipeline, monkeypatch):
    """The FastAPI app wired to the test database, fakeredis, and stub pipeline."""
    import database
    from main import app as _app, rate_limiter
    from database import get_db
    from services.analytics import analytics_service
    from services.pipeline import set_pipeline

    def _override_get_db():
        try:
            yield db
        finally:
            pass

    _app.dependency_overrides[get_db] = _override_get_db
    monkeypatch.setattr(database, "SessionLocal", TestSession)
    monkeypatch.setattr(rate_limiter, "cache", fake_cache)
    monkeypatch.setattr(analytics_service, "cache", fake_cache)
    monkeypatch.setattr(analytics_service, "session_factory", TestSession)
    # Metrics refresh runs in a worker thread that would outlive the request
    monkeypatch.setattr(analytics_service, "refresh_metrics_if_needed", AsyncMock())
    set_pipeline(stub_pipeline)
    yield _app
    set_pipeline(None)
    _app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    from fastapi.testclient import TestClient

    return TestClient(app)
