"""AnalyticsService: dashboard aggregates over stored transcripts plus live counters."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from datetime import datetime, timedelta, timezone

from sqlalchemy import func
from sqlalchemy.orm import Session

from database import SessionLocal, utcnow
from models.chat import ChatMessage, Conversation
from models.user import User
from services.background import dispatcher
from services.cache import ResponseCache, response_cache
from services.registry import ActiveChatRegistry, active_chats

logger = logging.getLogger(__name__)

TIME_RANGES: dict[str, timedelta] = {
    "1h": timedelta(hours=1),
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "90d": timedelta(days=90),
}
DEFAULT_RANGE = "24h"
TREND_BUCKETS = 24
TOP_INTENTS = 10

DASHBOARD_TTL = 300
MESSAGE_RECORD_TTL = 86400
METRICS_REFRESH_SECONDS = 300


def resolve_range(time_range: str) -> tuple[str, timedelta]:
    if time_range in TIME_RANGES:
        return time_range, TIME_RANGES[time_range]
    return DEFAULT_RANGE, TIME_RANGES[DEFAULT_RANGE]


def trend_windows(time_range: str, now: datetime | None = None) -> list[tuple[datetime, datetime]]:
    """Split the range ending at *now* into equal, contiguous, oldest-first buckets."""
    _, span = resolve_range(time_range)
    end = now or utcnow()
    width = span / TREND_BUCKETS
    start = end - span
    return [(start + width * i, start + width * (i + 1)) for i in range(TREND_BUCKETS)]


def overall_sentiment(distribution: list[dict]) -> str:
    counts = {row["sentiment"]: row["count"] for row in distribution}
    total = sum(counts.get(label, 0) for label in ("positive", "negative", "neutral"))
    if total == 0:
        return "neutral"
    if counts.get("positive", 0) / total > 0.6:
        return "positive"
    if counts.get("negative", 0) / total > 0.6:
        return "negative"
    return "neutral"


def _percent(part: float, whole: float) -> float:
    return (part / whole) * 100 if whole else 0


def _iso(value: datetime) -> str:
    return value.replace(tzinfo=timezone.utc).isoformat()


def empty_realtime() -> dict:
    return {
        "active_users": 0,
        "active_chats": 0,
        "messages_per_minute": 0,
        "average_response_time": 0,
        "average_session_duration": 0,
    }


class AnalyticsService:
    def __init__(
        self,
        cache: ResponseCache | None = None,
        session_factory=SessionLocal,
        registry: ActiveChatRegistry | None = None,
    ):
        self.cache = cache or response_cache
        self.session_factory = session_factory
        self.registry = registry if registry is not None else active_chats
        self.realtime = empty_realtime()
        self.metrics: dict = {
            "total_users": 0,
            "total_chats": 0,
            "total_messages": 0,
            "average_response_time": 0,
            "average_satisfaction": 0,
            "intent_accuracy": 0,
            "last_update": None,
        }
        self._last_refresh = 0.0

    # ── Dashboard ──────────────────────────────────────────────────────────

    async def get_dashboard(self, db: Session, time_range: str = DEFAULT_RANGE) -> dict:
        """Cached dashboard for *time_range*; the zeroed default on any failure."""
        time_range, _ = resolve_range(time_range)
        key = f"analytics:dashboard:{time_range}"
        try:
            data = await self.cache.get(key)
            if data:
                return data
            data = self.generate_dashboard(db, time_range)
            await self.cache.set(key, data, DASHBOARD_TTL)
            return data
        except Exception:
            logger.exception("Error building analytics dashboard for %s", time_range)
            return self.default_dashboard()

    def generate_dashboard(self, db: Session, time_range: str) -> dict:
        time_range, span = resolve_range(time_range)
        now = utcnow()
        since = now - span

        users = self.user_stats(db, since)
        chats = self.chat_stats(db, since)
        messages = self.message_stats(db, since)
        performance = self.performance_stats(db, since)

        return {
            "range": time_range,
            "overview": {
                "total_users": users["total_users"],
                "active_users": users["active_users"],
                "total_chats": chats["total_chats"],
                "active_chats": chats["active_chats"],
                "total_messages": messages["total_messages"],
                "average_response_time": performance["average_response_time"],
                "average_satisfaction": performance["average_satisfaction"],
            },
            "users": users,
            "chats": chats,
            "messages": messages,
            "performance": performance,
            "trends": self.trend_data(db, time_range, now),
            "intents": self.intent_stats(db, since),
            "sentiments": self.sentiment_stats(db, since),
            "real_time": self.realtime_stats(),
            "timestamp": _iso(now),
        }

    def default_dashboard(self) -> dict:
        return {
            "overview": {
                "total_users": 0,
                "active_users": 0,
                "total_chats": 0,
                "active_chats": 0,
                "total_messages": 0,
                "average_response_time": 0,
                "average_satisfaction": 0,
            },
            "performance": {
                "average_response_time": 0,
                "min_response_time": 0,
                "max_response_time": 0,
                "average_satisfaction": 0,
                "total_ratings": 0,
            },
            "trends": [],
            "intents": {"intent_distribution": [], "top_intents": [], "intent_accuracy": 0, "total_intents": 0},
            "sentiments": {"sentiment_distribution": [], "sentiment_trend": [], "overall_sentiment": "neutral"},
            "real_time": self.realtime_stats(),
            "timestamp": _iso(utcnow()),
        }

    # ── Aggregates ─────────────────────────────────────────────────────────

    def user_stats(self, db: Session, since: datetime) -> dict:
        total = db.query(func.count(User.id)).scalar() or 0
        active = (
            db.query(func.count(User.id))
            .filter(User.is_active.is_(True), User.last_login >= since)
            .scalar()
            or 0
        )
        new = db.query(func.count(User.id)).filter(User.created_at >= since).scalar() or 0
        previous = total - new
        growth = _percent(new - previous, previous) if previous else (100 if new else 0)
        return {
            "total_users": total,
            "active_users": active,
            "new_users": new,
            "user_growth": growth,
            "retention_rate": _percent(active, total),
        }

    def chat_stats(self, db: Session, since: datetime) -> dict:
        total = db.query(func.count(Conversation.id)).scalar() or 0
        active = db.query(func.count(Conversation.id)).filter(Conversation.status == "active").scalar() or 0
        new_chats = db.query(Conversation).filter(Conversation.created_at >= since).all()
        ended = (
            db.query(func.count(Conversation.id))
            .filter(Conversation.status == "ended", Conversation.updated_at >= since)
            .scalar()
            or 0
        )
        durations = [
            (chat.last_activity - chat.created_at).total_seconds() * 1000
            for chat in new_chats
            if chat.last_activity and chat.created_at
        ]
        return {
            "total_chats": total,
            "active_chats": active,
            "new_chats": len(new_chats),
            "ended_chats": ended,
            "average_chat_duration": sum(durations) / len(durations) if durations else 0,
            "chat_completion_rate": _percent(ended, len(new_chats)),
        }

    def message_stats(self, db: Session, since: datetime) -> dict:
        total = db.query(func.count(ChatMessage.id)).scalar() or 0
        in_range, avg_length = (
            db.query(func.count(ChatMessage.id), func.avg(func.length(ChatMessage.message)))
            .filter(ChatMessage.created_at >= since)
            .one()
        )
        per_chat = (
            db.query(func.avg(Conversation.total_messages))
            .filter(Conversation.created_at >= since)
            .scalar()
        )
        return {
            "total_messages": total,
            "messages_in_range": in_range or 0,
            "average_message_length": float(avg_length or 0),
            "messages_per_chat": float(per_chat or 0),
        }

    def intent_stats(self, db: Session, since: datetime) -> dict:
        rows = (
            db.query(ChatMessage.intent, func.count(ChatMessage.id), func.avg(ChatMessage.confidence))
            .filter(ChatMessage.created_at >= since)
            .group_by(ChatMessage.intent)
            .order_by(func.count(ChatMessage.id).desc())
            .all()
        )
        distribution = [
            {"intent": intent, "count": count, "average_confidence": float(avg or 0)}
            for intent, count, avg in rows
        ]
        return {
            "intent_distribution": distribution,
            "top_intents": distribution[:TOP_INTENTS],
            "intent_accuracy": self.intent_accuracy(db, since),
            "total_intents": len(distribution),
        }

    def intent_accuracy(self, db: Session, since: datetime | None = None) -> float:
        """Mean classifier confidence over messages users have rated."""
        query = db.query(func.avg(ChatMessage.confidence)).filter(ChatMessage.feedback_rating.isnot(None))
        if since is not None:
            query = query.filter(ChatMessage.created_at >= since)
        return float(query.scalar() or 0)

    def sentiment_stats(self, db: Session, since: datetime) -> dict:
        rows = (
            db.query(ChatMessage.sentiment, func.count(ChatMessage.id), func.avg(ChatMessage.confidence))
            .filter(ChatMessage.created_at >= since)
            .group_by(ChatMessage.sentiment)
            .order_by(func.count(ChatMessage.id).desc())
            .all()
        )
        distribution = [
            {"sentiment": sentiment, "count": count, "average_confidence": float(avg or 0)}
            for sentiment, count, avg in rows
        ]
        return {
            "sentiment_distribution": distribution,
            "sentiment_trend": self.sentiment_trend(db, since),
            "overall_sentiment": overall_sentiment(distribution),
        }

    def sentiment_trend(self, db: Session, since: datetime) -> list[dict]:
        counts: dict[tuple[str, str], int] = defaultdict(int)
        for sentiment, created_at in (
            db.query(ChatMessage.sentiment, ChatMessage.created_at)
            .filter(ChatMessage.created_at >= since)
            .all()
        ):
            counts[(created_at.strftime("%Y-%m-%d"), sentiment)] += 1
        return [
            {"date": date, "sentiment": sentiment, "count": count}
            for (date, sentiment), count in sorted(counts.items())
        ]

    def performance_stats(self, db: Session, since: datetime) -> dict:
        avg_rt, min_rt, max_rt = (
            db.query(
                func.avg(ChatMessage.response_time),
                func.min(ChatMessage.response_time),
                func.max(ChatMessage.response_time),
            )
            .filter(ChatMessage.created_at >= since)
            .one()
        )
        avg_rating, ratings = (
            db.query(func.avg(ChatMessage.feedback_rating), func.count(ChatMessage.feedback_rating))
            .filter(ChatMessage.created_at >= since, ChatMessage.feedback_rating.isnot(None))
            .one()
        )
        return {
            "average_response_time": float(avg_rt or 0),
            "min_response_time": float(min_rt or 0),
            "max_response_time": float(max_rt or 0),
            "average_satisfaction": float(avg_rating or 0),
            "total_ratings": ratings or 0,
        }

    def trend_data(self, db: Session, time_range: str, now: datetime | None = None) -> list[dict]:
        trends = []
        for start, end in trend_windows(time_range, now):
            messages, satisfaction = (
                db.query(func.count(ChatMessage.id), func.avg(ChatMessage.feedback_rating))
                .filter(ChatMessage.created_at >= start, ChatMessage.created_at < end)
                .one()
            )
            users = (
                db.query(func.count(User.id))
                .filter(User.last_login >= start, User.last_login < end)
                .scalar()
            )
            chats = (
                db.query(func.count(Conversation.id))
                .filter(Conversation.created_at >= start, Conversation.created_at < end)
                .scalar()
            )
            trends.append(
                {
                    "timestamp": _iso(start),
                    "messages": messages or 0,
                    "users": users or 0,
                    "chats": chats or 0,
                    "satisfaction": float(satisfaction or 0),
                }
            )
        return trends

    # ── Live counters ──────────────────────────────────────────────────────

    async def track_message(self, data: dict) -> None:
        """Record one processed message; failures are logged, never raised."""
        try:
            self.update_realtime(data)
            record = {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "user_id": data.get("user_id"),
                "room_id": data.get("room_id"),
                "message_length": data.get("message_length", 0),
                "response_time": data.get("response_time", 0),
                "intent": data.get("intent"),
                "confidence": data.get("confidence"),
                "sentiment": data.get("sentiment"),
                "metadata": data.get("metadata") or {},
            }
            await self.cache.set(f"analytics:message:{int(time.time() * 1000)}", record, MESSAGE_RECORD_TTL)
            await self.refresh_metrics_if_needed()
        except Exception:
            logger.exception("Error tracking message")

    def update_realtime(self, data: dict) -> None:
        count = self.realtime["messages_per_minute"] + 1
        previous = self.realtime["average_response_time"]
        self.realtime["messages_per_minute"] = count
        self.realtime["average_response_time"] = (
            previous * (count - 1) + float(data.get("response_time") or 0)
        ) / count

    def realtime_stats(self) -> dict:
        return {**self.realtime, "active_chats": len(self.registry)}

    def reset_realtime(self) -> None:
        self.realtime["messages_per_minute"] = 0
        self.realtime["average_response_time"] = 0

    async def refresh_metrics_if_needed(self) -> None:
        if time.monotonic() - self._last_refresh > METRICS_REFRESH_SECONDS or self.metrics["last_update"] is None:
            await asyncio.to_thread(self.refresh_metrics)

    def refresh_metrics(self) -> dict:
        from services.chat import chat_service

        db = self.session_factory()
        try:
            chat = chat_service.get_statistics(db)
            total_users = db.query(func.count(User.id)).scalar() or 0
            accuracy = self.intent_accuracy(db)
        finally:
            db.close()
        self.metrics = {
            "total_users": total_users,
            "total_chats": chat["total_chats"],
            "total_messages": chat["total_messages"],
            "average_response_time": chat["average_response_time"],
            "average_satisfaction": chat["average_satisfaction"],
            "intent_accuracy": accuracy,
            "last_update": datetime.now(timezone.utc).isoformat(),
        }
        self._last_refresh = time.monotonic()
        return self.metrics

    def service_stats(self) -> dict:
        return {
            "metrics": self.metrics,
            "real_time": self.realtime_stats(),
            "last_update": self.metrics["last_update"],
        }

    async def run_periodic(self, interval: float = 60.0) -> None:
        """Reset per-minute counters and refresh metrics until cancelled."""
        while True:
            await asyncio.sleep(interval)
            self.reset_realtime()
            try:
                await self.refresh_metrics_if_needed()
            except Exception:
                logger.exception("Periodic metrics refresh failed")


analytics_service = AnalyticsService()


def track_exchange(user_id: int, room_id: str, text: str, result: dict, metadata: dict | None = None) -> None:
    """Queue analytics for one processed message; never blocks the reply."""

    dispatcher.dispatch(
        analytics_service.track_message(
            {
                "user_id": user_id,
                "room_id": room_id,
                "message_length": len(text),
                "response_time": result.get("response_time", 0),
                "intent": result.get("intent"),
                "confidence": result.get("confidence"),
                "sentiment": result.get("sentiment"),
                "metadata": metadata or {},
            }
        ),
        name=f"track-{room_id}",
    )
