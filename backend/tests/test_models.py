"""Tests for the User and Conversation models."""

from __future__ import annotations

from datetime import timedelta

import pytest

from database import utcnow
from models.chat import ChatMessage, Conversation, DEFAULT_SETTINGS, InvalidStatusTransition
from models.user import LOCK_DURATION, MAX_LOGIN_ATTEMPTS, User


def _conversation(db, user, room_id="room_test", status="active"):
    chat = Conversation(room_id=room_id, status=status)
    chat.add_participant(user.id)
    db.add(chat)
    db.commit()
    return chat


def _message(user, response_time=0.0, rating=None, text="hi"):
    return ChatMessage(
        user_id=user.id,
        message=text,
        response="hello",
        intent="greeting",
        response_time=response_time,
        feedback_rating=rating,
    )


class TestUserLocking:
    def test_locks_after_max_attempts(self, user):
        for _ in range(MAX_LOGIN_ATTEMPTS - 1):
            user.inc_login_attempts()
        assert user.is_locked is False
        user.inc_login_attempts()
        assert user.is_locked is True
        assert user.lock_until - utcnow() <= LOCK_DURATION

    def test_expired_lock_restarts_count(self, user):
        user.login_attempts = MAX_LOGIN_ATTEMPTS
        user.lock_until = utcnow() - timedelta(minutes=1)
        assert user.is_locked is False
        user.inc_login_attempts()
        assert user.login_attempts == 1
        assert user.lock_until is None

    def test_reset(self, user):
        user.login_attempts = 3
        user.lock_until = utcnow() + timedelta(hours=1)
        user.reset_login_attempts()
        assert user.login_attempts == 0
        assert user.is_locked is False


class TestConversation:
    def test_defaults(self, db, user):
        chat = _conversation(db, user)
        assert chat.status == "active"
        assert chat.settings == DEFAULT_SETTINGS
        assert chat.total_messages == 0

    @pytest.mark.parametrize(
        "start, target",
        [("active", "paused"), ("active", "ended"), ("paused", "active"), ("ended", "active"), ("ended", "archived")],
    )
    def test_allowed_transitions(self, db, user, start, target):
        chat = _conversation(db, user, status=start)
        chat.transition(target)
        assert chat.status == target

    @pytest.mark.parametrize("target", ["active", "paused", "ended"])
    def test_archived_is_terminal(self, db, user, target):
        chat = _conversation(db, user, status="archived")
        with pytest.raises(InvalidStatusTransition):
            chat.transition(target)

    def test_unknown_status(self, db, user):
        chat = _conversation(db, user)
        with pytest.raises(InvalidStatusTransition):
            chat.transition("deleted")

    def test_analytics_means(self, db, user):
        chat = _conversation(db, user)
        for rt in (100, 200, 300):
            chat.add_message(_message(user, response_time=rt))
        db.commit()
        assert chat.total_messages == 3
        assert chat.average_response_time == 200

    def test_satisfaction_ignores_unrated(self, db, user):
        chat = _conversation(db, user)
        chat.add_message(_message(user, rating=4))
        chat.add_message(_message(user, rating=2))
        chat.add_message(_message(user))
        assert chat.user_satisfaction == 3

    def test_participant_once(self, db, user):
        chat = _conversation(db, user)
        chat.add_participant(user.id)
        assert len(chat.participants) == 1

    def test_rejoin_clears_left_at(self, db, user):
        chat = _conversation(db, user)
        chat.remove_participant(user.id)
        assert chat.active_participants == []
        chat.add_participant(user.id)
        assert len(chat.active_participants) == 1

    def test_update_context_merges(self, db, user):
        chat = _conversation(db, user)
        chat.update_context({"current_topic": "billing"})
        chat.update_context({"conversation_flow": ["a"]})
        db.commit()
        db.refresh(chat)
        assert chat.context == {"current_topic": "billing", "conversation_flow": ["a"]}

    def test_recent_context(self, db, user):
        chat = _conversation(db, user)
        for i in range(7):
            chat.add_message(_message(user, text=f"m{i}"))
        recent = chat.recent_context(limit=5)
        assert [r["message"] for r in recent] == ["m2", "m3", "m4", "m5", "m6"]


def test_user_repr(user):
    assert repr(user) == "<User testuser (user)>"
    assert isinstance(user, User)
