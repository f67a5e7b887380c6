"""User account model."""

from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import Boolean, DateTime, Integer, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from database import Base, utcnow

USER_ROLES = ("user", "moderator", "admin")

MAX_LOGIN_ATTEMPTS = 5
LOCK_DURATION = timedelta(hours=2)


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    username: Mapped[str] = mapped_column(String(150), unique=True)
    email: Mapped[str] = mapped_column(String(255), unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), default="")
    first_name: Mapped[str] = mapped_column(String(150), default="")
    last_name: Mapped[str] = mapped_column(String(150), default="")
    avatar: Mapped[str] = mapped_column(String(500), default="")
    preferences: Mapped[dict] = mapped_column(JSON, default=dict)
    role: Mapped[str] = mapped_column(String(15), default="user")

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    verification_token: Mapped[str | None] = mapped_column(String(64), nullable=True)
    verification_expires: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    reset_password_token: Mapped[str | None] = mapped_column(String(64), nullable=True)
    reset_password_expires: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    login_attempts: Mapped[int] = mapped_column(Integer, default=0)
    lock_until: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_login: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def is_locked(self) -> bool:
        return self.lock_until is not None and self.lock_until > utcnow()

    def inc_login_attempts(self) -> None:
        """Count a failed login; lock the account once the limit is reached."""
        if self.lock_until is not None and self.lock_until <= utcnow():
            # Previous lock expired, start counting again
            self.login_attempts = 1
            self.lock_until = None
            return
        self.login_attempts = (self.login_attempts or 0) + 1
        if self.login_attempts >= MAX_LOGIN_ATTEMPTS and not self.is_locked:
            self.lock_until = utcnow() + LOCK_DURATION

    def reset_login_attempts(self) -> None:
        self.login_attempts = 0
        self.lock_until = None

    def __repr__(self):
        return f"<User {self.username} ({self.role})>"
