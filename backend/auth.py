"""JWT bearer authentication, password hashing, and role guards."""

from __future__ import annotations

from datetime import timedelta

import bcrypt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy.orm import Session

import errors
from config import settings
from database import get_db, utcnow
from models.user import User

bearer_scheme = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=12)).decode()


def verify_password(stored_hash: str, password: str) -> bool:
    """Verify password against stored bcrypt hash."""
    if not stored_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode(), stored_hash.encode())
    except (ValueError, UnicodeDecodeError):
        return False


def create_access_token(user_id: int) -> str:
    now = utcnow()
    payload = {
        "sub": str(user_id),
        "iat": now,
        "exp": now + timedelta(days=settings.JWT_EXPIRE_DAYS),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> int:
    """Return the user id carried by *token*; raise AppError(401) otherwise."""
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except ExpiredSignatureError:
        raise errors.unauthorized("Token expired")
    except JWTError:
        raise errors.unauthorized("Invalid token")
    try:
        return int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise errors.unauthorized("Invalid token")


def user_from_token(token: str, db: Session) -> User:
    """Resolve *token* to an active, unlocked user."""
    user = db.get(User, decode_access_token(token))
    if user is None:
        raise errors.unauthorized("User not found")
    if not user.is_active:
        raise errors.unauthorized("Account is deactivated")
    if user.is_locked:
        raise errors.locked("Account is temporarily locked")
    return user


def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    """FastAPI dependency: validate the Bearer JWT and return the User."""
    if credentials is None or not credentials.credentials:
        raise errors.unauthorized("Access denied. No token provided.")
    user = user_from_token(credentials.credentials, db)
    request.state.user = user
    return user


def require_roles(*roles: str):
    """Dependency factory: allow only users whose role is in *roles*."""

    def _guard(user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            raise errors.forbidden("Insufficient permissions")
        return user

    return _guard
