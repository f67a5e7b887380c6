"""Account endpoints: registration, login, tokens, profile, password flows."""

from __future__ import annotations

import logging
import secrets
from datetime import timedelta

from fastapi import APIRouter, Depends
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

import errors
from auth import (
    create_access_token,
    get_current_user,
    hash_password,
    user_from_token,
    verify_password,
)
from database import get_db, utcnow
from models.user import User
from schemas.auth import (
    AuthResponse,
    DeleteAccountRequest,
    EmailRequest,
    LoginRequest,
    MessageResponse,
    PasswordChange,
    ProfileUpdate,
    RefreshRequest,
    RegisterRequest,
    ResetPasswordRequest,
    TokenOnly,
    UserOut,
    UserResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()

RESET_TOKEN_TTL = timedelta(hours=1)
VERIFICATION_TOKEN_TTL = timedelta(hours=24)


def _find_by_identifier(db: Session, identifier: str) -> User | None:
    ident = identifier.strip()
    return (
        db.query(User)
        .filter(or_(func.lower(User.email) == ident.lower(), User.username == ident))
        .first()
    )


def _auth_payload(user: User, message: str) -> dict:
    return {
        "success": True,
        "message": message,
        "data": {"user": UserOut.model_validate(user), "token": create_access_token(user.id)},
    }


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/register", response_model=AuthResponse, status_code=201, responses={409: {"description": "Duplicate account"}})
def register(payload: RegisterRequest, db: Session = Depends(get_db)):
    email = payload.email.lower()
    existing = (
        db.query(User)
        .filter(or_(func.lower(User.email) == email, User.username == payload.username))
        .first()
    )
    if existing:
        raise errors.conflict("User with this email or username already exists")

    user = User(
        username=payload.username,
        email=email,
        password_hash=hash_password(payload.password),
        first_name=payload.first_name,
        last_name=payload.last_name,
        verification_token=secrets.token_hex(32),
        verification_expires=utcnow() + VERIFICATION_TOKEN_TTL,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("Registered user %s (id=%s)", user.username, user.id)
    return _auth_payload(user, "User registered successfully")


@router.post("/login", response_model=AuthResponse, responses={401: {"description": "Invalid credentials"}, 423: {"description": "Locked"}})
def login(payload: LoginRequest, db: Session = Depends(get_db)):
    user = _find_by_identifier(db, payload.identifier)
    if not user:
        raise errors.unauthorized("Invalid credentials")
    if user.is_locked:
        raise errors.locked("Account is temporarily locked. Please try again later.")
    if not user.is_active:
        raise errors.forbidden("Account is deactivated. Please contact support.")

    if not verify_password(user.password_hash, payload.password):
        user.inc_login_attempts()
        db.commit()
        logger.info("Failed login for %s (attempts=%d)", user.username, user.login_attempts)
        raise errors.unauthorized("Invalid credentials")

    user.reset_login_attempts()
    user.last_login = utcnow()
    db.commit()
    return _auth_payload(user, "Login successful")


@router.post("/refresh", response_model=AuthResponse)
def refresh(payload: RefreshRequest, db: Session = Depends(get_db)):
    user = user_from_token(payload.token, db)
    return _auth_payload(user, "Token refreshed successfully")


@router.post("/forgot-password", response_model=MessageResponse)
def forgot_password(payload: EmailRequest, db: Session = Depends(get_db)):
    user = db.query(User).filter(func.lower(User.email) == payload.email.lower()).first()
    if user:
        user.reset_password_token = secrets.token_hex(32)
        user.reset_password_expires = utcnow() + RESET_TOKEN_TTL
        db.commit()
        logger.info("Password reset requested for user %s", user.id)
    # Same answer whether or not the address exists
    return {"success": True, "message": "If an account with that email exists, a password reset link has been sent"}


@router.post("/reset-password", response_model=MessageResponse)
def reset_password(payload: ResetPasswordRequest, db: Session = Depends(get_db)):
    user = (
        db.query(User)
        .filter(User.reset_password_token == payload.token, User.reset_password_expires > utcnow())
        .first()
    )
    if not user:
        raise errors.validation("Invalid or expired reset token")
    user.password_hash = hash_password(payload.password)
    user.reset_password_token = None
    user.reset_password_expires = None
    user.reset_login_attempts()
    db.commit()
    return {"success": True, "message": "Password reset successfully"}


@router.post("/verify-email", response_model=MessageResponse)
def verify_email(payload: TokenOnly, db: Session = Depends(get_db)):
    user = (
        db.query(User)
        .filter(User.verification_token == payload.token, User.verification_expires > utcnow())
        .first()
    )
    if not user:
        raise errors.validation("Invalid or expired verification token")
    user.is_verified = True
    user.verification_token = None
    user.verification_expires = None
    db.commit()
    return {"success": True, "message": "Email verified successfully"}


@router.post("/resend-verification", response_model=MessageResponse)
def resend_verification(payload: EmailRequest, db: Session = Depends(get_db)):
    user = db.query(User).filter(func.lower(User.email) == payload.email.lower()).first()
    if not user:
        raise errors.not_found("User not found")
    if user.is_verified:
        raise errors.conflict("Email is already verified")
    user.verification_token = secrets.token_hex(32)
    user.verification_expires = utcnow() + VERIFICATION_TOKEN_TTL
    db.commit()
    return {"success": True, "message": "Verification email sent"}


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/logout", response_model=MessageResponse)
def logout(user: User = Depends(get_current_user)):
    # Tokens are stateless; the client discards its copy.
    logger.info("User %s logged out", user.id)
    return {"success": True, "message": "Logout successful"}


@router.get("/me", response_model=UserResponse)
def me(user: User = Depends(get_current_user)):
    return {"success": True, "data": {"user": UserOut.model_validate(user).model_dump(mode="json")}}


@router.put("/profile", response_model=UserResponse)
def update_profile(
    payload: ProfileUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    for field, value in payload.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(user, field, value)
    db.commit()
    db.refresh(user)
    return {
        "success": True,
        "message": "Profile updated successfully",
        "data": {"user": UserOut.model_validate(user).model_dump(mode="json")},
    }


@router.put("/password", response_model=MessageResponse)
def change_password(
    payload: PasswordChange,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if not verify_password(user.password_hash, payload.current_password):
        raise errors.unauthorized("Current password is incorrect")
    user.password_hash = hash_password(payload.new_password)
    db.commit()
    return {"success": True, "message": "Password changed successfully"}


@router.delete("/account", response_model=MessageResponse)
def delete_account(
    payload: DeleteAccountRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if not verify_password(user.password_hash, payload.password):
        raise errors.unauthorized("Password is incorrect")
    user.is_active = False
    db.commit()
    logger.info("Deactivated account %s", user.id)
    return {"success": True, "message": "Account deactivated successfully"}
