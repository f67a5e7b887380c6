"""Auth schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

USERNAME_PATTERN = r"^[A-Za-z0-9_]+$"
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class RegisterRequest(BaseModel):
    username: str = Field(min_length=3, max_length=30, pattern=USERNAME_PATTERN)
    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=6, max_length=128)
    first_name: str = Field(default="", max_length=50)
    last_name: str = Field(default="", max_length=50)


class LoginRequest(BaseModel):
    identifier: str = Field(min_length=1)  # email or username
    password: str = Field(min_length=1)


class RefreshRequest(BaseModel):
    token: str = Field(min_length=1)


class ProfileUpdate(BaseModel):
    first_name: str | None = Field(default=None, max_length=50)
    last_name: str | None = Field(default=None, max_length=50)
    avatar: str | None = Field(default=None, max_length=500)
    preferences: dict | None = None


class PasswordChange(BaseModel):
    current_password: str = Field(min_length=1)
    new_password: str = Field(min_length=6, max_length=128)


class EmailRequest(BaseModel):
    email: str = Field(pattern=EMAIL_PATTERN)


class ResetPasswordRequest(BaseModel):
    token: str = Field(min_length=1)
    password: str = Field(min_length=6, max_length=128)


class TokenOnly(BaseModel):
    token: str = Field(min_length=1)


class DeleteAccountRequest(BaseModel):
    password: str = Field(min_length=1)


class UserOut(BaseModel):
    id: int
    username: str
    email: str
    first_name: str
    last_name: str
    avatar: str
    preferences: dict
    role: str
    is_active: bool
    is_verified: bool
    last_login: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class AuthData(BaseModel):
    user: UserOut
    token: str


class AuthResponse(BaseModel):
    success: bool = True
    message: str
    data: AuthData


class UserResponse(BaseModel):
    success: bool = True
    message: str | None = None
    data: dict


class MessageResponse(BaseModel):
    success: bool = True
    message: str
