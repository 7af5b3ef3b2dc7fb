"""Authentication schemas."""
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, EmailStr, Field


class UserRegister(BaseModel):
    """User registration request."""

    name: str = Field(..., min_length=1, max_length=120)
    email: EmailStr
    # bcrypt only looks at the first 72 bytes
    password: str = Field(..., min_length=8, max_length=72)
    role: Literal["customer", "vendor"] = "customer"
    device_label: str | None = Field(None, max_length=120)


class UserLogin(BaseModel):
    """User login request."""

    email: EmailStr
    password: str
    device_label: str | None = Field(None, max_length=120)


class TokenRefresh(BaseModel):
    """Token refresh request."""

    refresh_token: str = Field(..., min_length=1)


class PasswordChange(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=8, max_length=72)


class UserResponse(BaseModel):
    """User info response."""

    id: str
    name: str
    email: str
    role: str
    created_at: str

    class Config:
        from_attributes = True


class Token(BaseModel):
    """Token pair response."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    refresh_expires_at: datetime
    session_id: str


class AuthResponse(Token):
    """Login/registration response."""

    user: UserResponse


class SessionResponse(BaseModel):
    id: str
    device_label: str | None
    user_agent: str | None
    ip_address: str | None
    last_used_at: str
    created_at: str
    is_current: bool


class RevocationResponse(BaseModel):
    message: str
    revoked: int
    access_token: str | None = None


class PruneResponse(BaseModel):
    deleted: int
    cutoff: str


class MessageResponse(BaseModel):
    """Generic message response."""

    message: str
