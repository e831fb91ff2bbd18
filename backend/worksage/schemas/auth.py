"""Schemas for authentication endpoints."""

from datetime import datetime

from pydantic import BaseModel, EmailStr, Field


class UserRegister(BaseModel):
    """Schema for user registration. Complexity rules are applied by the password policy."""

    email: EmailStr
    name: str | None = Field(None, max_length=100)
    password: str = Field(min_length=1, max_length=256)


class UserLogin(BaseModel):
    """Schema for user login."""

    email: str
    password: str


class UserInfo(BaseModel):
    """Schema for user info in auth responses."""

    id: str
    email: str
    name: str | None = None
    role: str
    email_verified: bool

    model_config = {"from_attributes": True}


class TokenResponse(BaseModel):
    """Schema for token response."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    user: UserInfo


class AccessTokenResponse(BaseModel):
    """Schema for refresh response. The refresh token is not rotated."""

    access_token: str
    token_type: str = "bearer"
    user: UserInfo


class MfaChallengeResponse(BaseModel):
    """Returned by login when a second factor is required."""

    mfa_required: bool = True
    mfa_token: str
    user_id: str


class TokenRefresh(BaseModel):
    """Schema for token refresh and logout."""

    refresh_token: str


class MessageResponse(BaseModel):
    """Schema for simple message response."""

    message: str


class LogoutAllResponse(BaseModel):
    message: str
    sessions_revoked: int


class ChangePasswordRequest(BaseModel):
    """Schema for changing password while logged in."""

    current_password: str
    new_password: str = Field(min_length=1, max_length=256)


class PasswordValidateRequest(BaseModel):
    password: str = Field(max_length=256)
    email: str | None = None
    name: str | None = None


class PasswordValidateResponse(BaseModel):
    valid: bool
    errors: list[str]
    strength: str
    strength_score: int


class SessionInfo(BaseModel):
    """An active session, without any token material."""

    id: str
    ip_address: str | None = None
    user_agent: str | None = None
    created_at: datetime | None = None
    last_accessed_at: datetime | None = None
    expires_at: datetime
    current: bool = False

    model_config = {"from_attributes": True}


class SessionListResponse(BaseModel):
    sessions: list[SessionInfo]
