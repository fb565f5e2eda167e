"""
API request and response models for Tokenward REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/{role}/login.

    Only email is normalized. The password is passed to bcrypt exactly as
    sent, since leading or trailing spaces are part of the secret.
    password max_length keeps inputs below bcrypt's 72-byte truncation point
    for ASCII passwords.
    """

    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1, max_length=72)

    @field_validator("email")
    @classmethod
    def strip_email(cls, value: str) -> str:
        return value.strip()


class JoinRequest(BaseModel):
    """Request body for POST /api/v1/auth/{role}/join (self-registration)."""

    email: str = Field(min_length=3, max_length=255, pattern=r"^\s*[^@\s]+@[^@\s]+\.[^@\s]+\s*$")
    password: str = Field(min_length=8, max_length=72)

    @field_validator("email")
    @classmethod
    def strip_email(cls, value: str) -> str:
        return value.strip()


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1, max_length=4096)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class TokenPairResponse(BaseModel):
    """Returned by login and refresh. token_type is the OAuth-style scheme name."""

    access_token: str
    access_expires_at: datetime
    refresh_token: str
    refresh_expires_at: datetime
    token_type: str = "bearer"
    user_id: str
    role: str
    session_id: Optional[str] = None


class PrincipalResponse(BaseModel):
    user_id: str
    role: str


class SessionResponse(BaseModel):
    id: str
    role: str
    ip: Optional[str] = None
    device: Optional[str] = None
    browser: Optional[str] = None
    location: Optional[str] = None
    created_at: Optional[datetime] = None
    last_activity_at: Optional[datetime] = None
    expires_at: datetime
    current: bool = False


class RevokedCountResponse(BaseModel):
    revoked: int


class LoginAuditResponse(BaseModel):
    id: str
    user_id: Optional[str] = None
    email_attempted: str
    role: Optional[str] = None
    is_successful: bool
    failure_reason: Optional[str] = None
    ip: Optional[str] = None
    device: Optional[str] = None
    browser: Optional[str] = None
    location: Optional[str] = None
    created_at: Optional[datetime] = None


class ErrorDetail(BaseModel):
    """Structured error payload shared by every error response."""

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    error: ErrorDetail


class HealthResponse(BaseModel):
    """GET /api/v1/health payload. components reports per-dependency status."""

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
