"""
API request and response models for the auth REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import Session, TokenPair, UserProfile
from auth.passwords import MAX_PASSWORD_BYTES

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register.

    Email is stored exactly as given (case-sensitive). Passwords are not
    stripped -- leading/trailing spaces are part of the secret. bcrypt reads
    at most 72 bytes, so longer passwords are rejected here rather than
    silently shortened.
    """

    name: str = Field(min_length=1, max_length=255)
    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=MAX_PASSWORD_BYTES)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, v: str) -> str:
        if len(v.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValueError(f"password must be at most {MAX_PASSWORD_BYTES} bytes in UTF-8")
        return v


class LoginRequest(BaseModel):
    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class ProfileResponse(BaseModel):
    """Response for GET /api/v1/auth/me."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    email: str
    created_at: Optional[datetime] = None

    @classmethod
    def from_profile(cls, profile: UserProfile) -> "ProfileResponse":
        return cls(id=profile.id, name=profile.name, email=profile.email, created_at=profile.created_at)


class TokenPairResponse(BaseModel):
    """Response for POST /api/v1/auth/refresh -- tokens only, no profile."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"

    @classmethod
    def from_pair(cls, pair: TokenPair) -> "TokenPairResponse":
        return cls(access_token=pair.access_token, refresh_token=pair.refresh_token)


class SessionResponse(BaseModel):
    """Response for POST /register and POST /login: profile fields plus tokens."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    email: str
    created_at: Optional[datetime] = None
    access_token: str
    refresh_token: str
    token_type: str = "bearer"

    @classmethod
    def from_session(cls, session: Session) -> "SessionResponse":
        """Flatten a domain Session into the response shape."""
        return cls(
            id=session.user.id,
            name=session.user.name,
            email=session.user.email,
            created_at=session.user.created_at,
            access_token=session.tokens.access_token,
            refresh_token=session.tokens.refresh_token,
        )


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
