"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and the
service do the work; these only own the domain shape.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class User:
    """A registered identity.

    password_hash is the raw bcrypt output. It is excluded from repr so a
    stray log line or traceback never prints it, and it never leaves the
    service: callers get a UserProfile instead.
    """

    id: str
    email: str  # unique, case-sensitive as stored
    name: str
    password_hash: bytes = b""
    created_at: datetime | None = None

    def __repr__(self) -> str:
        return f"User(id={self.id!r}, email={self.email!r}, name={self.name!r})"

    def profile(self) -> UserProfile:
        return UserProfile(id=self.id, name=self.name, email=self.email, created_at=self.created_at)


@dataclass
class RefreshTokenRecord:
    """Durable half of a refresh token.

    Only token_id is stored, never the signed token string. A record is
    deleted exactly once, when its token is redeemed by AuthService.refresh().
    """

    token_id: str
    user_id: str
    expires_at: datetime
    created_at: datetime | None = None


@dataclass(frozen=True)
class UserProfile:
    """Public view of a user -- what resolve_identity() returns."""

    id: str
    name: str
    email: str
    created_at: datetime | None = None


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str

    def __repr__(self) -> str:
        return "TokenPair(access_token=..., refresh_token=...)"


@dataclass(frozen=True)
class Session:
    """Result of register() and login(): who you are plus fresh tokens.

    refresh() returns a bare TokenPair instead -- the caller already knows
    who they are.
    """

    user: UserProfile
    tokens: TokenPair
