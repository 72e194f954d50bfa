"""
auth/tokens.py -- JWT issue and parse for access and refresh tokens.

Security design decisions:
  JWT: python-jose, signed with HS256. Parsing accepts only the HMAC-SHA
       family (HS256/HS384/HS512); a token whose header names any other
       algorithm, including "none", is rejected before claims are read.

  Two token types: access tokens carry user_id/email/name, refresh tokens
       carry user_id/token_id. Each also carries a "type" claim and is signed
       with its own secret, so neither can be replayed as the other even if a
       deployment misconfigures the secrets.

  Claims: decoded once into strict, frozen pydantic models. A missing,
       empty or mis-typed claim is an InvalidTokenError -- callers never see
       a partially populated claims object.

  Expiry: exp and iat are required. python-jose enforces exp with zero
       leeway.

  Errors: every python-jose failure (JWTError, JWSError, JWKError) derives
       from JOSEError. Signing maps it to TokenSigningError, parsing to
       InvalidTokenError, so no library exception leaves this module.

The codec is stateless: secret and ttl are passed on every call. It never
touches storage.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Literal

from jose import jwt
from jose.exceptions import JOSEError
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from auth.errors import InvalidTokenError, TokenSigningError

_ALGORITHM = "HS256"
_ACCEPTED_ALGORITHMS = ["HS256", "HS384", "HS512"]

_DECODE_OPTIONS = {
    "require_exp": True,
    "require_iat": True,
}


# ---------------------------------------------------------------------------
# Claim models
# ---------------------------------------------------------------------------


class AccessClaims(BaseModel):
    model_config = ConfigDict(strict=True, frozen=True)

    type: Literal["access"]
    user_id: str = Field(min_length=1)
    email: str = Field(min_length=1)
    name: str = Field(min_length=1)
    iat: int
    exp: int


class RefreshClaims(BaseModel):
    model_config = ConfigDict(strict=True, frozen=True)

    type: Literal["refresh"]
    user_id: str = Field(min_length=1)
    token_id: str = Field(min_length=1)
    iat: int
    exp: int


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _timestamps(ttl: timedelta, now: datetime | None) -> tuple[int, int]:
    if ttl <= timedelta(0):
        raise ValueError("token ttl must be positive")
    issued = now or datetime.now(timezone.utc)
    return int(issued.timestamp()), int((issued + ttl).timestamp())


def _sign(payload: dict, secret: str) -> str:
    try:
        return jwt.encode(payload, secret, algorithm=_ALGORITHM)
    except JOSEError as exc:
        raise TokenSigningError("failed to sign token") from exc


def _decode(token: str, secret: str) -> dict:
    try:
        return jwt.decode(token, secret, algorithms=_ACCEPTED_ALGORITHMS, options=_DECODE_OPTIONS)
    except JOSEError as exc:
        raise InvalidTokenError("token failed verification") from exc


# ---------------------------------------------------------------------------
# Access tokens
# ---------------------------------------------------------------------------


def issue_access_token(
    user_id: str,
    email: str,
    name: str,
    secret: str,
    ttl: timedelta,
    now: datetime | None = None,
) -> str:
    """Encode a signed access token for the given identity.

    Args:
        user_id: Opaque user ID from the store.
        email:   User's email, embedded so resolvers need no lookup to display it.
        name:    Display name.
        secret:  HMAC key for access tokens.
        ttl:     Validity window; exp = now + ttl.
        now:     Issue time (UTC). Defaults to the current time; tests pass a
                 past value to mint already-expired tokens.
    """
    iat, exp = _timestamps(ttl, now)
    payload = {
        "type": "access",
        "user_id": user_id,
        "email": email,
        "name": name,
        "iat": iat,
        "exp": exp,
    }
    return _sign(payload, secret)


def parse_access_token(token: str, secret: str) -> AccessClaims:
    """Verify an access token and return its claims.

    Raises InvalidTokenError on a bad signature, unexpected algorithm,
    expiry, wrong token type, or missing/mis-typed claims.
    """
    payload = _decode(token, secret)
    try:
        return AccessClaims.model_validate(payload)
    except ValidationError as exc:
        raise InvalidTokenError("access token claims are invalid") from exc


# ---------------------------------------------------------------------------
# Refresh tokens
# ---------------------------------------------------------------------------


def issue_refresh_token(
    user_id: str,
    token_id: str,
    secret: str,
    ttl: timedelta,
    now: datetime | None = None,
) -> str:
    """Encode a signed refresh token bound to a persisted token ID."""
    iat, exp = _timestamps(ttl, now)
    payload = {
        "type": "refresh",
        "user_id": user_id,
        "token_id": token_id,
        "iat": iat,
        "exp": exp,
    }
    return _sign(payload, secret)


def parse_refresh_token(token: str, secret: str) -> RefreshClaims:
    """Verify a refresh token and return its claims. Same rules as access tokens."""
    payload = _decode(token, secret)
    try:
        return RefreshClaims.model_validate(payload)
    except ValidationError as exc:
        raise InvalidTokenError("refresh token claims are invalid") from exc
