"""Unit tests for auth/tokens.py -- access/refresh JWT issue and parse.

Covers:
- issue -> parse returns the embedded claims
- expiry enforced (backdated issue time)
- wrong secret, tampering, garbage and foreign algorithms rejected
- access and refresh tokens are not interchangeable
- missing or mis-typed claims rejected without partial results
"""

import base64
import json
from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from auth.errors import InvalidTokenError, TokenSigningError
from auth.tokens import (
    AccessClaims,
    RefreshClaims,
    issue_access_token,
    issue_refresh_token,
    parse_access_token,
    parse_refresh_token,
)

SECRET = "s" * 40
OTHER_SECRET = "o" * 40
TTL = timedelta(minutes=15)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _b64(data: dict) -> str:
    return base64.urlsafe_b64encode(json.dumps(data).encode()).rstrip(b"=").decode()


def _tamper(token: str) -> str:
    """Change one character in the payload segment.

    The payload is covered by the signature, so any change there must fail
    verification. (The last signature character is avoided on purpose: its
    low bits are base64 padding and may decode to the same bytes.)
    """
    header, payload, signature = token.split(".")
    i = len(payload) // 2
    replacement = "A" if payload[i] != "A" else "B"
    return ".".join([header, payload[:i] + replacement + payload[i + 1 :], signature])


def _claims(**overrides) -> dict:
    now = int(datetime.now(timezone.utc).timestamp())
    base = {"type": "access", "user_id": "u-1", "email": "a@x.com", "name": "Alice", "iat": now, "exp": now + 600}
    base.update(overrides)
    return {k: v for k, v in base.items() if v is not None}


# ---------------------------------------------------------------------------
# Round trips
# ---------------------------------------------------------------------------


def test_access_token_round_trip():
    token = issue_access_token("u-1", "alice@x.com", "Alice", SECRET, TTL)
    claims = parse_access_token(token, SECRET)
    assert isinstance(claims, AccessClaims)
    assert (claims.user_id, claims.email, claims.name) == ("u-1", "alice@x.com", "Alice")
    assert claims.exp - claims.iat == int(TTL.total_seconds())


def test_refresh_token_round_trip():
    token = issue_refresh_token("u-1", "tok-1", SECRET, TTL)
    claims = parse_refresh_token(token, SECRET)
    assert isinstance(claims, RefreshClaims)
    assert (claims.user_id, claims.token_id) == ("u-1", "tok-1")


def test_issue_uses_supplied_clock():
    issued = datetime(2030, 1, 1, tzinfo=timezone.utc)
    token = issue_access_token("u-1", "a@x.com", "A", SECRET, TTL, now=issued)
    payload = jwt.get_unverified_claims(token)
    assert payload["iat"] == int(issued.timestamp())
    assert payload["exp"] == int((issued + TTL).timestamp())


def test_hmac_family_algorithms_accepted():
    token = jwt.encode(_claims(), SECRET, algorithm="HS512")
    assert parse_access_token(token, SECRET).user_id == "u-1"


@pytest.mark.parametrize("ttl", [timedelta(0), timedelta(seconds=-5)])
def test_non_positive_ttl_rejected(ttl):
    with pytest.raises(ValueError):
        issue_access_token("u-1", "a@x.com", "A", SECRET, ttl)


# ---------------------------------------------------------------------------
# Verification failures
# ---------------------------------------------------------------------------


def test_expired_access_token_rejected():
    past = datetime.now(timezone.utc) - timedelta(hours=1)
    token = issue_access_token("u-1", "a@x.com", "A", SECRET, TTL, now=past)
    with pytest.raises(InvalidTokenError):
        parse_access_token(token, SECRET)


def test_expired_refresh_token_rejected():
    past = datetime.now(timezone.utc) - timedelta(days=31)
    token = issue_refresh_token("u-1", "tok-1", SECRET, timedelta(days=30), now=past)
    with pytest.raises(InvalidTokenError):
        parse_refresh_token(token, SECRET)


def test_wrong_secret_rejected():
    access = issue_access_token("u-1", "a@x.com", "A", SECRET, TTL)
    refresh = issue_refresh_token("u-1", "tok-1", SECRET, TTL)
    with pytest.raises(InvalidTokenError):
        parse_access_token(access, OTHER_SECRET)
    with pytest.raises(InvalidTokenError):
        parse_refresh_token(refresh, OTHER_SECRET)


def test_tampered_token_rejected():
    token = issue_access_token("u-1", "a@x.com", "A", SECRET, TTL)
    with pytest.raises(InvalidTokenError):
        parse_access_token(_tamper(token), SECRET)


@pytest.mark.parametrize("garbage", ["", "garbage", "a.b.c", "x" * 500])
def test_garbage_rejected(garbage):
    with pytest.raises(InvalidTokenError):
        parse_refresh_token(garbage, SECRET)


def test_unsigned_token_rejected():
    token = f"{_b64({'alg': 'none', 'typ': 'JWT'})}.{_b64(_claims())}."
    with pytest.raises(InvalidTokenError):
        parse_access_token(token, SECRET)


def test_access_token_is_not_a_refresh_token():
    access = issue_access_token("u-1", "a@x.com", "A", SECRET, TTL)
    with pytest.raises(InvalidTokenError):
        parse_refresh_token(access, SECRET)


def test_refresh_token_is_not_an_access_token():
    refresh = issue_refresh_token("u-1", "tok-1", SECRET, TTL)
    with pytest.raises(InvalidTokenError):
        parse_access_token(refresh, SECRET)


# ---------------------------------------------------------------------------
# Claim validation
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("missing", ["user_id", "email", "name", "type"])
def test_missing_access_claim_rejected(missing):
    token = jwt.encode(_claims(**{missing: None}), SECRET, algorithm="HS256")
    with pytest.raises(InvalidTokenError):
        parse_access_token(token, SECRET)


@pytest.mark.parametrize("missing", ["exp", "iat"])
def test_missing_timestamps_rejected(missing):
    token = jwt.encode(_claims(**{missing: None}), SECRET, algorithm="HS256")
    with pytest.raises(InvalidTokenError):
        parse_access_token(token, SECRET)


@pytest.mark.parametrize(
    "overrides",
    [{"user_id": 42}, {"email": ["a@x.com"]}, {"name": ""}, {"user_id": ""}],
)
def test_mistyped_or_empty_claims_rejected(overrides):
    token = jwt.encode(_claims(**overrides), SECRET, algorithm="HS256")
    with pytest.raises(InvalidTokenError):
        parse_access_token(token, SECRET)


def test_refresh_token_requires_token_id():
    claims = _claims(type="refresh", email=None, name=None)
    token = jwt.encode(claims, SECRET, algorithm="HS256")
    with pytest.raises(InvalidTokenError):
        parse_refresh_token(token, SECRET)


def test_unusable_signing_key_raises_signing_error():
    with pytest.raises(TokenSigningError):
        issue_access_token("u-1", "a@x.com", "A", "-----BEGIN PUBLIC KEY-----" + "x" * 40, TTL)


def test_unusable_verification_key_is_invalid_token():
    token = issue_access_token("u-1", "a@x.com", "A", SECRET, TTL)
    with pytest.raises(InvalidTokenError):
        parse_access_token(token, "-----BEGIN PUBLIC KEY-----" + "x" * 40)
