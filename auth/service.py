"""
auth/service.py -- AuthService: register, login, refresh, resolve identity.

The service is the only place that composes the hasher, the token codec and
the persistence contract, and the only place that turns their failures into
the caller-visible taxonomy in auth/errors.py. No raw storage, bcrypt or
JWT error escapes it; each is re-raised as an AuthError with the original
chained as __cause__ for the logs.

State: none beyond the immutable configuration passed to __init__. One
instance is shared by every concurrent request; it needs no locks.

Rotation invariant: refresh() awaits remove_refresh_token() to completion
before minting the new pair. A captured refresh token therefore redeems at
most once -- a replay fails at the owner lookup (record gone) or at the
delete (a concurrent redeemer won).

Durability invariant: a token pair is returned only after its refresh
record is saved. If the save fails, the caller gets InternalError and no
tokens, never a refresh token that can be neither redeemed nor revoked.

Cancellation: every suspension point is an await on the store or on
asyncio.to_thread(bcrypt). CancelledError is a BaseException and none of the
except clauses below catch it, so a cancelled request unwinds without
returning a pair.

Layer rule: no imports from api/. Nothing here knows about HTTP.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from auth.errors import (
    HashingError,
    InternalError,
    InvalidCredentialsError,
    InvalidTokenError,
    StorageError,
    TokenNotFoundError,
    TokenSigningError,
    UserExistsError,
    UserNotFoundError,
)
from auth.interfaces import UserProvider, UserSaver
from auth.models import Session, TokenPair, User, UserProfile
from auth.passwords import DEFAULT_ROUNDS, hash_password, verify_password
from auth.tokens import issue_access_token, issue_refresh_token, parse_access_token, parse_refresh_token

if TYPE_CHECKING:
    from core.config import Settings


class AuthService:
    """Service façade over the credential hasher, token codec and store.

    Args:
        log:            Logger the service writes to. Passwords, hashes and
                        token strings are never logged.
        user_saver:     Write side of the persistence contract.
        user_provider:  Read side. May be the same object as user_saver.
        access_ttl:     Access token lifetime.
        access_secret:  HMAC key for access tokens.
        refresh_ttl:    Refresh token (and record) lifetime.
        refresh_secret: HMAC key for refresh tokens. Must differ from
                        access_secret so one token type cannot pass as the other.
        bcrypt_rounds:  bcrypt cost factor for new hashes.
    """

    def __init__(
        self,
        log: logging.Logger,
        user_saver: UserSaver,
        user_provider: UserProvider,
        *,
        access_ttl: timedelta,
        access_secret: str,
        refresh_ttl: timedelta,
        refresh_secret: str,
        bcrypt_rounds: int = DEFAULT_ROUNDS,
    ) -> None:
        if not access_secret or not refresh_secret:
            raise ValueError("access_secret and refresh_secret must be non-empty")
        if access_secret == refresh_secret:
            raise ValueError("access_secret and refresh_secret must differ")
        if access_ttl <= timedelta(0) or refresh_ttl <= timedelta(0):
            raise ValueError("token TTLs must be positive")

        self._log = log
        self._saver = user_saver
        self._provider = user_provider
        self._access_ttl = access_ttl
        self._access_secret = access_secret
        self._refresh_ttl = refresh_ttl
        self._refresh_secret = refresh_secret
        self._bcrypt_rounds = bcrypt_rounds

        # Timing equalization: login() verifies against this when the email is
        # unknown, so an unknown email costs the same bcrypt work as a wrong
        # password and response time does not reveal which one it was.
        self._dummy_hash = hash_password(secrets.token_urlsafe(16), bcrypt_rounds)

    @classmethod
    def from_settings(cls, log: logging.Logger, store: UserSaver | UserProvider, settings: Settings) -> AuthService:
        """Build a service whose saver and provider are the same store."""
        return cls(
            log,
            store,
            store,
            access_ttl=settings.access_ttl,
            access_secret=settings.access_secret,
            refresh_ttl=settings.refresh_ttl,
            refresh_secret=settings.refresh_secret,
            bcrypt_rounds=settings.bcrypt_rounds,
        )

    # ------------------------------------------------------------------
    # Register
    # ------------------------------------------------------------------

    async def register(self, name: str, email: str, password: str) -> Session:
        """Create a user and return their profile with a fresh token pair.

        Raises:
            UserExistsError: email already registered.
            InternalError:   hashing, storage or token persistence failed.
        """
        self._log.info("Registering user email=%s", email)

        try:
            password_hash = await asyncio.to_thread(hash_password, password, self._bcrypt_rounds)
        except HashingError as exc:
            self._log.error("Password hashing failed during registration: %s", exc)
            raise InternalError("failed to hash password") from exc

        try:
            user = await self._saver.create_user(name, email, password_hash)
        except UserExistsError:
            self._log.warning("Registration rejected, email already exists email=%s", email)
            raise
        except StorageError as exc:
            self._log.error("Failed to save user email=%s: %s", email, exc)
            raise InternalError("failed to create user") from exc

        tokens = await self._issue_token_pair(user)
        self._log.info("User registered user_id=%s", user.id)
        return Session(user=user.profile(), tokens=tokens)

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    async def login(self, email: str, password: str) -> Session:
        """Check email/password and return the profile with a fresh token pair.

        Unknown email and wrong password both raise InvalidCredentialsError --
        the caller never learns which one it was.
        """
        self._log.info("Login attempt email=%s", email)

        try:
            user = await self._provider.get_by_email(email)
        except UserNotFoundError:
            # Do NOT return before running bcrypt -- see _dummy_hash.
            await asyncio.to_thread(verify_password, self._dummy_hash, password)
            self._log.warning("Login failed, unknown email=%s", email)
            raise InvalidCredentialsError("invalid credentials") from None
        except StorageError as exc:
            self._log.error("Failed to load user email=%s: %s", email, exc)
            raise InternalError("failed to load user") from exc

        try:
            matches = await asyncio.to_thread(verify_password, user.password_hash, password)
        except HashingError as exc:
            self._log.error("Stored password hash is unusable user_id=%s: %s", user.id, exc)
            raise InternalError("failed to verify password") from exc
        if not matches:
            self._log.warning("Login failed, wrong password user_id=%s", user.id)
            raise InvalidCredentialsError("invalid credentials")

        tokens = await self._issue_token_pair(user)
        self._log.info("User logged in user_id=%s", user.id)
        return Session(user=user.profile(), tokens=tokens)

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh(self, refresh_token: str) -> TokenPair:
        """Redeem a refresh token exactly once for a new token pair.

        Raises:
            InvalidTokenError: token is malformed, expired, already redeemed,
                               or its user no longer exists.
            InternalError:     a storage failure other than not-found, or the
                               new refresh record could not be saved.
        """
        try:
            claims = parse_refresh_token(refresh_token, self._refresh_secret)
        except InvalidTokenError:
            self._log.warning("Refresh rejected, token failed verification")
            raise

        try:
            owner_id = await self._provider.resolve_refresh_token_owner(claims.token_id)
        except (TokenNotFoundError, UserNotFoundError) as exc:
            self._log.warning("Refresh rejected, no live record token_id=%s", claims.token_id)
            raise InvalidTokenError("refresh token is not redeemable") from exc
        except StorageError as exc:
            self._log.error("Failed to look up refresh token token_id=%s: %s", claims.token_id, exc)
            raise InternalError("failed to look up refresh token") from exc

        if owner_id != claims.user_id:
            self._log.warning("Refresh rejected, owner mismatch token_id=%s", claims.token_id)
            raise InvalidTokenError("refresh token owner mismatch")

        try:
            user = await self._provider.get_by_id(owner_id)
        except UserNotFoundError as exc:
            self._log.warning("Refresh rejected, user gone user_id=%s", owner_id)
            raise InvalidTokenError("refresh token owner not found") from exc
        except StorageError as exc:
            self._log.error("Failed to load user user_id=%s: %s", owner_id, exc)
            raise InternalError("failed to load user") from exc

        # Must complete before the new pair is minted.
        try:
            await self._saver.remove_refresh_token(claims.token_id)
        except StorageError as exc:
            self._log.warning("Refresh rejected, could not consume token_id=%s: %s", claims.token_id, exc)
            raise InvalidTokenError("refresh token already consumed") from exc

        tokens = await self._issue_token_pair(user)
        self._log.info("Tokens rotated user_id=%s", user.id)
        return tokens

    # ------------------------------------------------------------------
    # Resolve identity
    # ------------------------------------------------------------------

    async def resolve_identity(self, access_token: str) -> UserProfile:
        """Return the profile of the user an access token was issued to."""
        try:
            claims = parse_access_token(access_token, self._access_secret)
        except InvalidTokenError:
            self._log.warning("Identity rejected, access token failed verification")
            raise

        try:
            user = await self._provider.get_by_id(claims.user_id)
        except UserNotFoundError as exc:
            self._log.warning("Identity rejected, user gone user_id=%s", claims.user_id)
            raise InvalidTokenError("access token subject not found") from exc
        except StorageError as exc:
            self._log.error("Failed to load user user_id=%s: %s", claims.user_id, exc)
            raise InternalError("failed to load user") from exc

        return user.profile()

    # ------------------------------------------------------------------
    # Token pair
    # ------------------------------------------------------------------

    async def _issue_token_pair(self, user: User) -> TokenPair:
        now = datetime.now(timezone.utc)
        token_id = str(uuid.uuid4())
        try:
            access = issue_access_token(user.id, user.email, user.name, self._access_secret, self._access_ttl, now=now)
            refresh = issue_refresh_token(user.id, token_id, self._refresh_secret, self._refresh_ttl, now=now)
        except TokenSigningError as exc:
            self._log.error("Token signing failed user_id=%s: %s", user.id, exc)
            raise InternalError("failed to sign tokens") from exc

        try:
            await self._saver.save_refresh_token(token_id, user.id, now + self._refresh_ttl)
        except StorageError as exc:
            self._log.error("Failed to persist refresh token user_id=%s: %s", user.id, exc)
            raise InternalError("failed to persist refresh token") from exc

        return TokenPair(access_token=access, refresh_token=refresh)
