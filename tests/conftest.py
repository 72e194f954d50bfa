"""
tests/conftest.py -- Shared test fixtures for the auth API tests.

This module provides:
  - InMemoryStore: a dict-backed fake of both persistence protocols with
    switches for failure injection (failing saves, failing reads, slow saves)
  - store: a real UserStore on a temporary SQLite file
  - service / memory_service: AuthService over the real store / the fake
  - api_client: TestClient with a patched lifespan wired to an isolated store

bcrypt runs at 4 rounds everywhere here; the production default of 12 would
make the suite take minutes.

The DEBUG env var is set before any app import so get_settings() never
refuses to start if something touches it.
"""

from __future__ import annotations

import asyncio
import logging
import os
import uuid
from collections.abc import AsyncIterator, Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# Set DEBUG before any core import so get_settings() can auto-generate
# secrets instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from api.main import app
from auth.errors import (
    StorageError,
    TokenNotFoundError,
    TokenSaveFailedError,
    UserExistsError,
    UserNotFoundError,
)
from auth.models import RefreshTokenRecord, User
from auth.service import AuthService
from auth.store import UserStore
from core.config import Settings

ACCESS_SECRET = "access-secret-for-tests-0123456789abcdef"
REFRESH_SECRET = "refresh-secret-for-tests-0123456789abcdef"
TEST_ROUNDS = 4

# ---------------------------------------------------------------------------
# In-memory fake of UserSaver + UserProvider
# ---------------------------------------------------------------------------


class InMemoryStore:
    """Dict-backed store satisfying both persistence protocols.

    Failure switches:
      fail_save:  save_refresh_token raises TokenSaveFailedError
      fail_reads: get_by_email / get_by_id raise StorageError
      save_delay: seconds save_refresh_token sleeps before writing
    """

    def __init__(self) -> None:
        self.users: dict[str, User] = {}
        self.tokens: dict[str, RefreshTokenRecord] = {}
        self.fail_save = False
        self.fail_reads = False
        self.save_delay = 0.0

    async def create_user(self, name: str, email: str, password_hash: bytes) -> User:
        if any(u.email == email for u in self.users.values()):
            raise UserExistsError(email)
        user = User(
            id=str(uuid.uuid4()),
            email=email,
            name=name,
            password_hash=password_hash,
            created_at=datetime.now(timezone.utc),
        )
        self.users[user.id] = user
        return user

    async def get_by_email(self, email: str) -> User:
        if self.fail_reads:
            raise StorageError("connection reset")
        for user in self.users.values():
            if user.email == email:
                return user
        raise UserNotFoundError(email)

    async def get_by_id(self, user_id: str) -> User:
        if self.fail_reads:
            raise StorageError("connection reset")
        try:
            return self.users[user_id]
        except KeyError:
            raise UserNotFoundError(user_id) from None

    async def save_refresh_token(self, token_id: str, user_id: str, expires_at: datetime) -> None:
        if self.save_delay:
            await asyncio.sleep(self.save_delay)
        if self.fail_save:
            raise TokenSaveFailedError(token_id)
        self.tokens[token_id] = RefreshTokenRecord(token_id=token_id, user_id=user_id, expires_at=expires_at)

    async def remove_refresh_token(self, token_id: str) -> None:
        if self.tokens.pop(token_id, None) is None:
            raise TokenNotFoundError(token_id)

    async def resolve_refresh_token_owner(self, token_id: str) -> str:
        record = self.tokens.get(token_id)
        if record is None or record.expires_at <= datetime.now(timezone.utc):
            raise TokenNotFoundError(token_id)
        return record.user_id


# ---------------------------------------------------------------------------
# Service helpers
# ---------------------------------------------------------------------------


def _make_service(saver, provider) -> AuthService:
    return AuthService(
        logging.getLogger("authapi.test"),
        saver,
        provider,
        access_ttl=timedelta(minutes=15),
        access_secret=ACCESS_SECRET,
        refresh_ttl=timedelta(days=30),
        refresh_secret=REFRESH_SECRET,
        bcrypt_rounds=TEST_ROUNDS,
    )


@pytest.fixture
def token_secrets() -> tuple[str, str]:
    """(access_secret, refresh_secret) the service fixtures are configured with."""
    return ACCESS_SECRET, REFRESH_SECRET


@pytest.fixture
def memory_store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def memory_service(memory_store: InMemoryStore) -> AuthService:
    return _make_service(memory_store, memory_store)


@pytest_asyncio.fixture
async def store(tmp_path) -> AsyncIterator[UserStore]:
    """UserStore on a fresh SQLite file, schema created."""
    s = UserStore(f"sqlite+aiosqlite:///{tmp_path / 'auth.db'}")
    await s.init_schema()
    yield s
    await s.close()


@pytest.fixture
def service(store: UserStore) -> AuthService:
    return _make_service(store, store)


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------


def _patch_lifespan(settings: Settings):
    """Return an async context manager that replaces the real lifespan.

    Builds the store inside TestClient's event loop (the async engine must
    live on the loop that uses it) and skips get_settings() entirely.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.settings = settings
        app.state.user_store = UserStore(settings.database_url)
        await app.state.user_store.init_schema()
        app.state.auth_service = AuthService.from_settings(
            logging.getLogger("authapi.service"), app.state.user_store, settings
        )
        yield
        await app.state.user_store.close()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(tmp_path_factory) -> Generator[TestClient, None, None]:
    """Yield a TestClient backed by an isolated SQLite store.

    Module-scoped for speed: tests in one module share the database, so each
    test registers its own email.
    """
    db_path = tmp_path_factory.mktemp("api") / "auth.db"
    settings = Settings(
        debug=True,
        access_secret=ACCESS_SECRET,
        refresh_secret=REFRESH_SECRET,
        bcrypt_rounds=TEST_ROUNDS,
        database_url=f"sqlite+aiosqlite:///{db_path}",
    )
    app.router.lifespan_context = _patch_lifespan(settings)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client
