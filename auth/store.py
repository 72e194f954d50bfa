"""
auth/store.py -- SQLAlchemy Core persistence layer for users and refresh tokens.

Pattern: Repository + Data Mapper. UserStore is the repository;
_row_to_user / _row_to_refresh_token are the mappers. The service never
touches SQL directly -- it sees only the UserSaver / UserProvider protocols
in auth/interfaces.py, both of which UserStore satisfies.

Engine: SQLAlchemy 2.0 async (create_async_engine). Default URL is a SQLite
file driven by aiosqlite; any async URL (e.g. postgresql+asyncpg) works.
SQLite uses NullPool so every operation gets its own connection and no
connection is ever shared across event loops.

Security:
  All queries use bound parameters. No f-strings in SQL.

Timestamps are stored as fixed-width UTC ISO-8601 strings (microsecond
precision, "+00:00" suffix). Fixed width means text comparison equals time
comparison, which is what the expires_at filter in
resolve_refresh_token_owner() relies on. The clock is the application's, not
the database's, so expiry is judged by the same clock that minted the token.

Error mapping:
  IntegrityError on users     -> UserExistsError (only UNIQUE(email) can fire)
  IntegrityError on tokens    -> TokenSaveFailedError (duplicate ID, unknown user)
  any other SQLAlchemyError   -> StorageError

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, ForeignKey, LargeBinary, MetaData, String, Table, event, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from auth.errors import (
    StorageError,
    TokenNotFoundError,
    TokenSaveFailedError,
    UserExistsError,
    UserNotFoundError,
)
from auth.models import RefreshTokenRecord, User

logger = logging.getLogger("authapi.store")

DEFAULT_DB_URL = "sqlite+aiosqlite:///./authapi.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("name", String(255), nullable=False),
    Column("password_hash", LargeBinary, nullable=False),
    Column("created_at", String(32), nullable=False),
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("token_id", String(64), primary_key=True),
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("expires_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL, foreign keys and a busy timeout on every new SQLite connection.

    Set per-connection because SQLite PRAGMAs are not inherited. foreign_keys
    is off by default in SQLite; without it the refresh_tokens FK is not
    enforced. busy_timeout makes a writer wait for a concurrent writer instead
    of failing immediately with "database is locked".
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _to_iso(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _now_iso() -> str:
    return _to_iso(datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User and RefreshTokenRecord entities.

    Usage:
        store = UserStore("sqlite+aiosqlite:///./authapi.db")
        await store.init_schema()
        user = await store.create_user("Alice", "alice@example.com", hash_password("pw"))
        await store.close()
    """

    def __init__(self, db_url: str = DEFAULT_DB_URL) -> None:
        self._is_sqlite = db_url.startswith("sqlite")
        if self._is_sqlite:
            self.engine: AsyncEngine = create_async_engine(
                db_url,
                connect_args={"check_same_thread": False},
                poolclass=NullPool,
            )
            event.listen(self.engine.sync_engine, "connect", _set_sqlite_pragmas)
        else:
            self.engine = create_async_engine(db_url, pool_pre_ping=True)

    async def init_schema(self) -> None:
        """Create tables if they do not exist. Idempotent -- safe on every startup."""
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(_metadata.create_all)
        except SQLAlchemyError as exc:
            raise StorageError("failed to create schema") from exc

    async def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            logger.warning("Database ping failed", exc_info=True)
            return False
        return True

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def create_user(self, name: str, email: str, password_hash: bytes) -> User:
        """Insert a new user with a fresh UUID and return the stored record.

        Raises UserExistsError if the email is already registered. The UNIQUE
        constraint is the arbiter, so two concurrent registrations of the same
        email cannot both succeed.
        """
        user = User(
            id=str(uuid.uuid4()),
            email=email,
            name=name,
            password_hash=password_hash,
            created_at=datetime.now(timezone.utc),
        )
        try:
            async with self.engine.begin() as conn:
                await conn.execute(
                    _users.insert().values(
                        id=user.id,
                        email=user.email,
                        name=user.name,
                        password_hash=user.password_hash,
                        created_at=_to_iso(user.created_at),
                    )
                )
        except IntegrityError as exc:
            raise UserExistsError(f"user with email {email!r} already exists") from exc
        except SQLAlchemyError as exc:
            raise StorageError("failed to create user") from exc
        return user

    async def get_by_email(self, email: str) -> User:
        """Look up a user by exact email (case-sensitive)."""
        return await self._fetch_user(_users.c.email == email)

    async def get_by_id(self, user_id: str) -> User:
        return await self._fetch_user(_users.c.id == user_id)

    async def _fetch_user(self, clause) -> User:
        try:
            async with self.engine.connect() as conn:
                row = (await conn.execute(_users.select().where(clause))).fetchone()
        except SQLAlchemyError as exc:
            raise StorageError("failed to load user") from exc
        if row is None:
            raise UserNotFoundError("user not found")
        return _row_to_user(row)

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    async def save_refresh_token(self, token_id: str, user_id: str, expires_at: datetime) -> None:
        try:
            async with self.engine.begin() as conn:
                await conn.execute(
                    _refresh_tokens.insert().values(
                        token_id=token_id,
                        user_id=user_id,
                        expires_at=_to_iso(expires_at),
                        created_at=_now_iso(),
                    )
                )
        except IntegrityError as exc:
            raise TokenSaveFailedError("failed to save refresh token") from exc
        except SQLAlchemyError as exc:
            raise StorageError("failed to save refresh token") from exc

    async def remove_refresh_token(self, token_id: str) -> None:
        """Delete a refresh-token record. Raises TokenNotFoundError if nothing was deleted.

        The rowcount check is what makes rotation single-use under
        concurrency: when two requests redeem the same token, the storage
        engine serializes the DELETEs and only one of them sees rowcount 1.
        """
        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.token_id == token_id))
        except SQLAlchemyError as exc:
            raise StorageError("failed to remove refresh token") from exc
        if result.rowcount == 0:
            raise TokenNotFoundError("refresh token not found")

    async def resolve_refresh_token_owner(self, token_id: str) -> str:
        """Return the user ID owning a live (unexpired) refresh-token record."""
        try:
            async with self.engine.connect() as conn:
                row = (
                    await conn.execute(
                        _refresh_tokens.select().where(
                            (_refresh_tokens.c.token_id == token_id) & (_refresh_tokens.c.expires_at > _now_iso())
                        )
                    )
                ).fetchone()
        except SQLAlchemyError as exc:
            raise StorageError("failed to look up refresh token") from exc
        if row is None:
            raise TokenNotFoundError("refresh token not found or expired")
        return row.user_id

    async def get_refresh_token(self, token_id: str) -> RefreshTokenRecord | None:
        """Return the raw record regardless of expiry. Diagnostics only -- not part of the contract."""
        try:
            async with self.engine.connect() as conn:
                row = (
                    await conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.token_id == token_id))
                ).fetchone()
        except SQLAlchemyError as exc:
            raise StorageError("failed to look up refresh token") from exc
        return _row_to_refresh_token(row) if row is not None else None

    async def close(self) -> None:
        await self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        name=row.name,
        password_hash=bytes(row.password_hash),
        created_at=datetime.fromisoformat(row.created_at),
    )


def _row_to_refresh_token(row) -> RefreshTokenRecord:
    return RefreshTokenRecord(
        token_id=row.token_id,
        user_id=row.user_id,
        expires_at=datetime.fromisoformat(row.expires_at),
        created_at=datetime.fromisoformat(row.created_at),
    )
