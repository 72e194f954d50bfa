"""Persistence contract consumed by AuthService.

Split into a write side and a read side so the service depends only on the
operations it calls. UserStore implements both; tests can hand in separate
fakes per side.

Every method is a coroutine. Cancelling the awaiting task (client
disconnect, asyncio.wait_for timeout) is the cancellation signal -- an
implementation must not swallow CancelledError.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from auth.models import User


class UserSaver(Protocol):
    """Write side of the persistence contract."""

    async def create_user(self, name: str, email: str, password_hash: bytes) -> User:
        """Insert a user and return the stored record.

        Raises:
            UserExistsError: email is already registered.
            StorageError: any other persistence failure.
        """
        ...

    async def save_refresh_token(self, token_id: str, user_id: str, expires_at: datetime) -> None:
        """Persist a refresh-token record.

        Raises:
            TokenSaveFailedError / StorageError.
        """
        ...

    async def remove_refresh_token(self, token_id: str) -> None:
        """Delete a refresh-token record.

        Raises:
            TokenNotFoundError: nothing was deleted (absent or already consumed).
            StorageError: any other persistence failure.
        """
        ...


class UserProvider(Protocol):
    """Read side of the persistence contract."""

    async def get_by_email(self, email: str) -> User:
        """Raises UserNotFoundError / StorageError."""
        ...

    async def get_by_id(self, user_id: str) -> User:
        """Raises UserNotFoundError / StorageError."""
        ...

    async def resolve_refresh_token_owner(self, token_id: str) -> str:
        """Return the owning user ID of a live refresh-token record.

        Only records whose expires_at is strictly in the future match.

        Raises:
            TokenNotFoundError: absent or expired.
            StorageError: any other persistence failure.
        """
        ...
