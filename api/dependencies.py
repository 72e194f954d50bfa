"""
api/dependencies.py -- FastAPI Depends() helpers.

get_auth_service() hands routes the AuthService built in lifespan.
get_bearer_token() extracts the access token from "Authorization: Bearer".
run_with_timeout() bounds a service call by REQUEST_TIMEOUT_SECONDS; when
the timeout fires the service coroutine is cancelled, which aborts whatever
store or bcrypt step it was awaiting.

These live in api/, not auth/, because they speak HTTP.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from fastapi import HTTPException, Request

from auth.service import AuthService

T = TypeVar("T")


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_bearer_token(request: Request) -> str:
    """Return the Bearer token from the Authorization header or raise HTTP 401."""
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
            headers={"WWW-Authenticate": "Bearer"},
        )
    return token


async def run_with_timeout(request: Request, call: Awaitable[T]) -> T:
    """Await a service call, cancelling it after the configured timeout.

    asyncio.TimeoutError propagates to the handler registered in api/main.py.
    """
    timeout = request.app.state.settings.request_timeout_seconds
    return await asyncio.wait_for(call, timeout=timeout)
