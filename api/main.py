"""
api/main.py -- FastAPI application entry point for the auth API.

Exposes AuthService over HTTP. The service itself knows nothing about HTTP;
this module owns the translation from its error taxonomy to status codes.

Run with:      python main.py serve
               uvicorn api.main:app --reload

Lifespan handles startup (settings, logging, store + schema, service) and
shutdown (dispose the engine) symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.errors import (
    AuthError,
    InternalError,
    InvalidCredentialsError,
    InvalidTokenError,
    UserExistsError,
)
from auth.service import AuthService
from auth.store import UserStore
from core.config import get_settings
from core.logging_config import setup_logging

API_VERSION = "1.0.0"

logger = logging.getLogger("authapi.api")

# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the store and the service once; share them across all requests.

    Startup order matters:
      1. Settings + logging first -- everything after logs through them.
      2. Store, then schema -- the service must not take traffic before the
         tables exist.
      3. Service last -- needs both settings and store.
    """
    settings = get_settings()
    setup_logging(settings.env, settings.log_level)
    logger.info("Auth API starting up (env=%s)", settings.env)

    app.state.settings = settings
    app.state.user_store = UserStore(settings.database_url)
    await app.state.user_store.init_schema()
    logger.info("Store initialized")
    app.state.auth_service = AuthService.from_settings(
        logging.getLogger("authapi.service"), app.state.user_store, settings
    )

    yield

    await app.state.user_store.close()
    logger.info("Auth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Auth API",
    description="User registration, login, and rotating access/refresh tokens.",
    version=API_VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Request logging middleware
#
# Every request passes through this coroutine before reaching any route
# handler. Wall-clock time around call_next gives the latency.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    client = request.client.host if request.client else "unknown"
    try:
        response = await call_next(request)
    except Exception:
        # The catch-all handler renders the 500 outside this middleware.
        ms = (time.perf_counter() - start) * 1000
        logger.info("%s %s %d %.1fms %s", request.method, request.url.path, 500, ms, client)
        raise
    ms = (time.perf_counter() - start) * 1000
    logger.info("%s %s %d %.1fms %s", request.method, request.url.path, response.status_code, ms, client)
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------

# AuthError subclass -> (status, code, client-facing message). Messages are
# fixed strings: the exception text (and its chained cause) is never echoed.
_AUTH_ERRORS: dict[type[AuthError], tuple[int, str, str]] = {
    InvalidCredentialsError: (401, "bad_credentials", "Invalid email or password."),
    InvalidTokenError: (401, "invalid_token", "Invalid or expired token."),
    UserExistsError: (409, "user_exists", "Email address is already registered."),
    InternalError: (500, "internal_error", "An unexpected error occurred."),
}


def _error_response(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Map the service's error taxonomy to HTTP status codes."""
    status_code, code, message = _AUTH_ERRORS.get(type(exc), _AUTH_ERRORS[InternalError])
    if status_code >= 500:
        logger.error("Internal auth failure on %s %s", request.method, request.url.path, exc_info=exc)
    response = _error_response(status_code, code, message)
    if status_code == 401:
        response.headers["WWW-Authenticate"] = "Bearer"
    return response


@app.exception_handler(asyncio.TimeoutError)
async def timeout_handler(request: Request, exc: asyncio.TimeoutError) -> JSONResponse:
    """A service call exceeded REQUEST_TIMEOUT_SECONDS and was cancelled."""
    logger.warning("Request timed out on %s %s", request.method, request.url.path)
    return _error_response(504, "timeout", "The request timed out.")


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation.

    Only each error's location and message are reported. The rejected input
    is left out so a submitted password is never echoed back.
    """
    detail = "; ".join(
        f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg', '')}" for err in exc.errors()
    )
    return _error_response(422, "validation_error", "Request validation failed.", detail)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it -- str(dict) produces a Python repr,
    not JSON.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)
    response = _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and database reachability."""
    db_ok = await request.app.state.user_store.ping()
    return HealthResponse(
        status="healthy" if db_ok else "degraded",
        version=API_VERSION,
        components={"app": "ok", "database": "ok" if db_ok else "error"},
    )
