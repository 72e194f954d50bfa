"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/register  -- create account; returns profile + token pair (201)
  POST /api/v1/auth/login     -- email/password; returns profile + token pair
  POST /api/v1/auth/refresh   -- redeem a refresh token once; returns a new pair
  GET  /api/v1/auth/me        -- resolve the Bearer access token to a profile

Error mapping lives in api/main.py (one exception handler per AuthError
subclass), so these handlers only translate between API models and the
service. Every service call goes through run_with_timeout().

Security:
  Cache-Control: no-store on every response that carries tokens.
  Login returns the same "bad_credentials" error for unknown email and
  wrong password -- the service never tells them apart.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.dependencies import get_auth_service, get_bearer_token, run_with_timeout
from api.models import (
    LoginRequest,
    ProfileResponse,
    RefreshRequest,
    RegisterRequest,
    SessionResponse,
    TokenPairResponse,
)
from auth.service import AuthService

# Auth policy:
# - POST /api/v1/auth/register: public
# - POST /api/v1/auth/login:    public
# - POST /api/v1/auth/refresh:  public -- the refresh token is the credential
# - GET  /api/v1/auth/me:       requires Bearer access token
router = APIRouter()


def _no_store(response: Response) -> None:
    response.headers["Cache-Control"] = "no-store"


@router.post("/auth/register", response_model=SessionResponse, status_code=201)
async def register(
    request: Request,
    response: Response,
    body: RegisterRequest,
    service: AuthService = Depends(get_auth_service),
) -> SessionResponse:
    """Create an account and log it in. 409 if the email is taken."""
    session = await run_with_timeout(request, service.register(body.name, body.email, body.password))
    _no_store(response)
    return SessionResponse.from_session(session)


@router.post("/auth/login", response_model=SessionResponse)
async def login(
    request: Request,
    response: Response,
    body: LoginRequest,
    service: AuthService = Depends(get_auth_service),
) -> SessionResponse:
    session = await run_with_timeout(request, service.login(body.email, body.password))
    _no_store(response)
    return SessionResponse.from_session(session)


@router.post("/auth/refresh", response_model=TokenPairResponse)
async def refresh(
    request: Request,
    response: Response,
    body: RefreshRequest,
    service: AuthService = Depends(get_auth_service),
) -> TokenPairResponse:
    """Rotate tokens. After a successful call the submitted refresh token is dead."""
    pair = await run_with_timeout(request, service.refresh(body.refresh_token))
    _no_store(response)
    return TokenPairResponse.from_pair(pair)


@router.get("/auth/me", response_model=ProfileResponse)
async def me(
    request: Request,
    token: str = Depends(get_bearer_token),
    service: AuthService = Depends(get_auth_service),
) -> ProfileResponse:
    """Return identity information for the holder of the access token."""
    profile = await run_with_timeout(request, service.resolve_identity(token))
    return ProfileResponse.from_profile(profile)
