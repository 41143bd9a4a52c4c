"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/signup        -- create an account (default role USER)
  POST /api/v1/auth/signin        -- password login; returns access + refresh tokens
  POST /api/v1/auth/refreshtoken  -- rotate a refresh token; returns a new pair
  POST /api/v1/auth/signout       -- revoke every refresh token of the owner
  GET  /api/v1/auth/me            -- identity of the presented access token

Security:
  [H2] POST /signin is rate-limited per client IP (LOGIN_RATE_LIMIT).
  [C1] AuthService.login() provides timing equalization -- never inline a
       lookup + verify here.
  [M5] Cache-Control: no-store on every response that carries a token.

Core failures are raised as AuthError subclasses and rendered by the single
handler in api/main.py; these routes never build error responses themselves.
"""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_rate_limit
from api.models import (
    JwtResponse,
    LoginRequest,
    MeResponse,
    MessageResponse,
    SignupRequest,
    TokenRefreshRequest,
    TokenRefreshResponse,
)
from auth.dependencies import require_roles
from auth.models import Grant
from auth.service import AuthService

# Auth policy:
# - POST /api/v1/auth/signup:       public
# - POST /api/v1/auth/signin:       public, rate limited
# - POST /api/v1/auth/refreshtoken: public -- possession of the refresh token is the credential
# - POST /api/v1/auth/signout:      public -- same
# - GET  /api/v1/auth/me:           any authenticated caller
router = APIRouter()


def _no_store(model) -> JSONResponse:
    resp = JSONResponse(status_code=200, content=model.model_dump())
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/signup", response_model=MessageResponse, status_code=201)
def signup(request: Request, body: SignupRequest) -> MessageResponse:
    """Register a new user. 409 if username or email is taken, 400 on an unknown role."""
    service: AuthService = request.app.state.auth_service
    service.signup(body.username, body.email, body.password, body.roles)
    return MessageResponse(message="User registered successfully!")


@limiter.limit(login_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/signin", response_model=JwtResponse)
def signin(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password; return a token pair.

    Wrong username and wrong password produce the same 401 bad_credentials.
    """
    service: AuthService = request.app.state.auth_service
    pair = service.login(body.username, body.password, datetime.now(timezone.utc))
    return _no_store(JwtResponse.from_pair(pair))


@router.post("/auth/refreshtoken", response_model=TokenRefreshResponse)
def refresh_token(request: Request, body: TokenRefreshRequest) -> JSONResponse:
    """Exchange a refresh token for a new access token and its rotated successor.

    The presented refresh token is single-use. Presenting it a second time
    revokes every session of its owner.
    """
    service: AuthService = request.app.state.auth_service
    pair = service.refresh(body.refresh_token, datetime.now(timezone.utc))
    return _no_store(TokenRefreshResponse.from_pair(pair))


@router.post("/auth/signout", response_model=MessageResponse)
def signout(request: Request, body: TokenRefreshRequest) -> MessageResponse:
    """Revoke the refresh-token chain that body.refresh_token belongs to.

    Outstanding access tokens stay valid until they expire.
    """
    service: AuthService = request.app.state.auth_service
    service.logout(body.refresh_token)
    return MessageResponse(message="Log out successful!")


@router.get("/auth/me", response_model=MeResponse)
def me(grant: Grant = Depends(require_roles())) -> MeResponse:
    """Return the identity asserted by the presented access token."""
    return MeResponse.from_grant(grant)
