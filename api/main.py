"""
api/main.py -- FastAPI application entry point for Gatekeep.

Exposes the auth core over HTTP. The core itself (auth/) knows nothing about
FastAPI beyond the Depends() helpers in auth/dependencies.py.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan builds the credential store and the auth components once at
startup and disposes of the store on shutdown.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.content import router as content_router
from auth import build_auth
from auth.errors import (
    AuthError,
    Forbidden,
    InvalidCredentialRecord,
    InvalidCredentials,
    RefreshTokenError,
    SignupConflict,
    StoreUnavailable,
    TokenError,
    Unauthenticated,
    UnknownRole,
)
from auth.store import SqlCredentialStore
from core.config import get_settings

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("gatekeep.api")

_settings = get_settings()


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Wire the credential store and auth components into app.state.

    Everything is constructed exactly once here and passed explicitly to the
    components that need it; routes read them back from app.state.
    """
    logger.info("Gatekeep API starting up")
    store = SqlCredentialStore(_settings.database_url, timeout=_settings.store_timeout_seconds)
    components = build_auth(_settings, store)
    app.state.store = store
    app.state.auth_service = components.service
    app.state.guard = components.guard
    logger.info(
        "Auth initialized (access_ttl=%ds, refresh_ttl=%ds)",
        _settings.access_token_expire_seconds,
        _settings.refresh_token_expire_seconds,
    )

    yield

    app.state.store.close()
    logger.info("Gatekeep API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Gatekeep API",
    description="Token issuance, refresh-token rotation and role-based access control.",
    version=VERSION,
    lifespan=lifespan,
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(content_router, prefix="/api/v1", tags=["Content"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------

# Most specific first; the first isinstance() match wins.
_AUTH_ERROR_STATUS: tuple[tuple[type[AuthError], int], ...] = (
    (InvalidCredentials, 401),
    (Unauthenticated, 401),
    (TokenError, 401),
    (Forbidden, 403),
    (RefreshTokenError, 403),
    (SignupConflict, 409),
    (UnknownRole, 400),
    (StoreUnavailable, 503),
)


def _public_error(exc: AuthError) -> tuple[int, ErrorDetail]:
    """Map a core failure to (status, caller-visible detail).

    Token and refresh-token failures are collapsed to one generic code each,
    so callers learn "rejected" but not which check failed.
    """
    if isinstance(exc, TokenError):
        exc = Unauthenticated()
    elif isinstance(exc, RefreshTokenError):
        exc = RefreshTokenError()
    for error_type, status in _AUTH_ERROR_STATUS:
        if isinstance(exc, error_type):
            return status, ErrorDetail(code=exc.code, message=str(exc))
    return 500, ErrorDetail(code="internal_error", message="An unexpected error occurred.")


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render every auth-core failure through one status/code table."""
    if isinstance(exc, InvalidCredentialRecord):
        logger.error("Corrupt credential record encountered on %s %s", request.method, request.url.path)
    elif isinstance(exc, (RefreshTokenError, StoreUnavailable)):
        logger.warning("%s on %s %s", exc.code, request.method, request.url.path)
    status, detail = _public_error(exc)
    response = JSONResponse(status_code=status, content=ErrorResponse(error=detail).model_dump())
    if status == 401:
        response.headers["WWW-Authenticate"] = "Bearer"
    if exc.retryable:
        response.headers["Retry-After"] = "1"
    response.headers["Cache-Control"] = "no-store"
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation.

    Only field locations and messages are echoed back -- never the submitted
    values, which may include a password.
    """
    problems = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg', '')}" for err in exc.errors()
    )
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=problems,
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py so it is always reachable regardless of router
# registration state. No rate limit applied.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version and credential-store reachability."""
    db_ok = request.app.state.store.ping()
    return HealthResponse(
        status="healthy" if db_ok else "degraded",
        version=VERSION,
        components={"app": "ok", "database": "ok" if db_ok else "error"},
    )
