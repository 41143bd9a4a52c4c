"""
auth/dependencies.py -- FastAPI Depends() helpers for authorization.

bearer_token() pulls the access token from the Authorization header.
require_roles(*roles) builds a dependency that runs the AuthorizationGuard
and hands the resulting Grant to the route.

Guard failures are raised as the core's own Unauthenticated / Forbidden
exceptions; api/main.py maps them to 401 / 403 in one exception handler.

Layer rule: may import fastapi (this module is part of the FastAPI dependency
injection system) but not api/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import Request

from auth.guard import AuthorizationGuard
from auth.models import Grant, Role


def bearer_token(request: Request) -> str | None:
    """Return the token from 'Authorization: Bearer <token>', or None."""
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def require_roles(*roles: Role):
    """Return a dependency that requires any one of roles (none = any authenticated caller).

    Use as a FastAPI dependency:
        @router.get("/admin")
        async def route(grant: Grant = Depends(require_roles(Role.ADMIN))): ...
    """
    required = frozenset(roles)

    def dependency(request: Request) -> Grant:
        guard: AuthorizationGuard = request.app.state.guard
        return guard.authorize(bearer_token(request), required, datetime.now(timezone.utc))

    return dependency
