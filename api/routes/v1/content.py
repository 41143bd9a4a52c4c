"""
api/routes/v1/content.py -- Role-gated demo content.

Routes:
  GET /api/v1/test/all    -- public
  GET /api/v1/test/user   -- USER, MODERATOR or ADMIN
  GET /api/v1/test/mod    -- MODERATOR
  GET /api/v1/test/admin  -- ADMIN

Each protected route states its role set explicitly through
require_roles(); 401 means no valid token, 403 means wrong role.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from auth.dependencies import require_roles
from auth.models import Grant, Role

router = APIRouter()


@router.get("/test/all", response_class=PlainTextResponse)
async def all_access() -> str:
    return "Public Content."


@router.get("/test/user", response_class=PlainTextResponse)
def user_access(grant: Grant = Depends(require_roles(Role.USER, Role.MODERATOR, Role.ADMIN))) -> str:
    return "User Content."


@router.get("/test/mod", response_class=PlainTextResponse)
def moderator_access(grant: Grant = Depends(require_roles(Role.MODERATOR))) -> str:
    return "Moderator Board."


@router.get("/test/admin", response_class=PlainTextResponse)
def admin_access(grant: Grant = Depends(require_roles(Role.ADMIN))) -> str:
    return "Admin Board."
