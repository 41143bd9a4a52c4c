"""
auth/guard.py -- Role-based authorization of protected operations.

The guard distinguishes two outcomes that HTTP renders as 401 and 403:
  Unauthenticated -- no valid credential (bad signature, expired, not yet
                     valid). Clients should re-authenticate or refresh.
  Forbidden       -- valid identity, insufficient role. Retrying with the
                     same identity will not help.
The specific token failure is chained as __cause__ for server-side logs but
never surfaces in the caller-visible error.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from auth.errors import Forbidden, TokenError, Unauthenticated
from auth.models import Grant, Role
from auth.tokens import AccessTokenCodec


class AuthorizationGuard:
    def __init__(self, codec: AccessTokenCodec) -> None:
        self._codec = codec

    def authorize(self, token: str | None, required_roles: Iterable[Role], now: datetime) -> Grant:
        """Return a Grant if token is valid and carries any of required_roles.

        An empty required_roles admits any authenticated caller.
        """
        if not token:
            raise Unauthenticated()
        try:
            claims = self._codec.validate(token, now)
        except TokenError as exc:
            raise Unauthenticated() from exc

        required = frozenset(required_roles)
        if required and not (claims.roles & required):
            raise Forbidden()
        return Grant(subject=claims.subject, roles=claims.roles, claims=claims)
