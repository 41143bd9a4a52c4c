"""
auth/tokens.py -- Signed access tokens (JWT via python-jose).

Security design decisions:
  JWT: python-jose with an HMAC algorithm (HS256 by default). Claims are
       sub (username), roles (sorted wire names), iat, exp and a random jti.
       iat/exp are NumericDate values and may be fractional, so a token is
       valid for exactly `ttl` seconds from the `now` it was issued at.

  Time: the caller supplies `now` to both issue() and validate(). jose's own
       wall-clock checks are switched off and re-done here against that
       `now`, in a fixed order: signature, then expiry, then not-before.

  Key: injected once at construction and never mutated. Rotating SECRET_KEY
       invalidates every outstanding access token -- a documented limitation.
       There is no revocation list; short TTLs bound the exposure.

The codec holds no mutable state and performs no I/O, so one instance is
shared by every request without locking.
"""

from __future__ import annotations

import secrets
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from numbers import Real

from jose import JWTError, jwt

from auth.errors import InvalidSignature, TokenExpired, TokenNotYetValid
from auth.models import AccessClaims, AccessToken, Role

# Signature is the only check jose performs; times are checked below.
_DECODE_OPTIONS = {
    "verify_signature": True,
    "verify_exp": False,
    "verify_iat": False,
    "verify_nbf": False,
    "verify_aud": False,
}


class AccessTokenCodec:
    def __init__(
        self,
        secret_key: str,
        ttl_seconds: int,
        clock_skew_seconds: int = 30,
        algorithm: str = "HS256",
    ) -> None:
        self._secret_key = secret_key
        self._ttl = timedelta(seconds=ttl_seconds)
        self._skew = timedelta(seconds=clock_skew_seconds)
        self._algorithm = algorithm

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def issue(self, subject: str, roles: Iterable[Role], now: datetime) -> AccessToken:
        """Encode a signed JWT for subject with issuedAt=now, expiresAt=now+ttl."""
        role_set = frozenset(roles)
        expires_at = now + self._ttl
        payload = {
            "sub": subject,
            "roles": sorted(role.value for role in role_set),
            "iat": now.timestamp(),
            "exp": expires_at.timestamp(),
            "jti": secrets.token_hex(16),
        }
        value = jwt.encode(payload, self._secret_key, algorithm=self._algorithm)
        return AccessToken(
            value=value,
            subject=subject,
            roles=role_set,
            issued_at=now,
            expires_at=expires_at,
        )

    def validate(self, token: str, now: datetime) -> AccessClaims:
        """Verify token and return its claims.

        Raises InvalidSignature on any integrity or structure problem,
        TokenExpired when now >= exp, TokenNotYetValid when iat is further in
        the future than the allowed clock skew.
        """
        if not isinstance(token, str) or not token:
            raise InvalidSignature()
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[self._algorithm], options=_DECODE_OPTIONS)
        except JWTError as exc:
            raise InvalidSignature() from exc

        claims = _parse_claims(payload)
        if now >= claims.expires_at:
            raise TokenExpired()
        if now + self._skew < claims.issued_at:
            raise TokenNotYetValid()
        return claims


def _parse_claims(payload: dict) -> AccessClaims:
    """Build AccessClaims from a verified payload; malformed claims are InvalidSignature."""
    subject = payload.get("sub")
    raw_roles = payload.get("roles")
    iat = payload.get("iat")
    exp = payload.get("exp")
    if not isinstance(subject, str) or not subject:
        raise InvalidSignature()
    if not isinstance(raw_roles, list):
        raise InvalidSignature()
    for value in (iat, exp):
        if isinstance(value, bool) or not isinstance(value, Real):
            raise InvalidSignature()
    try:
        roles = frozenset(Role(r) for r in raw_roles)
    except ValueError as exc:
        raise InvalidSignature() from exc
    return AccessClaims(
        subject=subject,
        roles=roles,
        issued_at=datetime.fromtimestamp(iat, tz=timezone.utc),
        expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
    )
