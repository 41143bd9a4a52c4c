"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic beyond role-name
parsing). Stores and services do the work.

Every value here is fully materialized: a User carries its role set, not a
handle that fetches roles on access.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    """Closed role enumeration. Values are the wire names used in JWT claims."""

    USER = "ROLE_USER"
    MODERATOR = "ROLE_MODERATOR"
    ADMIN = "ROLE_ADMIN"

    @classmethod
    def from_name(cls, name: str) -> Role | None:
        """Resolve a requested role name, case-insensitively.

        Accepts the member name ("admin"), the wire value ("ROLE_ADMIN"),
        and the short alias "mod". Returns None for anything else.
        """
        key = name.strip().upper()
        if key == "MOD":
            return cls.MODERATOR
        for role in cls:
            if key in (role.name, role.value):
                return role
        return None


@dataclass(frozen=True)
class User:
    """An identity held by the credential store.

    id is None before the record is written. hashed_password is a bcrypt
    digest; the plaintext is never held on this object.
    """

    username: str
    email: str
    hashed_password: str
    roles: frozenset[Role] = frozenset({Role.USER})
    id: int | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class AccessToken:
    """A signed, stateless bearer credential. Never persisted."""

    value: str
    subject: str
    roles: frozenset[Role]
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class AccessClaims:
    """What a successfully validated access token asserts."""

    subject: str
    roles: frozenset[Role]
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class RefreshToken:
    """The opaque refresh credential as handed to the client.

    value is the raw secret; only its HMAC ever reaches the store.
    """

    value: str
    user_id: int
    expires_at: datetime


@dataclass
class RefreshTokenRecord:
    """A persisted refresh-token row.

    replaced_by holds the hash of the successor once this token has been
    rotated, so a chain can be reconstructed when investigating reuse.
    """

    token_hash: str
    user_id: int
    expires_at: datetime
    revoked: bool = False
    created_at: datetime | None = None
    replaced_by: str | None = None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True)
class TokenPair:
    """Result of login and refresh. user is the account the pair was issued to."""

    access: AccessToken
    refresh: RefreshToken
    user: User


@dataclass(frozen=True)
class Grant:
    """Resolved identity handed to a protected operation."""

    subject: str
    roles: frozenset[Role]
    claims: AccessClaims = field(repr=False)
