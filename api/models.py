"""
API request and response models for Gatekeep REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Request-shape validation (lengths, email format) lives here, not in the auth
core: the core trusts that its callers hand it well-formed values.
"""

from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from auth.models import Grant, TokenPair
from auth.passwords import MAX_PASSWORD_BYTES, password_fits

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Pragmatic shape check only; deliverability is not the API's concern.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SignupRequest(BaseModel):
    """Request body for POST /api/v1/auth/signup.

    roles is optional; omitted or empty means the default USER role. The
    singular field name "role" is accepted as well.
    """

    model_config = ConfigDict(populate_by_name=True)

    username: str = Field(min_length=3, max_length=20)
    email: str = Field(max_length=50, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=6, max_length=40)
    roles: list[str] = Field(
        default_factory=list,
        max_length=10,
        validation_alias=AliasChoices("roles", "role"),
        description="Role names (admin, mod, user). Defaults to user if not specified.",
    )

    @field_validator("password")
    @classmethod
    def password_within_bcrypt_limit(cls, value: str) -> str:
        if not password_fits(value):
            raise ValueError(f"must be at most {MAX_PASSWORD_BYTES} bytes of UTF-8")
        return value

    @field_validator("roles", mode="before")
    @classmethod
    def dedupe_roles(cls, values: list | str | None) -> list[str]:
        """Accept null or a single name, strip and deduplicate role names while preserving order."""
        if isinstance(values, str):
            values = [values]
        elif values is not None and not isinstance(values, (list, tuple)):
            raise ValueError("must be a list of role names")
        seen: set[str] = set()
        result: list[str] = []
        for v in values or []:
            name = str(v).strip()
            if name and name.lower() not in seen:
                seen.add(name.lower())
                result.append(name)
        return result


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/signin."""

    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class TokenRefreshRequest(BaseModel):
    """Request body for POST /api/v1/auth/refreshtoken and /signout."""

    refresh_token: str = Field(
        min_length=1,
        max_length=512,
        validation_alias=AliasChoices("refresh_token", "refreshToken"),
    )


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class JwtResponse(BaseModel):
    """Response for a successful signin."""

    model_config = ConfigDict(frozen=True)

    token: str
    type: str = "Bearer"
    refresh_token: str
    expires_in: int
    id: int
    username: str
    email: str
    roles: list[str]

    @classmethod
    def from_pair(cls, pair: TokenPair) -> "JwtResponse":
        return cls(
            token=pair.access.value,
            refresh_token=pair.refresh.value,
            expires_in=_seconds_between(pair.access.issued_at, pair.access.expires_at),
            id=pair.user.id,
            username=pair.user.username,
            email=pair.user.email,
            roles=sorted(r.value for r in pair.user.roles),
        )


class TokenRefreshResponse(BaseModel):
    """Response for a successful refresh-token rotation."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int

    @classmethod
    def from_pair(cls, pair: TokenPair) -> "TokenRefreshResponse":
        return cls(
            access_token=pair.access.value,
            refresh_token=pair.refresh.value,
            expires_in=_seconds_between(pair.access.issued_at, pair.access.expires_at),
        )


class MeResponse(BaseModel):
    """Identity carried by the presented access token."""

    model_config = ConfigDict(frozen=True)

    username: str
    roles: list[str]
    expires_at: str

    @classmethod
    def from_grant(cls, grant: Grant) -> "MeResponse":
        return cls(
            username=grant.subject,
            roles=sorted(r.value for r in grant.roles),
            expires_at=grant.claims.expires_at.isoformat(),
        )


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


def _seconds_between(start, end) -> int:
    return int((end - start).total_seconds())
