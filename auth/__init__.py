"""auth/ -- Authentication and authorization core for Gatekeep.

Layer rule: auth/ imports only stdlib + third-party libraries, plus
core.config for the Settings type. It does NOT import from api/.
api/ imports from auth/, not the other way around.

build_auth() is the single place where the components are wired together.
It is called once at process startup; there are no module-level singletons.
"""

from __future__ import annotations

from dataclasses import dataclass

from auth.guard import AuthorizationGuard
from auth.passwords import PasswordVerifier
from auth.refresh import RefreshTokenManager
from auth.service import AuthService
from auth.store import CredentialStore
from auth.tokens import AccessTokenCodec
from core.config import Settings


@dataclass(frozen=True)
class AuthComponents:
    service: AuthService
    guard: AuthorizationGuard
    codec: AccessTokenCodec
    refresh_tokens: RefreshTokenManager
    passwords: PasswordVerifier


def build_auth(settings: Settings, store: CredentialStore) -> AuthComponents:
    """Construct every auth component from settings around one credential store."""
    passwords = PasswordVerifier(rounds=settings.bcrypt_rounds)
    codec = AccessTokenCodec(
        secret_key=settings.secret_key,
        ttl_seconds=settings.access_token_expire_seconds,
        clock_skew_seconds=settings.clock_skew_seconds,
        algorithm=settings.jwt_algorithm,
    )
    refresh_tokens = RefreshTokenManager(
        store,
        secret_key=settings.secret_key,
        ttl_seconds=settings.refresh_token_expire_seconds,
    )
    service = AuthService(store, passwords, codec, refresh_tokens)
    return AuthComponents(
        service=service,
        guard=AuthorizationGuard(codec),
        codec=codec,
        refresh_tokens=refresh_tokens,
        passwords=passwords,
    )
