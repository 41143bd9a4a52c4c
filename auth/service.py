"""
auth/service.py -- Signup, login, refresh and logout orchestration.

AuthService owns no state of its own: it composes the credential store, the
password verifier, the access token codec and the refresh token manager,
all injected once at startup (see auth.build_auth).

Error policy:
  Unknown username and wrong password both raise InvalidCredentials, and both
  cost one bcrypt comparison, so neither the message nor the response time
  tells an attacker which usernames exist [C1].
  StoreUnavailable is never folded into an authentication failure -- callers
  need to tell "retry later" apart from "rejected".
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime

from auth.errors import DuplicateEmail, DuplicateUsername, InvalidCredentials, UnknownRefreshToken
from auth.models import Role, TokenPair, User
from auth.passwords import PasswordVerifier
from auth.refresh import RefreshTokenManager
from auth.store import CredentialStore
from auth.tokens import AccessTokenCodec

logger = logging.getLogger("gatekeep.auth")

DEFAULT_ROLES = frozenset({Role.USER})


class AuthService:
    def __init__(
        self,
        store: CredentialStore,
        passwords: PasswordVerifier,
        codec: AccessTokenCodec,
        refresh_tokens: RefreshTokenManager,
    ) -> None:
        self._store = store
        self._passwords = passwords
        self._codec = codec
        self._refresh_tokens = refresh_tokens

    def signup(self, username: str, email: str, password: str, requested_roles: Iterable[str] = ()) -> User:
        """Create a new account.

        Raises DuplicateUsername, DuplicateEmail or UnknownRole. An empty role
        request yields {USER}.
        """
        if self._store.find_user_by_username(username) is not None:
            raise DuplicateUsername()
        if self._store.find_user_by_email(email) is not None:
            raise DuplicateEmail()

        roles = self._store.resolve_roles(requested_roles) or DEFAULT_ROLES
        user = self._store.insert_user(
            User(
                username=username,
                email=email,
                hashed_password=self._passwords.hash(password),
                roles=roles,
            )
        )
        logger.info("User %r registered with roles %s", user.username, sorted(r.name for r in user.roles))
        return user

    def login(self, username: str, password: str, now: datetime) -> TokenPair:
        """Check credentials and issue an access/refresh token pair."""
        user = self._store.find_user_by_username(username)
        if user is None:
            # Equalize timing -- do NOT return early before running bcrypt [C1]
            self._passwords.verify_dummy(password)
            logger.info("Login rejected")
            raise InvalidCredentials()
        if not self._passwords.verify(password, user.hashed_password):
            logger.info("Login rejected")
            raise InvalidCredentials()
        return self._issue_pair(user, now)

    def refresh(self, refresh_value: str, now: datetime) -> TokenPair:
        """Rotate refresh_value and mint an access token with the user's current roles.

        The owner is loaded before the rotation commits. Once the successor is
        persisted nothing fallible runs, so a StoreUnavailable leaves the
        presented token unconsumed and the call can be retried.
        """
        user_id = self._refresh_tokens.owner_of(refresh_value)
        user = self._store.find_user_by_id(user_id)
        if user is None:
            self._refresh_tokens.revoke_all(user_id)
            raise UnknownRefreshToken()
        refresh_token = self._refresh_tokens.rotate(refresh_value, now)
        access = self._codec.issue(user.username, user.roles, now)
        return TokenPair(access=access, refresh=refresh_token, user=user)

    def logout(self, refresh_value: str) -> int:
        """Revoke the whole refresh chain of the token's owner. Returns tokens revoked."""
        user_id = self._refresh_tokens.owner_of(refresh_value)
        return self._refresh_tokens.revoke_all(user_id)

    def _issue_pair(self, user: User, now: datetime) -> TokenPair:
        access = self._codec.issue(user.username, user.roles, now)
        refresh = self._refresh_tokens.issue(user, now)
        return TokenPair(access=access, refresh=refresh, user=user)
