"""
auth/refresh.py -- Opaque refresh tokens with single-use rotation.

Security design decisions:
  Value: secrets.token_urlsafe(32) gives 256 bits of entropy. The raw value
       is returned to the client once and never persisted.

  Storage: HMAC-SHA256(SECRET_KEY, raw_value) is the row key. Deterministic,
       so lookup is O(1) via the UNIQUE index; keyed, so a leaked table cannot
       be replayed without also knowing SECRET_KEY. After lookup the stored
       hash is compared to the presented hash with hmac.compare_digest.

  Rotation: every successful refresh revokes the presented token and issues
       its successor in one store transaction. Presenting a revoked token is
       treated as theft: every active token for that user is revoked
       (fail-secure), so a leaked token is good for at most one unnoticed
       rotation window.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta

from auth.errors import RefreshTokenExpired, RefreshTokenReuseDetected, UnknownRefreshToken
from auth.models import RefreshToken, RefreshTokenRecord, User
from auth.store import CredentialStore

logger = logging.getLogger("gatekeep.auth.refresh")


class RefreshTokenManager:
    def __init__(self, store: CredentialStore, secret_key: str, ttl_seconds: int) -> None:
        self._store = store
        self._secret_key = secret_key.encode("utf-8")
        self._ttl = timedelta(seconds=ttl_seconds)

    def hash_value(self, raw_value: str) -> str:
        """Return HMAC-SHA256(SECRET_KEY, raw_value) as a hex string."""
        return hmac.new(self._secret_key, raw_value.encode("utf-8"), hashlib.sha256).hexdigest()

    def issue(self, user: User, now: datetime) -> RefreshToken:
        """Generate, persist and return a fresh refresh token for user.

        StoreUnavailable from the insert propagates; the token is never
        returned unless its record was written.
        """
        token, record = self._new_token(user.id, now)
        self._store.insert_refresh_token(record)
        return token

    def rotate(self, old_value: str, now: datetime) -> RefreshToken:
        """Consume old_value and return its single-use successor.

        Raises UnknownRefreshToken, RefreshTokenReuseDetected or
        RefreshTokenExpired.
        """
        record = self._lookup(old_value)
        if record.revoked:
            self._on_reuse(record.user_id)
        if record.is_expired(now):
            self._store.revoke_refresh_token(record.token_hash)
            raise RefreshTokenExpired()

        token, new_record = self._new_token(record.user_id, now)
        if not self._store.atomic_rotate(record.token_hash, new_record):
            # Another caller rotated this token between our read and write.
            self._on_reuse(record.user_id)
        return token

    def revoke_all(self, user_id: int) -> int:
        """Revoke every active refresh token held by user_id."""
        count = self._store.revoke_all_for_user(user_id)
        logger.info("Revoked %d refresh token(s) for user_id=%d", count, user_id)
        return count

    def owner_of(self, value: str) -> int:
        """Return the user id that owns value, revoked or not."""
        return self._lookup(value).user_id

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _lookup(self, value: str) -> RefreshTokenRecord:
        if not value:
            raise UnknownRefreshToken()
        presented_hash = self.hash_value(value)
        record = self._store.find_refresh_token(presented_hash)
        if record is None or not hmac.compare_digest(record.token_hash, presented_hash):
            raise UnknownRefreshToken()
        return record

    def _new_token(self, user_id: int, now: datetime) -> tuple[RefreshToken, RefreshTokenRecord]:
        raw_value = secrets.token_urlsafe(32)
        expires_at = now + self._ttl
        record = RefreshTokenRecord(
            token_hash=self.hash_value(raw_value),
            user_id=user_id,
            expires_at=expires_at,
            created_at=now,
        )
        return RefreshToken(value=raw_value, user_id=user_id, expires_at=expires_at), record

    def _on_reuse(self, user_id: int) -> None:
        logger.warning("Refresh token reuse detected for user_id=%d; revoking chain", user_id)
        self.revoke_all(user_id)
        raise RefreshTokenReuseDetected()
