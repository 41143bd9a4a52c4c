"""
auth/passwords.py -- One-way password hashing with bcrypt.

Using bcrypt directly rather than passlib[bcrypt]: passlib's wrap-bug
detection trips bcrypt's explicit 72-byte error. bcrypt only reads the first
72 bytes of a secret and current releases refuse anything longer, so the
limit is MAX_PASSWORD_BYTES of UTF-8, not a character count. Request models
and the CLI enforce it with password_fits() before a password reaches hash().

bcrypt.checkpw compares digests in constant time, so verify() has no
early-exit timing leak. A digest that bcrypt cannot parse is a corrupt
record, not a wrong password -- it raises InvalidCredentialRecord. A
presented password over the limit cannot match any digest hash() produced,
so verify() burns the dummy comparison and returns False.
"""

from __future__ import annotations

import bcrypt

from auth.errors import InvalidCredentialRecord

MAX_PASSWORD_BYTES = 72

_BCRYPT_PREFIXES = (b"$2a$", b"$2b$", b"$2y$")


def password_fits(plaintext: str) -> bool:
    """True if plaintext is within bcrypt's 72-byte input limit."""
    return len(plaintext.encode("utf-8")) <= MAX_PASSWORD_BYTES


class PasswordVerifier:
    def __init__(self, rounds: int = 12) -> None:
        self._rounds = rounds
        # Timing equalization dummy hash [C1]. Computed once so the first
        # unknown-username login is not measurably slower than later ones.
        self._dummy_hash = self.hash("gatekeep_timing_dummy")

    def hash(self, plaintext: str) -> str:
        """Return a salted bcrypt digest. Two calls never return the same string.

        Raises ValueError if plaintext is longer than MAX_PASSWORD_BYTES.
        """
        if not password_fits(plaintext):
            raise ValueError(f"password must be at most {MAX_PASSWORD_BYTES} bytes of UTF-8")
        return bcrypt.hashpw(plaintext.encode("utf-8"), bcrypt.gensalt(rounds=self._rounds)).decode("utf-8")

    def verify(self, plaintext: str, digest: str) -> bool:
        """Return True iff plaintext matches digest.

        Raises InvalidCredentialRecord if digest is not a bcrypt hash.
        """
        try:
            digest_bytes = digest.encode("ascii")
        except (UnicodeEncodeError, AttributeError) as exc:
            raise InvalidCredentialRecord() from exc
        if not digest_bytes.startswith(_BCRYPT_PREFIXES):
            raise InvalidCredentialRecord()
        if not password_fits(plaintext):
            self.verify_dummy(plaintext)
            return False
        try:
            return bcrypt.checkpw(plaintext.encode("utf-8"), digest_bytes)
        except ValueError as exc:
            raise InvalidCredentialRecord() from exc

    def verify_dummy(self, plaintext: str) -> None:
        """Burn one bcrypt comparison. Called when the username does not exist."""
        secret = plaintext.encode("utf-8")[:MAX_PASSWORD_BYTES]
        bcrypt.checkpw(secret, self._dummy_hash.encode("ascii"))
