"""
auth/errors.py -- Exception taxonomy for the auth core.

Every failure the core can report is a subclass of AuthError with a stable
`code` string. The HTTP layer maps codes to status codes in one place
(api/main.py); the core never imports fastapi.

Messages are deliberately generic. No exception here ever carries a
plaintext password, a stored digest, or a raw token value -- callers may
log str(exc) freely.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for every auth-core failure."""

    code: str = "auth_error"
    message: str = "Authentication error."
    retryable: bool = False

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)


# ---------------------------------------------------------------------------
# Credential / signup failures
# ---------------------------------------------------------------------------


class InvalidCredentials(AuthError):
    """Bad username or bad password -- the two causes are indistinguishable."""

    code = "bad_credentials"
    message = "Invalid username or password."


class SignupConflict(AuthError):
    code = "conflict"
    message = "Account already exists."


class DuplicateUsername(SignupConflict):
    code = "username_taken"
    message = "Username is already taken."


class DuplicateEmail(SignupConflict):
    code = "email_taken"
    message = "Email is already in use."


class UnknownRole(AuthError):
    code = "unknown_role"
    message = "Role is not found."


class InvalidCredentialRecord(AuthError):
    """A stored password hash is corrupt. Fatal to the operation, not retryable."""

    code = "invalid_credential_record"
    message = "Stored credential record is invalid."


# ---------------------------------------------------------------------------
# Access token failures (collapsed to Unauthenticated by the guard)
# ---------------------------------------------------------------------------


class TokenError(AuthError):
    code = "invalid_token"
    message = "Access token is invalid."


class InvalidSignature(TokenError):
    code = "invalid_signature"
    message = "Access token signature is invalid."


class TokenExpired(TokenError):
    code = "token_expired"
    message = "Access token has expired."


class TokenNotYetValid(TokenError):
    code = "token_not_yet_valid"
    message = "Access token is not yet valid."


# ---------------------------------------------------------------------------
# Refresh token failures
# ---------------------------------------------------------------------------


class RefreshTokenError(AuthError):
    code = "refresh_token_rejected"
    message = "Refresh token was rejected."


class UnknownRefreshToken(RefreshTokenError):
    code = "refresh_token_unknown"
    message = "Refresh token is not recognized."


class RefreshTokenReuseDetected(RefreshTokenError):
    code = "refresh_token_reused"
    message = "Refresh token was already used. All sessions have been revoked."


class RefreshTokenExpired(RefreshTokenError):
    code = "refresh_token_expired"
    message = "Refresh token has expired. Please sign in again."


# ---------------------------------------------------------------------------
# Guard outcomes
# ---------------------------------------------------------------------------


class Unauthenticated(AuthError):
    code = "unauthorized"
    message = "Authentication required."


class Forbidden(AuthError):
    code = "forbidden"
    message = "Insufficient role for this operation."


# ---------------------------------------------------------------------------
# Store failures
# ---------------------------------------------------------------------------


class StoreUnavailable(AuthError):
    """Credential store timed out or failed. Always safe for the caller to retry."""

    code = "store_unavailable"
    message = "Credential store is unavailable."
    retryable = True
