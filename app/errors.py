"""Typed authentication failures.

The token codec, the refresh-token manager and the login service raise
these; the HTTP boundary (``app.main``) is the only place that turns a
kind into a status code.
"""
from enum import Enum
from typing import Optional


class TokenErrorKind(str, Enum):
    MALFORMED = "malformed"
    SIGNATURE_INVALID = "signature_invalid"
    EXPIRED = "expired"
    NOT_FOUND = "not_found"
    REVOKED = "revoked"
    ACCOUNT_INACTIVE = "account_inactive"
    STORAGE_UNAVAILABLE = "storage_unavailable"


class AuthErrorKind(str, Enum):
    AUTHENTICATION_REQUIRED = "authentication_required"
    INVALID_CREDENTIALS = "invalid_credentials"
    ACCOUNT_LOCKED = "account_locked"
    ACCOUNT_INACTIVE = "account_inactive"
    EMAIL_NOT_VERIFIED = "email_not_verified"


_DEFAULT_MESSAGES = {
    TokenErrorKind.MALFORMED: "Token is malformed",
    TokenErrorKind.SIGNATURE_INVALID: "Token is invalid",
    TokenErrorKind.EXPIRED: "Token has expired",
    TokenErrorKind.NOT_FOUND: "Invalid refresh token",
    TokenErrorKind.REVOKED: "Refresh token has been revoked",
    TokenErrorKind.ACCOUNT_INACTIVE: "User account is inactive",
    TokenErrorKind.STORAGE_UNAVAILABLE: "Token storage is unavailable",
    AuthErrorKind.AUTHENTICATION_REQUIRED: "Authentication required. Provide Authorization: Bearer <token>.",
    AuthErrorKind.INVALID_CREDENTIALS: "Invalid credentials",
    AuthErrorKind.ACCOUNT_LOCKED: "Account is locked due to too many failed login attempts",
    AuthErrorKind.ACCOUNT_INACTIVE: "User account is inactive",
    AuthErrorKind.EMAIL_NOT_VERIFIED: "Please verify your email address before logging in",
}


class AuthError(Exception):
    """Base class for every failure the auth core reports"""

    def __init__(self, kind, message: Optional[str] = None):
        self.kind = kind
        self.message = message or _DEFAULT_MESSAGES[kind]
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value!r}, message={self.message!r})"


class TokenError(AuthError):
    """Access- or refresh-token failure"""

    kind: TokenErrorKind


class StorageUnavailable(TokenError):
    """The refresh-token table could not be read or written"""

    def __init__(self, message: Optional[str] = None):
        super().__init__(TokenErrorKind.STORAGE_UNAVAILABLE, message)


class LoginError(AuthError):
    """Credential check failed"""

    kind: AuthErrorKind
