"""Caller-facing authentication failures."""

from __future__ import annotations

from typing import Any, Optional


class AuthError(Exception):
    """Base class for expected authentication outcomes.

    These are not system faults: routes translate them into JSON error
    envelopes using ``status_code`` and ``code``.
    """

    status_code = 400
    code = "auth_error"
    default_message = "authentication failed"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)


class InvalidCredentials(AuthError):
    status_code = 401
    code = "invalid_credentials"
    default_message = "invalid credentials"


class AccountLocked(AuthError):
    status_code = 423
    code = "account_locked"
    default_message = "account is temporarily locked"


class DuplicateEmail(AuthError):
    status_code = 409
    code = "duplicate_email"
    default_message = "user with this email already exists"


class InvalidOrExpiredToken(AuthError):
    code = "invalid_or_expired_token"
    default_message = "invalid or expired reset token"


class InvalidToken(AuthError):
    status_code = 401
    code = "invalid_token"
    default_message = "invalid token"


class OAuthError(AuthError):
    status_code = 401
    code = "oauth_error"
    default_message = "oauth error"


__all__ = [
    "AccountLocked",
    "AuthError",
    "DuplicateEmail",
    "InvalidCredentials",
    "InvalidOrExpiredToken",
    "InvalidToken",
    "OAuthError",
]
