"""Shared route utilities."""

from __future__ import annotations

from typing import Any, Optional

from flask import current_app, jsonify

from identity_service.auth.errors import AuthError
from identity_service.models.repositories import RepositoryError


def error_response(
    status_code: int,
    message: str,
    details: dict[str, Any] | None = None,
    *,
    error_type: Optional[str] = None,
):
    """Return a standardized JSON error response."""

    error: dict[str, Any] = {
        "code": status_code,
        "message": message,
        "details": details or {},
    }
    if error_type:
        error["type"] = error_type
    return jsonify({"error": error}), status_code


def repository_error_response(error: RepositoryError):
    """Log a repository error and convert it into an API response."""

    current_app.logger.exception("repository error: %s", error)
    if error.status_code == 503:
        return error_response(503, "service temporarily unavailable")
    if error.status_code >= 500:
        return error_response(error.status_code, "internal server error")
    return error_response(error.status_code, error.message, error.details)


def auth_error_response(error: AuthError):
    """Convert an expected authentication outcome into an API response."""

    return error_response(
        error.status_code,
        error.message,
        error.details,
        error_type=error.code,
    )


__all__ = [
    "auth_error_response",
    "error_response",
    "repository_error_response",
]
