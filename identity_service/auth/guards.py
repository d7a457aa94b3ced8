"""Route decorators enforcing authentication, roles and rate limits."""

from __future__ import annotations

from datetime import datetime
from functools import wraps
from typing import Optional

from flask import current_app, g, make_response, request

from identity_service.auth.context import RequestContext, extract_bearer_token
from identity_service.models.enums import AuditAction, AuditStatus, UserRole
from identity_service.routes.helpers import error_response
from identity_service.services.rate_limit import (
    RateLimitDecision,
    RateLimitOverride,
)


def current_user():
    """Return the user resolved by :func:`require_auth`, if any."""

    return g.get("current_user")


def require_auth(fn):
    """Decorator to require a valid bearer session for a route.

    Args:
        fn: The view to wrap.

    Returns:
        function: The wrapped view; it answers 401 without calling ``fn``
        when the token is missing, invalid, expired or revoked.
    """
    @wraps(fn)
    def wrapper(*args, **kwargs):
        token = extract_bearer_token(request.headers.get("Authorization"))
        if not token:
            return error_response(
                401, "missing token", error_type="invalid_token"
            )
        user = current_app.extensions["auth_service"].validate_token(token)
        if user is None:
            return error_response(
                401, "invalid or expired token", error_type="invalid_token"
            )
        g.current_user = user
        return fn(*args, **kwargs)

    return wrapper


def require_role(*roles: UserRole | str):
    """Restrict a route (already behind ``require_auth``) to ``roles``."""

    allowed = {UserRole(role).value for role in roles}

    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            user = current_user()
            if user is None:
                return error_response(
                    401, "authentication required", error_type="invalid_token"
                )
            if user.role not in allowed:
                return error_response(
                    403,
                    "insufficient permissions",
                    {"required_roles": sorted(allowed)},
                )
            return fn(*args, **kwargs)

        return wrapper

    return decorator


def rate_limit(
    action: AuditAction,
    resource: Optional[str] = None,
    *,
    max_requests: Optional[int] = None,
    window_ms: Optional[int] = None,
    record: bool = True,
):
    """Consult the rate limiter before running the view.

    Denied callers get HTTP 429 with ``remaining``, ``reset_time`` and
    ``limit`` in the error details and the view is not run. Allowed calls
    are written to the audit trail afterwards (unless the view audits the
    action itself, ``record=False``) so they count toward the next check.
    Anonymous callers pass through untouched.
    """
    override = None
    if max_requests is not None or window_ms is not None:
        override = RateLimitOverride(
            max_requests=max_requests, window_ms=window_ms
        )

    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            user = current_user()
            if user is None:
                return fn(*args, **kwargs)

            limiter = current_app.extensions["rate_limiter"]
            decision = limiter.check_rate_limit(
                user.id, action, resource, override
            )
            if not decision.is_allowed:
                response, status = error_response(
                    429,
                    "rate limit exceeded",
                    {
                        "remaining": 0,
                        "reset_time": decision.reset_time.isoformat(),
                        "limit": decision.limit,
                    },
                    error_type="rate_limit_exceeded",
                )
                _apply_headers(response, decision, decision.remaining)
                return response, status

            response = make_response(fn(*args, **kwargs))
            _apply_headers(
                response, decision, max(0, decision.remaining - 1)
            )
            if record:
                current_app.extensions["audit_service"].record(
                    action,
                    status=AuditStatus.SUCCESS
                    if response.status_code < 400
                    else AuditStatus.FAILURE,
                    user=user,
                    resource=resource,
                    context=RequestContext.from_request(),
                    details={"endpoint": request.endpoint},
                )
            return response

        return wrapper

    return decorator


def _apply_headers(response, decision: RateLimitDecision, remaining: int):
    response.headers["X-RateLimit-Limit"] = str(decision.limit)
    response.headers["X-RateLimit-Remaining"] = str(remaining)
    response.headers["X-RateLimit-Reset"] = str(
        _epoch_seconds(decision.reset_time)
    )


def _epoch_seconds(value: datetime) -> int:
    return int(value.timestamp())


__all__ = ["current_user", "rate_limit", "require_auth", "require_role"]
