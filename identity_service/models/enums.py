"""Closed value sets stored as strings in the database."""

from __future__ import annotations

from enum import Enum


class UserRole(str, Enum):
    ADMIN = "admin"
    MODERATOR = "moderator"
    USER = "user"


class AuthProvider(str, Enum):
    EMAIL = "email"
    GOOGLE = "google"
    FACEBOOK = "facebook"


class AuditStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    PENDING = "pending"
    CANCELLED = "cancelled"


class AuditAction(str, Enum):
    """Every event kind the audit trail and rate limiter understand."""

    # authentication
    LOGIN = "login"
    LOGOUT = "logout"
    REGISTER = "register"
    PASSWORD_RESET = "password_reset"
    PASSWORD_CHANGE = "password_change"

    # api operations
    GRAPHQL_QUERY = "graphql_query"
    GRAPHQL_MUTATION = "graphql_mutation"
    GRAPHQL_SUBSCRIPTION = "graphql_subscription"

    # user management
    USER_CREATE = "user_create"
    USER_UPDATE = "user_update"
    USER_DELETE = "user_delete"
    USER_ACTIVATE = "user_activate"
    USER_DEACTIVATE = "user_deactivate"
    USER_READ = "user_read"

    # workers
    AI_GENERATE = "ai_generate"
    AI_PROCESS = "ai_process"
    WORKER_JOB = "worker_job"

    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    RATE_LIMIT_RESET = "rate_limit_reset"

    SYSTEM_ERROR = "system_error"
    SYSTEM_WARNING = "system_warning"
    SYSTEM_INFO = "system_info"

    CUSTOM = "custom"


AUTH_ACTIONS = frozenset(
    {
        AuditAction.LOGIN,
        AuditAction.LOGOUT,
        AuditAction.REGISTER,
        AuditAction.PASSWORD_RESET,
        AuditAction.PASSWORD_CHANGE,
    }
)


__all__ = [
    "AUTH_ACTIONS",
    "AuditAction",
    "AuditStatus",
    "AuthProvider",
    "UserRole",
]
