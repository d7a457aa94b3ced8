"""Model exports for convenience."""

from identity_service.db.session import Base
from identity_service.models.audit import AuditLog
from identity_service.models.enums import (
    AuditAction,
    AuditStatus,
    AuthProvider,
    UserRole,
)
from identity_service.models.user import User, UserSession

__all__ = [
    "Base",
    "AuditAction",
    "AuditLog",
    "AuditStatus",
    "AuthProvider",
    "User",
    "UserRole",
    "UserSession",
]
