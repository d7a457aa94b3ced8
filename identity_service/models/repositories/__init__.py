"""Repositories for accounts, their sessions and the audit trail."""

from __future__ import annotations

from .audit import AuditLogRepository
from .base import RepositoryError, StorageTimeout, StorageUnavailable
from .sessions import UserSessionRepository
from .users import UserCoreRepository


class UserRepository(UserCoreRepository, UserSessionRepository):
    """Account and session persistence bound to a single ``Session``.

    Services work with accounts and their sessions inside one transaction,
    so both repositories share the session and the cache hooks.
    """


__all__ = [
    "AuditLogRepository",
    "RepositoryError",
    "StorageTimeout",
    "StorageUnavailable",
    "UserCoreRepository",
    "UserRepository",
    "UserSessionRepository",
]
