"""Shared plumbing for repositories: error translation and cache hooks."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable, Optional, TypeVar

from sqlalchemy.exc import (
    IntegrityError,
    OperationalError,
    SQLAlchemyError,
    TimeoutError as PoolTimeoutError,
)
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

T = TypeVar("T")

if TYPE_CHECKING:  # pragma: no cover - typing only
    from identity_service.services.cache import CacheHooks

_TIMEOUT_MARKERS = ("timeout", "timed out", "statement_timeout", "canceling")


@dataclass(slots=True)
class RepositoryError(Exception):
    """A storage failure, already rolled back, with the HTTP status to report."""

    message: str
    status_code: int = 500
    details: dict[str, Any] | None = None

    def __str__(self) -> str:  # pragma: no cover - uses dataclass repr
        return self.message


class StorageTimeout(RepositoryError):
    """The store did not answer within the configured timeout."""


class StorageUnavailable(RepositoryError):
    """The store could not be reached."""


def _looks_like_timeout(exc: OperationalError) -> bool:
    reason = str(exc.orig or exc).lower()
    return any(marker in reason for marker in _TIMEOUT_MARKERS)


def translate_error(exc: SQLAlchemyError) -> RepositoryError:
    """Map a SQLAlchemy failure onto the repository error taxonomy."""

    if isinstance(exc, IntegrityError):
        return RepositoryError("database integrity error", status_code=409)
    if isinstance(exc, PoolTimeoutError) or (
        isinstance(exc, OperationalError) and _looks_like_timeout(exc)
    ):
        return StorageTimeout("database operation timed out", status_code=503)
    if isinstance(exc, OperationalError):
        return StorageUnavailable("database unavailable", status_code=503)
    return RepositoryError("database operation failed")


class SQLAlchemyRepository:
    """Repository bound to a session, with optional cache invalidation."""

    def __init__(
        self,
        session: Session,
        *,
        cache_hooks: "CacheHooks | None" = None,
    ) -> None:
        self.session = session
        self._cache_hooks = cache_hooks

    def _fail(self, exc: SQLAlchemyError) -> RepositoryError:
        """Roll back after ``exc`` and return the error to raise."""

        try:
            self.session.rollback()
        except Exception:  # pragma: no cover - log only
            logger.exception("repository.rollback_failed")
        return translate_error(exc)

    def _flush(self) -> None:
        try:
            self.session.flush()
        except SQLAlchemyError as exc:
            raise self._fail(exc) from exc

    def _invalidate_caches(
        self, user_id: Optional[str] = None, *, listings: bool = True
    ) -> None:
        """Drop cached entries made stale by a write to ``user_id``.

        Cache failures are logged; the write has already succeeded.
        """

        hooks = self._cache_hooks
        if hooks is None:
            return
        try:
            if user_id is not None:
                hooks.invalidate_profile(user_id)
            if listings:
                hooks.invalidate_collections()
        except Exception:  # pragma: no cover - log only
            logger.exception("repository.cache_invalidation_failed user_id=%s", user_id)


def repository_method(func: Callable[..., T]) -> Callable[..., T]:
    """Roll back and raise ``RepositoryError`` when ``func`` hits the database badly."""

    @wraps(func)
    def wrapper(self: SQLAlchemyRepository, *args: Any, **kwargs: Any) -> T:
        try:
            return func(self, *args, **kwargs)
        except SQLAlchemyError as exc:
            raise self._fail(exc) from exc

    return wrapper


__all__ = [
    "RepositoryError",
    "SQLAlchemyRepository",
    "StorageTimeout",
    "StorageUnavailable",
    "repository_method",
    "translate_error",
]
