"""Transactional unit of work helpers built on top of SQLAlchemy sessions."""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Callable, Iterator

from sqlalchemy import text
from sqlalchemy.exc import ResourceClosedError, SQLAlchemyError
from sqlalchemy.orm import Session

from identity_service.config import get_config
from identity_service.db.session import get_session
from identity_service.models.repositories.base import translate_error

logger = logging.getLogger(__name__)

_active_session: ContextVar[Session | None] = ContextVar(
    "transaction_session", default=None
)
_transaction_depth: ContextVar[int] = ContextVar(
    "transaction_depth", default=0
)


def _apply_statement_timeout(session: Session, timeout_seconds: int) -> None:
    bind = session.get_bind()
    if timeout_seconds <= 0 or bind.dialect.name != "postgresql":
        return
    session.execute(
        text("SET LOCAL statement_timeout = :timeout"),
        {"timeout": f"{timeout_seconds * 1000}ms"},
    )


class TransactionManager:
    """Coordinate transactional scopes with support for nesting."""

    def __init__(
        self,
        session_factory: Callable[[], Session] = get_session,
        *,
        timeout_seconds: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._timeout_seconds = timeout_seconds

    @property
    def timeout_seconds(self) -> int:
        if self._timeout_seconds is not None:
            return self._timeout_seconds
        return get_config().transaction_timeout

    @contextmanager
    def transaction(self, *, name: str = "transaction") -> Iterator[Session]:
        parent = _active_session.get()
        if parent is not None:
            with self._nested(parent, name=name) as session:
                yield session
            return

        session = self._session_factory()
        token = _active_session.set(session)
        depth_token = _transaction_depth.set(1)
        start = time.perf_counter()
        logger.debug("transaction.start name=%s depth=1", name)
        try:
            try:
                _apply_statement_timeout(session, self.timeout_seconds)
            except SQLAlchemyError as exc:
                raise translate_error(exc) from exc
            yield session
            try:
                session.commit()
            except SQLAlchemyError as exc:
                raise translate_error(exc) from exc
            logger.debug(
                "transaction.commit name=%s depth=1 duration_ms=%.2f",
                name,
                (time.perf_counter() - start) * 1000,
            )
        except Exception:
            logger.exception(
                "transaction.rollback name=%s depth=1 duration_ms=%.2f",
                name,
                (time.perf_counter() - start) * 1000,
            )
            session.rollback()
            raise
        finally:
            session.close()
            _active_session.reset(token)
            _transaction_depth.reset(depth_token)

    @contextmanager
    def _nested(self, parent: Session, *, name: str) -> Iterator[Session]:
        depth = _transaction_depth.get() + 1
        nested = parent.begin_nested()
        depth_token = _transaction_depth.set(depth)
        logger.debug(
            "transaction.start name=%s depth=%s nested=True", name, depth
        )
        try:
            yield parent
            nested.commit()
        except Exception:
            logger.debug(
                "transaction.rollback name=%s depth=%s nested=True",
                name,
                depth,
            )
            try:
                if nested.is_active:
                    nested.rollback()
            except ResourceClosedError:  # pragma: no cover
                pass
            raise
        finally:
            _transaction_depth.reset(depth_token)


transaction_manager = TransactionManager()


@contextmanager
def transactional_session(*, name: str = "transaction") -> Iterator[Session]:
    """Shortcut to open a transactional scope with instrumentation."""

    with transaction_manager.transaction(name=name) as session:
        yield session


def in_transaction() -> bool:
    return _active_session.get() is not None


__all__ = [
    "in_transaction",
    "transaction_manager",
    "transactional_session",
    "TransactionManager",
]
