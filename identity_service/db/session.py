"""Database engine lifecycle for the identity store."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL, Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, close_all_sessions, sessionmaker
from sqlalchemy.pool import StaticPool

from identity_service.config import Config, get_config

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative base shared by users, sessions and audit logs."""


class _Database:
    engine: Engine | None = None
    sessions: sessionmaker[Session] | None = None


_state = _Database()


def _sqlite_options(url: URL, config: Config) -> tuple[URL, dict[str, Any]]:
    options: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
    if url.database in (None, "", ":memory:"):
        # Every connection must see the same in-memory database.
        options["poolclass"] = StaticPool
    return url, options


def _postgres_options(url: URL, config: Config) -> tuple[URL, dict[str, Any]]:
    options: dict[str, Any] = {
        "pool_size": config.pool_size,
        "max_overflow": config.max_overflow,
        "pool_timeout": config.pool_timeout,
        "pool_recycle": config.pool_recycle,
    }
    connect_args = dict(url.query)
    if config.database_ssl_mode:
        connect_args["sslmode"] = config.database_ssl_mode
    if connect_args:
        options["connect_args"] = connect_args
        url = url.set(query={})
    return url, options


_BACKEND_OPTIONS = {
    "sqlite": _sqlite_options,
    "postgresql": _postgres_options,
}


def _build_engine(config: Config) -> Engine:
    url = make_url(config.database_url)
    backend = url.get_backend_name()
    builder = _BACKEND_OPTIONS.get(backend)
    target, options = builder(url, config) if builder else (url, {})
    redacted = url.render_as_string(hide_password=True)
    try:
        engine = create_engine(
            target,
            echo=config.sqlalchemy_echo,
            pool_pre_ping=True,
            **options,
        )
        if backend == "postgresql":
            # Bad credentials fail at startup instead of on the first login.
            with engine.connect() as connection:
                connection.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("db.engine.failed url=%s", redacted)
        raise
    logger.info("db.engine.ready backend=%s url=%s", backend, redacted)
    return engine


def get_engine() -> Engine:
    """Return the process-wide engine, creating it on first use."""

    if _state.engine is None:
        _state.engine = _build_engine(get_config())
    return _state.engine


def get_session_factory() -> sessionmaker[Session]:
    if _state.sessions is None:
        _state.sessions = sessionmaker(
            bind=get_engine(), autoflush=False, expire_on_commit=False
        )
    return _state.sessions


def get_session() -> Session:
    """Open a new session; callers own commit and close."""

    return get_session_factory()()


def reset_engine() -> None:
    """Drop the engine and configuration so the next call rebuilds both."""

    if _state.sessions is not None:
        close_all_sessions()
    if _state.engine is not None:
        _state.engine.dispose()
    _state.engine = None
    _state.sessions = None
    get_config.cache_clear()
