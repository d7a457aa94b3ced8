"""Alembic migration environment for the identity tables."""

from __future__ import annotations

from logging.config import fileConfig

from alembic import context
from sqlalchemy.engine import make_url

import identity_service.models  # noqa: F401  registers every table on Base
from identity_service.config import get_config
from identity_service.db.session import Base, get_engine

alembic_config = context.config
if alembic_config.config_file_name is not None:
    fileConfig(alembic_config.config_file_name)

DATABASE_URL = get_config().database_url
alembic_config.set_main_option("sqlalchemy.url", DATABASE_URL)

# SQLite cannot ALTER constraints in place; batch mode rebuilds the table.
SQLITE_BATCH = make_url(DATABASE_URL).get_backend_name() == "sqlite"

MIGRATION_OPTIONS = {
    "target_metadata": Base.metadata,
    "render_as_batch": SQLITE_BATCH,
    "compare_type": True,
}


def run_offline() -> None:
    """Emit the migration SQL without connecting."""

    context.configure(
        url=DATABASE_URL,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **MIGRATION_OPTIONS,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_online() -> None:
    with get_engine().connect() as connection:
        context.configure(connection=connection, **MIGRATION_OPTIONS)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_offline()
else:
    run_online()
