"""Alembic environment for the reconciliation tables.

The database is shared with the rest of the Holding Space product, which
keeps its own schema history; this service records its revisions in a
separate version table so the two never collide.
"""

from __future__ import annotations

from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

from migrations.env_helpers import get_database_url

VERSION_TABLE = "holdingspace_payments_alembic_version"

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# SQL-only revisions; nothing to autogenerate from.
target_metadata = None


def _configure(**kwargs) -> None:
    context.configure(
        target_metadata=target_metadata,
        version_table=VERSION_TABLE,
        transaction_per_migration=True,
        **kwargs,
    )


def run_migrations_offline() -> None:
    """Emit the migration SQL to stdout for review instead of applying it."""
    _configure(
        url=get_database_url(),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    engine = create_engine(get_database_url(), poolclass=pool.NullPool)

    with engine.connect() as connection:
        _configure(connection=connection)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
