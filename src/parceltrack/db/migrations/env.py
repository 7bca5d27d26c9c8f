"""Alembic migration environment for parceltrack.

- Registers every model on ``Base.metadata`` for autogenerate
- Reads the database URL from PARCELTRACK_DATABASE__URL or alembic.ini
- Supports offline (SQL script) and online migration modes
"""

import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

# Importing the package registers all tables on the metadata
from parceltrack.db.models import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

COMPARE_OPTIONS = {
    "compare_type": True,
    "compare_server_default": True,
}


def get_url() -> str:
    """Database URL for migrations.

    Priority:
    1. PARCELTRACK_DATABASE__URL environment variable
    2. sqlalchemy.url from alembic.ini
    """
    url = os.environ.get("PARCELTRACK_DATABASE__URL") or config.get_main_option(
        "sqlalchemy.url", ""
    )
    # Migrations run synchronously, still on the psycopg driver
    if url.startswith(("postgresql://", "postgres://")):
        url = "postgresql+psycopg://" + url.split("://", 1)[1]
    return url


def run_migrations_offline() -> None:
    """Emit the migration SQL without connecting to a database."""
    context.configure(
        url=get_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **COMPARE_OPTIONS,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations against a live database inside one transaction."""
    # NullPool closes the connection as soon as the migration finishes
    connectable = create_engine(get_url(), poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            **COMPARE_OPTIONS,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
