"""
Alembic environment for ExamHarvest.

The CLI builds the Alembic Config in code (see ``cli/commands/db.py``).
The URL comes from ``sqlalchemy.url``, falling back to DATABASE_URL. A
caller may also hand over an open connection via
``config.attributes["connection"]``.
"""

from __future__ import annotations

import os

from alembic import context
from sqlalchemy.engine import Connection

from examharvest.persistence.db import DEFAULT_DATABASE_URL, create_db_engine, normalize_url
from examharvest.persistence.models import Base

config = context.config
target_metadata = Base.metadata


def database_url() -> str:
    url = config.get_main_option("sqlalchemy.url") or os.environ.get("DATABASE_URL")
    return normalize_url(url or DEFAULT_DATABASE_URL)


def configure_and_run(**options) -> None:
    context.configure(
        target_metadata=target_metadata,
        compare_type=True,
        compare_server_default=True,
        **options,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_offline() -> None:
    """Emit SQL to the script output instead of executing it."""
    configure_and_run(
        url=database_url(),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )


def run_online() -> None:
    # Batch mode lets SQLite emulate ALTER TABLE
    connection: Connection | None = config.attributes.get("connection")
    if connection is not None:
        configure_and_run(connection=connection, render_as_batch=True)
        return

    engine = create_db_engine(database_url())
    try:
        with engine.connect() as conn:
            configure_and_run(connection=conn, render_as_batch=True)
    finally:
        engine.dispose()


if context.is_offline_mode():
    run_offline()
else:
    run_online()
