"""Alembic environment for the tickets schema.

Learn: Three ways in, checked in this order:

1. A caller hands over an open sync connection through
   `config.attributes["connection"]` (e.g. from `conn.run_sync` inside the
   app); migrations run on it and nothing is created or disposed here.
2. `alembic upgrade head --sql` (offline) renders the DDL as text.
3. Otherwise an async engine is built from sqlalchemy.url. That is
   TICKETBOARD_DATABASE_URL unless the Config already carries a URL, which
   is how the migration tests point Alembic at SQLite.
"""

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import create_async_engine

from ticketboard.config import settings
from ticketboard.db.models import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)


def _database_url() -> str:
    return config.get_main_option("sqlalchemy.url") or settings.database_url


def _migrate(connection: Connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=Base.metadata,
        # SQLite can't ALTER most things in place
        render_as_batch=connection.dialect.name == "sqlite",
    )
    with context.begin_transaction():
        context.run_migrations()


async def _migrate_with_new_engine() -> None:
    engine = create_async_engine(_database_url(), poolclass=pool.NullPool)
    try:
        async with engine.connect() as conn:
            await conn.run_sync(_migrate)
    finally:
        await engine.dispose()


def main() -> None:
    supplied = config.attributes.get("connection")
    if supplied is not None:
        _migrate(supplied)
    elif context.is_offline_mode():
        context.configure(
            url=_database_url(),
            target_metadata=Base.metadata,
            literal_binds=True,
            dialect_opts={"paramstyle": "named"},
        )
        with context.begin_transaction():
            context.run_migrations()
    else:
        asyncio.run(_migrate_with_new_engine())


main()
