"""Migration environment for the SpoolSync SQLite database.

Only online (connected) migrations are supported; the engine is async.
"""

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.ext.asyncio import create_async_engine

from spoolsync.app.core.config import settings
from spoolsync.app.core.database import Base
from spoolsync.app.models import activity_log, settings as settings_model  # noqa: F401

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name, disable_existing_loggers=False)


def _configure_and_run(connection) -> None:
    # SQLite cannot ALTER most constraints in place
    context.configure(connection=connection, target_metadata=Base.metadata, render_as_batch=True)
    with context.begin_transaction():
        context.run_migrations()


async def migrate(url: str) -> None:
    engine = create_async_engine(url, poolclass=pool.NullPool)
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_configure_and_run)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    raise RuntimeError("Offline SQL generation is not supported; run migrations against the database")

# An explicit sqlalchemy.url wins over the app setting
asyncio.run(migrate(config.get_main_option("sqlalchemy.url") or settings.database_url))
