"""Alembic migrations for the evalflow schema.

The URL always comes from evalflow settings (DATABASE_URL), never from
alembic.ini, so migrations and the application hit the same database.
"""

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import create_async_engine

from evalflow.config import settings
from evalflow.database import Base, build_connect_args, split_ssl_params
from evalflow.models import AssignmentRow, EvaluationRow, User  # noqa: F401

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

database_url, ssl_mode = split_ssl_params(settings.database_url)


def _configure(**kwargs) -> None:
    # JSONB section documents change shape often; compare column types too.
    context.configure(target_metadata=target_metadata, compare_type=True, **kwargs)


def run_migrations_offline() -> None:
    """Emit SQL to stdout instead of connecting."""
    _configure(url=database_url, literal_binds=True, dialect_opts={"paramstyle": "named"})
    with context.begin_transaction():
        context.run_migrations()


def _migrate(connection: Connection) -> None:
    _configure(connection=connection)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    """Migrate over an asyncpg connection with the application's SSL settings."""
    engine = create_async_engine(
        database_url,
        poolclass=pool.NullPool,
        connect_args=build_connect_args(ssl_mode),
    )
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_migrate)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
