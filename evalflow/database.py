"""Database engine, sessions and declarative base."""

import ssl
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from evalflow.config import settings


def split_ssl_params(url: str) -> tuple[str, str | None]:
    """Remove sslmode/ssl query parameters, which asyncpg rejects in the URL.

    Returns the cleaned URL and the removed mode, if any.
    """
    parsed = urlparse(url)
    query = parse_qs(parsed.query)
    found = query.pop("sslmode", []) + query.pop("ssl", [])
    mode = found[0] if found else None
    return urlunparse(parsed._replace(query=urlencode(query, doseq=True))), mode


def build_connect_args(mode: str | None) -> dict:
    """asyncpg connect_args for the configured SSL mode."""
    mode = settings.database_ssl or mode
    if not mode or mode in ("disable", "false"):
        return {}
    ctx = ssl.create_default_context()
    if mode not in ("verify-ca", "verify-full"):
        # require/prefer: encrypt without checking the server chain
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
    return {"ssl": ctx}


_db_url, _ssl_mode = split_ssl_params(settings.database_url)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base."""

    pass


engine = create_async_engine(
    _db_url,
    echo=settings.database_echo,
    pool_pre_ping=True,
    connect_args=build_connect_args(_ssl_mode),
)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


@asynccontextmanager
async def session_scope() -> AsyncGenerator[AsyncSession, None]:
    """One transaction: commit on success, roll back on any error."""
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for database sessions."""
    async with session_scope() as session:
        yield session
