"""Async SQLAlchemy engine, session factory and a liveness probe.

Uses psycopg3 (``postgresql+psycopg://``) for both the async service and
the sync Alembic migrations.
"""

from __future__ import annotations

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine


def create_engine(database_url: str, *, pool_size: int = 5, max_overflow: int = 10, **kwargs: object) -> AsyncEngine:
    """Create the async engine.

    Connections are pre-pinged on checkout and recycled hourly so a
    PostgreSQL restart does not leave dead connections in the pool.
    Extra *kwargs* go straight to ``create_async_engine``.
    """
    options: dict[str, object] = {
        "echo": False,
        "pool_size": pool_size,
        "max_overflow": max_overflow,
        "pool_pre_ping": True,
        "pool_recycle": 3600,
    }
    options.update(kwargs)
    return create_async_engine(database_url, **options)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory with ``expire_on_commit=False``.

    Workload rows are read after commit (status transitions, responses), and
    expired attributes would trigger implicit IO, which async sessions forbid.
    """
    return async_sessionmaker(engine, expire_on_commit=False)


async def ping_database(engine: AsyncEngine) -> bool:
    """Return ``True`` if a trivial query succeeds."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError):
        return False
    return True
