"""
PostgreSQL Database Connection

Async SQLAlchemy setup for the entity store. PostgreSQL in production;
any SQLAlchemy async URL (e.g. sqlite+aiosqlite for tests) is accepted.
"""

from typing import Any

import structlog
from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from shared.config import settings

logger = structlog.get_logger(__name__)


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""


def _enable_sqlite_write_serialization(engine: AsyncEngine) -> None:
    """
    Start every SQLite transaction with BEGIN IMMEDIATE.

    The write lock is taken before the first read, so check-then-write
    sequences from concurrent sessions run one after another.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):  # noqa: ARG001
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_engine_for(url: str, **kwargs: Any) -> AsyncEngine:
    """
    Create an async engine with backend-specific options.

    Args:
        url: SQLAlchemy async database URL
        **kwargs: Extra engine options (override the defaults)

    Returns:
        AsyncEngine: Configured engine
    """
    backend = make_url(url).get_backend_name()
    options: dict[str, Any] = {"echo": settings.debug, "pool_pre_ping": True}
    if backend == "postgresql":
        options.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
        )
    options.update(kwargs)

    engine = create_async_engine(url, **options)
    if backend == "sqlite":
        _enable_sqlite_write_serialization(engine)
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to the given engine."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    """Initialize database - create all tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database initialized")


async def close_db(engine: AsyncEngine) -> None:
    """Close database connections."""
    await engine.dispose()
    logger.info("Database connections closed")
