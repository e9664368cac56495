"""
Database Infrastructure
=======================

Manages database connections, session lifecycle, and engine configuration.

Uses SQLAlchemy 2.0 async: asyncpg for PostgreSQL, aiosqlite for local
development and tests. SQLite transactions are opened with BEGIN IMMEDIATE
so concurrent writers queue on the database lock instead of interleaving.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import event, text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from cmms.config import settings
from cmms.core import ConfigurationException
from cmms.infrastructure.database.types import UTCDateTime


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy models.

    SQLAlchemy 2.0 style using DeclarativeBase.
    """
    pass


# Global engine and session maker
_engine: AsyncEngine | None = None
_session_maker: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """
    Get the initialized database engine.

    Raises:
        RuntimeError: If engine has not been initialized
    """
    if _engine is None:
        raise RuntimeError("Database engine not initialized. Call init_database() first.")
    return _engine


def _configure_sqlite(engine: AsyncEngine) -> None:
    """Let SQLAlchemy own transaction boundaries and take the write lock up front."""

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def init_database(database_url: Optional[str] = None) -> AsyncEngine:
    """
    Initialize the database engine and session maker.

    Should be called during application startup.

    Args:
        database_url: Overrides settings.database_url (tests, scripts)

    Returns:
        AsyncEngine: The initialized engine
    """
    global _engine, _session_maker

    url = database_url or settings.database_url

    if url.startswith("sqlite"):
        _engine = create_async_engine(
            url,
            echo=settings.debug,
            connect_args={"timeout": 30},
        )
        _configure_sqlite(_engine)
    else:
        # asyncpg spells sslmode as ssl
        url = url.replace("sslmode=", "ssl=")
        _engine = create_async_engine(
            url,
            echo=settings.debug,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=True,
            connect_args={"command_timeout": settings.db_operation_timeout_seconds},
        )

    _session_maker = async_sessionmaker(
        bind=_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    return _engine


async def close_database() -> None:
    """
    Dispose of the engine and its connections.

    Should be called during application shutdown.
    """
    global _engine, _session_maker

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_maker = None


@asynccontextmanager
async def get_session_context() -> AsyncGenerator[AsyncSession, None]:
    """
    Async context manager for one unit of work.

    Commits when the block exits normally, rolls back on any exception.

    Usage:
        async with get_session_context() as session:
            ticket = await SQLAlchemyTicketRepository(session).get_by_id(ticket_id)
    """
    if _session_maker is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")

    async with _session_maker() as session:
        try:
            yield session
            await session.commit()
        except BaseException:
            await session.rollback()
            raise


async def create_tables() -> None:
    """
    Create all database tables.

    Development/testing only; production schemas are migrated.
    """
    # Import models so they register with Base.metadata
    import cmms.reference.models  # noqa: F401
    import cmms.tickets.infrastructure.models  # noqa: F401
    import cmms.teams.infrastructure.models  # noqa: F401
    import cmms.performance.infrastructure.models  # noqa: F401

    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def ping() -> bool:
    """Round-trip a trivial query; used by the health check job."""
    async with get_engine().connect() as conn:
        await conn.execute(text("SELECT 1"))
    return True


def dialect_insert(session: AsyncSession, table):
    """
    Return a dialect-specific INSERT supporting ON CONFLICT clauses.

    Raises:
        ConfigurationException: For backends without upsert support here
    """
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(table)
    if dialect == "sqlite":
        return sqlite_insert(table)
    raise ConfigurationException(f"Upsert not supported for dialect '{dialect}'")


__all__ = [
    "Base",
    "UTCDateTime",
    "get_engine",
    "init_database",
    "close_database",
    "get_session_context",
    "create_tables",
    "ping",
    "dialect_insert",
]
