"""Async database engine and session management.

Provides:
- init_database: Initialize async SQLAlchemy engine and create tables
- create_session_factory: Create async session factory
- get_session: Async context manager for one transactional unit of work
- shutdown: Clean shutdown of database connections
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import structlog
from sqlalchemy import event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from kypipeline.core.errors import KyPipelineError, PersistenceError

from .models import Base

logger = structlog.get_logger()

# Global session factory (initialized by create_session_factory)
AsyncSessionFactory: Optional[async_sessionmaker[AsyncSession]] = None


async def init_database(db_url: str = "sqlite+aiosqlite:///ky_pipeline.db") -> AsyncEngine:
    """Initialize async database engine and create all tables.

    Args:
        db_url: SQLAlchemy async database URL

    Returns:
        AsyncEngine instance

    Example:
        >>> engine = await init_database("sqlite+aiosqlite:///ky.db")
    """
    engine = create_async_engine(db_url, echo=False)

    if engine.dialect.name == "sqlite":
        _serialize_sqlite_writers(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    return engine


def _serialize_sqlite_writers(engine: AsyncEngine) -> None:
    """Start every SQLite transaction with BEGIN IMMEDIATE.

    SQLite has no row locks and the driver defers BEGIN until the first
    write, so a read-then-write unit of work could act on a stale read.
    Taking the database writer lock at BEGIN makes each transaction see
    the state committed by the previous one.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create async session factory from engine.

    expire_on_commit=False keeps loaded rows usable after the unit of work
    commits, which the request handlers rely on when building responses.

    Args:
        engine: AsyncEngine instance from init_database()

    Returns:
        async_sessionmaker configured for async usage
    """
    global AsyncSessionFactory

    AsyncSessionFactory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    return AsyncSessionFactory


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Get async database session as one transactional unit of work.

    Everything done inside the block commits together on success or rolls
    back together on any exception. Store-level failures surface as
    PersistenceError; pipeline errors raised inside the block propagate
    unchanged after the rollback.

    Yields:
        AsyncSession for database operations

    Raises:
        RuntimeError: If session factory not initialized
        PersistenceError: If the store rejected a read, write or commit

    Example:
        >>> async with get_session() as session:
        ...     await transition(session, entry_id, project_id, "approve")
    """
    if AsyncSessionFactory is None:
        raise RuntimeError(
            "Session factory not initialized. Call create_session_factory() first."
        )

    async with AsyncSessionFactory() as session:
        try:
            yield session
            await session.commit()
        except KyPipelineError:
            await session.rollback()
            raise
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error("database_transaction_failed", error=str(e))
            raise PersistenceError(f"record store failure: {e}") from e
        except Exception:
            await session.rollback()
            raise


async def shutdown(engine: AsyncEngine) -> None:
    """Close all connections and dispose of the connection pool.

    Args:
        engine: AsyncEngine to shut down
    """
    await engine.dispose()
