"""Database configuration and session management."""

import logging
import typing as t

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from app.core.config import SETTINGS
from app.core.events import EVENT_BUS

LOGGER: logging.Logger = logging.getLogger(__name__)


class Base(DeclarativeBase):  # pylint: disable=too-few-public-methods
    """Base class for all database models."""


# Create async engine
ENGINE: AsyncEngine = create_async_engine(
    SETTINGS.database_url,
    echo=SETTINGS.debug,
    future=True,
)


def configure_sqlite(engine: AsyncEngine) -> None:
    """Let SQLAlchemy own transaction boundaries on SQLite.

    The sqlite3 driver defers BEGIN to the first write, which breaks
    savepoints. Disable its handling, emit BEGIN ourselves and enforce
    foreign keys.

    Args:
        engine (AsyncEngine): The engine to configure.
    """
    if engine.dialect.name != "sqlite":
        return

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection: t.Any, _: t.Any) -> None:
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn: t.Any) -> None:
        conn.exec_driver_sql("BEGIN")


configure_sqlite(ENGINE)


# Create async session factory
ASYNC_SESSION_MAKER: async_sessionmaker[AsyncSession] = async_sessionmaker(
    ENGINE,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> t.AsyncGenerator[AsyncSession, None]:
    """Dependency to get database session.

    The request is one unit of work: it commits on success, rolls back on
    any exception, and only hands queued domain events to subscribers once
    the commit went through.

    Yields:
        AsyncSession: An asynchronous database session.
    """
    async with ASYNC_SESSION_MAKER() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            EVENT_BUS.discard(session)
            raise
        finally:
            await session.close()
        await EVENT_BUS.dispatch(session)


async def init_db() -> None:
    """Initialize database tables."""
    async with ENGINE.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database connection."""
    await ENGINE.dispose()
