"""
Database engine and session factory.

Provides SQLAlchemy async engine setup and the session factory that
persistence scopes draw their sessions from.
"""

from typing import Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from repokit.core.config import settings
from repokit.models.base import Base


def get_async_engine(
    database_url: Optional[str] = None,
    echo: Optional[bool] = None,
    lock_timeout_ms: Optional[int] = None,
    sqlite_wal: Optional[bool] = None,
) -> AsyncEngine:
    """
    Create and configure the async SQLAlchemy engine.

    For SQLite:
    - Uses StaticPool for in-memory databases (one shared connection)
    - Enables check_same_thread=False for async compatibility
    - Uses lock_timeout_ms as the busy timeout, so a writer blocked by
      another scope fails with "database is locked" instead of hanging
    - Enables foreign keys, and WAL mode when configured

    Args:
        database_url: Connection URL (defaults to settings.database_url)
        echo: Log every statement (defaults to settings.database_echo)
        lock_timeout_ms: Lock wait bound (defaults to settings.lock_timeout_ms)
        sqlite_wal: WAL journal mode (defaults to settings.sqlite_wal)

    Returns:
        Configured AsyncEngine instance
    """
    database_url = database_url or settings.database_url
    echo = settings.database_echo if echo is None else echo
    lock_timeout_ms = settings.lock_timeout_ms if lock_timeout_ms is None else lock_timeout_ms
    sqlite_wal = settings.sqlite_wal if sqlite_wal is None else sqlite_wal

    is_sqlite = database_url.startswith("sqlite")
    in_memory = is_sqlite and (":memory:" in database_url or database_url.rstrip("/").endswith(":"))

    engine_kwargs = {
        "echo": echo,
        "future": True,
    }

    if is_sqlite:
        engine_kwargs["connect_args"] = {
            "check_same_thread": False,
            "timeout": lock_timeout_ms / 1000,
        }
        # In-memory databases live and die with their connection
        if in_memory:
            engine_kwargs["poolclass"] = StaticPool

    engine = create_async_engine(database_url, **engine_kwargs)

    if is_sqlite:
        @event.listens_for(engine.sync_engine, "connect")
        def _set_sqlite_pragma(dbapi_connection, connection_record):  # noqa: ANN001
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            if sqlite_wal and not in_memory:
                cursor.execute("PRAGMA journal_mode=WAL")
            cursor.close()

    return engine


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker:
    """
    Build the session factory used by persistence scopes.

    Args:
        engine: Async engine

    Returns:
        async_sessionmaker producing AsyncSession instances

    Note:
        expire_on_commit=False keeps loaded attributes readable after the
        scope ends; unloaded associations still raise DetachedAccess.
        autoflush=True makes queries see pending changes of the scope.
    """
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=True,
    )


async def init_db(engine: AsyncEngine) -> None:
    """
    Create all tables of the mapped models.

    Example:
        engine = get_async_engine()
        await init_db(engine)
    """
    # Import models to ensure metadata is populated before create_all()
    from repokit import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db(engine: AsyncEngine) -> None:
    """
    Dispose of the engine's connection pool.

    Should be called at shutdown to cleanly close all connections.
    """
    await engine.dispose()
