"""Database session management and connection handling."""

import os
import logging
from typing import Optional

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    create_async_engine as sa_create_async_engine,
    AsyncSession,
    async_sessionmaker,
    AsyncEngine,
)
from sqlalchemy.pool import StaticPool

from . import models

logger = logging.getLogger(__name__)

# Execution option marking a unit of work that must hold the write lock from its first statement
BEGIN_IMMEDIATE = "sqlite_begin_immediate"


def get_database_url() -> str:
    """
    Get database URL from environment variable.
    Supports both sync and async URLs.
    """
    db_url = os.getenv("DATABASE_URL")
    if db_url:
        if db_url.startswith("postgresql://"):
            db_url = db_url.replace("postgresql://", "postgresql+asyncpg://", 1)
        elif db_url.startswith("postgres://"):
            db_url = db_url.replace("postgres://", "postgresql+asyncpg://", 1)
        return db_url
    # Default to SQLite for local development/testing
    return "sqlite+aiosqlite:///./payments.db"


def is_sqlite_memory(url: str) -> bool:
    """True for SQLite URLs that open a private in-memory database."""
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite":
        return False
    return parsed.database in (None, "", ":memory:") or parsed.query.get("mode") == "memory"


def _emit_begin_immediate(conn) -> None:
    if conn.get_execution_options().get(BEGIN_IMMEDIATE):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_async_engine(
    database_url: Optional[str] = None,
    echo: bool = False,
    pool_size: int = 5,
    max_overflow: int = 10,
) -> AsyncEngine:
    """
    Create an async SQLAlchemy engine.

    In-memory SQLite shares a single connection so every session sees the
    same database. File-backed SQLite gets a real pool, and transactions
    started through ``begin_locked`` open with BEGIN IMMEDIATE, because SQLite
    ignores SELECT ... FOR UPDATE.

    Args:
        database_url: Database connection URL. If None, uses get_database_url().
        echo: If True, log all SQL statements.
        pool_size: Number of connections to keep in the pool.
        max_overflow: Maximum overflow connections beyond pool_size.

    Returns:
        AsyncEngine instance.
    """
    url = database_url or get_database_url()

    if is_sqlite_memory(url):
        return sa_create_async_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    engine = sa_create_async_engine(
        url,
        echo=echo,
        pool_size=pool_size,
        max_overflow=max_overflow,
    )
    if engine.dialect.name == "sqlite":
        event.listen(engine.sync_engine, "begin", _emit_begin_immediate)
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Build the session factory shared by all services."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def begin_locked(session: AsyncSession, **execution_options) -> None:
    """Bind the session's transaction to a connection holding the write lock.

    Must be the first use of the session inside ``session.begin()``. On
    file-backed SQLite the transaction opens with BEGIN IMMEDIATE so a
    concurrent caller waits until this one commits. Other databases take row
    locks through the SELECT ... FOR UPDATE that follows.
    """
    await session.connection(execution_options={BEGIN_IMMEDIATE: True, **execution_options})


class DatabaseManager:
    """
    Owns the engine and session factory for one application or command.

    Example:
        db_manager = DatabaseManager()
        await db_manager.initialize()

        services = PaymentServices.build(db_manager.session_factory)

        await db_manager.shutdown()
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        echo: bool = False,
        pool_size: int = 5,
        max_overflow: int = 10,
    ):
        self.database_url = database_url
        self.echo = echo
        self.pool_size = pool_size
        self.max_overflow = max_overflow
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            raise RuntimeError(
                "DatabaseManager not initialized. Call initialize() first."
            )
        return self._session_factory

    async def initialize(self, create_tables: bool = True) -> async_sessionmaker[AsyncSession]:
        """Open the engine and optionally create missing tables.

        Returns:
            The session factory services should share.
        """
        logger.info("Initializing database connection...")
        self._engine = create_async_engine(
            self.database_url,
            self.echo,
            self.pool_size,
            self.max_overflow,
        )
        self._session_factory = create_session_factory(self._engine)

        if create_tables:
            async with self._engine.begin() as conn:
                await conn.run_sync(models.Base.metadata.create_all)
            logger.info("Database tables created successfully.")

        return self._session_factory

    async def shutdown(self) -> None:
        """Dispose of the engine."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("Database connection closed.")
