"""
Database Infrastructure
=======================

Manages database connections, session lifecycle, and engine configuration.

Uses SQLAlchemy 2.0 async engines: asyncpg for PostgreSQL in production,
aiosqlite in tests.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy models.

    SQLAlchemy 2.0 style using DeclarativeBase.
    All models inherit from this class.
    """
    pass


class Database:
    """
    Owns one async engine and its session factory.

    Usage:
        database = Database(settings.database_url)
        database.connect()
        async with database.session() as session:
            result = await session.execute(select(TicketModel))
        await database.close()
    """

    def __init__(
        self,
        url: str,
        echo: bool = False,
        pool_size: int = 5,
        max_overflow: int = 10,
    ):
        # Fix asyncpg SSL: replace sslmode with ssl for asyncpg compatibility
        self._url = url.replace("sslmode=", "ssl=")
        self._echo = echo
        self._pool_size = pool_size
        self._max_overflow = max_overflow
        self._engine: Optional[AsyncEngine] = None
        self._session_maker: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def engine(self) -> AsyncEngine:
        """
        Raises:
            RuntimeError: If the engine has not been initialized
        """
        if self._engine is None:
            raise RuntimeError("Database engine not initialized. Call connect() first.")
        return self._engine

    def connect(self) -> AsyncEngine:
        """
        Create the engine and session maker.

        Should be called during application startup.
        """
        if self._engine is not None:
            return self._engine

        engine_kwargs = {"echo": self._echo, "pool_pre_ping": True}
        if not self._url.startswith("sqlite"):
            # SQLite uses a static/null pool that rejects sizing arguments
            engine_kwargs["pool_size"] = self._pool_size
            engine_kwargs["max_overflow"] = self._max_overflow

        self._engine = create_async_engine(self._url, **engine_kwargs)
        self._session_maker = async_sessionmaker(
            bind=self._engine,
            class_=AsyncSession,
            expire_on_commit=False,  # Prevent lazy loading after commit
            autoflush=False,
        )
        return self._engine

    async def close(self) -> None:
        """
        Dispose of pooled connections.

        Should be called during application shutdown.
        """
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_maker = None

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Async context manager for one unit of work.

        Commits on clean exit, rolls back and re-raises otherwise.

        Yields:
            AsyncSession: SQLAlchemy async session
        """
        if self._session_maker is None:
            raise RuntimeError("Database not initialized. Call connect() first.")

        async with self._session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def create_tables(self) -> None:
        """
        Create all database tables.

        This should only be used for development/testing.
        Production should use migrations (Alembic).
        """
        # Register every model on Base.metadata
        import ticketflow.tickets.infrastructure.models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)


__all__ = ["Base", "Database"]
