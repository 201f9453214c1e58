"""Database utilities for the MovieWatch service."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, AsyncIterator

from sqlalchemy import MetaData, inspect, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

if TYPE_CHECKING:
    from .store import MovieStore


class Base(DeclarativeBase):
    """Declarative base with consistent naming conventions."""

    metadata = MetaData()


class Database:
    """Thin wrapper managing the SQLAlchemy async engine and sessions."""

    def __init__(self, database_url: str):
        self._engine: AsyncEngine = create_async_engine(database_url, future=True)
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self._engine, expire_on_commit=False
        )

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def create_all(self) -> None:
        """Create database tables if they do not yet exist."""

        # Register the ORM tables on the shared metadata.
        from . import db_models  # noqa: F401

        async with self._engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)
            await connection.run_sync(self._apply_schema_migrations)

    @staticmethod
    def _apply_schema_migrations(sync_connection) -> None:
        """Ensure newly introduced columns are available on existing tables."""

        inspector = inspect(sync_connection)
        if "movies" not in inspector.get_table_names():
            return

        existing_columns = {
            column["name"] for column in inspector.get_columns("movies")
        }

        def _ensure_column(name: str, ddl: str, init_sql: str | None = None) -> None:
            if name in existing_columns:
                return
            sync_connection.execute(text(ddl))
            if init_sql:
                sync_connection.execute(text(init_sql))
            existing_columns.add(name)

        _ensure_column(
            "runtime",
            "ALTER TABLE movies ADD COLUMN runtime INTEGER DEFAULT 0",
            "UPDATE movies SET runtime = 0 WHERE runtime IS NULL",
        )
        _ensure_column(
            "watch_position",
            "ALTER TABLE movies ADD COLUMN watch_position INTEGER DEFAULT 0",
            "UPDATE movies SET watch_position = 0 WHERE watch_position IS NULL",
        )
        _ensure_column(
            "is_fetching",
            "ALTER TABLE movies ADD COLUMN is_fetching BOOLEAN DEFAULT 0",
            "UPDATE movies SET is_fetching = 0 WHERE is_fetching IS NULL",
        )

    async def dispose(self) -> None:
        """Dispose of the underlying database engine."""

        await self._engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Provide a transactional scope around a series of operations."""

        async with self.session_factory() as session:
            yield session

    @asynccontextmanager
    async def store(self) -> AsyncIterator["MovieStore"]:
        """Provide a watchlist store bound to a fresh session."""

        from .store import MovieStore

        async with self.session_factory() as session:
            yield MovieStore(session)
