"""Database session handling."""
from __future__ import annotations

from collections.abc import AsyncIterator
from functools import lru_cache

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.core.config import Settings, get_settings

from .base import Base


class Database:
    """Database configuration wrapper."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        engine_options: dict[str, Any] = {"echo": self.settings.debug}
        if self.settings.database_url.startswith("sqlite"):
            # aiosqlite connections belong to the event loop that opened them.
            engine_options["poolclass"] = NullPool
        self.engine = create_async_engine(self.settings.database_url, **engine_options)
        self._sessionmaker = async_sessionmaker(self.engine, expire_on_commit=False, class_=AsyncSession)

    async def create_all(self) -> None:
        # Import registers every table on the metadata.
        import app.models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_all(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def dispose(self) -> None:
        await self.engine.dispose()

    def session(self) -> async_sessionmaker[AsyncSession]:
        return self._sessionmaker


@lru_cache(maxsize=1)
def get_database() -> Database:
    return Database()


async def get_db_session() -> AsyncIterator[AsyncSession]:
    database = get_database()
    async with database.session()() as session:
        yield session
