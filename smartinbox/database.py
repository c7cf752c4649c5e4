"""Async SQLite access shared by the snapshot and recommendation stores."""

from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

from sqlalchemy import MetaData
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Declarative base for the fixed-schema recommendation tables."""

    metadata = MetaData()


def sqlite_url(path: Path | str) -> str:
    """Return the async SQLAlchemy URL for a SQLite database file."""

    return f"sqlite+aiosqlite:///{path}"


class Database:
    """One SQLite file with its async engine and session factory."""

    def __init__(self, url: str):
        self._engine: AsyncEngine = create_async_engine(url)
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self._engine, expire_on_commit=False
        )

    @classmethod
    def for_file(cls, path: Path) -> "Database":
        """Open the database stored at ``path``, creating its directory if needed."""

        path.parent.mkdir(parents=True, exist_ok=True)
        return cls(sqlite_url(path))

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def create_all(self, metadata: MetaData | None = None) -> None:
        """Create the tables of ``metadata`` (the ORM tables by default) when missing."""

        target = metadata if metadata is not None else Base.metadata
        async with self._engine.begin() as conn:
            await conn.run_sync(target.create_all)

    async def dispose(self) -> None:
        """Close every pooled connection to the file."""

        await self._engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Yield an ORM session; callers open their own transaction."""

        async with self.session_factory() as session:
            yield session
