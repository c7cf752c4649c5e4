"""SQLite store holding the library snapshot uploaded for training."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator, Iterable, Mapping

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    Index,
    MetaData,
    Table,
    Text,
    inspect,
    insert,
    select,
    text,
    update,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection

from ..database import Database
from ..errors import SchemaEvolutionError
from ..utils import is_genre_column

logger = logging.getLogger(__name__)


MOVIES_TABLE = "Movies"
BASE_COLUMNS: tuple[str, ...] = (
    "Id",
    "Name",
    "CommunityRating",
    "IsPlayed",
    "IsDeleted",
    "DateCreated",
    "DateSynched",
)


def movies_table(genre_columns: Iterable[str] = ()) -> Table:
    """Return the ``Movies`` table definition including ``genre_columns``."""

    metadata = MetaData()
    table = Table(
        MOVIES_TABLE,
        metadata,
        Column("Id", Text, primary_key=True),
        Column("Name", Text, nullable=False),
        Column("CommunityRating", Float, nullable=True),
        Column("IsPlayed", Boolean, nullable=False),
        Column("IsDeleted", Boolean, nullable=False),
        Column("DateCreated", DateTime, nullable=False),
        Column("DateSynched", DateTime, nullable=False),
    )
    Index("Id_Idx", table.c.Id)
    for name in genre_columns:
        table.append_column(
            Column(name, Boolean, nullable=False, server_default=text("0"))
        )
    return table


class SnapshotStore:
    """File-backed snapshot of the movie library.

    Values always travel as bound parameters. The only identifiers spliced
    into SQL text are generated genre column names, which are validated and
    quoted by the dialect in :meth:`add_column`.
    """

    def __init__(self, path: Path):
        self._path = Path(path)
        self._database: Database | None = None

    @property
    def path(self) -> Path:
        return self._path

    @property
    def database(self) -> Database:
        if self._database is None:
            self._database = Database.for_file(self._path)
        return self._database

    async def create_table(self) -> None:
        """Create the ``Movies`` table and its ``Id`` index when absent."""

        table = movies_table()
        await self.database.create_all(table.metadata)

    async def column_names(self) -> list[str]:
        """Return the current column names of the ``Movies`` table."""

        async with self.database.engine.connect() as connection:
            return await connection.run_sync(self._column_names)

    @staticmethod
    def _column_names(sync_connection) -> list[str]:
        inspector = inspect(sync_connection)
        if MOVIES_TABLE not in inspector.get_table_names():
            return []
        return [column["name"] for column in inspector.get_columns(MOVIES_TABLE)]

    async def add_column(self, name: str) -> bool:
        """Add a boolean genre column unless it already exists.

        Returns ``True`` when the column was created. Failures raise
        :class:`SchemaEvolutionError` so callers can decide to continue.
        """

        if not is_genre_column(name):
            raise SchemaEvolutionError(name, "invalid column name")

        try:
            existing = {column.casefold() for column in await self.column_names()}
            if name.casefold() in existing:
                return False
            async with self.database.engine.begin() as connection:
                preparer = connection.dialect.identifier_preparer
                ddl = (
                    f"ALTER TABLE {preparer.quote_identifier(MOVIES_TABLE)} "
                    f"ADD COLUMN {preparer.quote_identifier(name)} "
                    "BOOLEAN NOT NULL DEFAULT 0"
                )
                await connection.execute(text(ddl))
        except SQLAlchemyError as exc:
            raise SchemaEvolutionError(name, str(exc)) from exc
        return True

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncConnection]:
        """Provide one transaction; it rolls back if the block raises."""

        async with self.database.engine.begin() as connection:
            yield connection

    @staticmethod
    async def upsert(
        connection: AsyncConnection,
        table: Table,
        row: Mapping[str, Any],
    ) -> None:
        """Insert ``row`` or replace the existing row with the same ``Id``."""

        statement = insert(table).prefix_with("OR REPLACE")
        await connection.execute(statement, dict(row))

    @staticmethod
    async def mark_deleted(
        connection: AsyncConnection,
        table: Table,
        synched_at: datetime,
    ) -> int:
        """Soft-delete every live row not stamped with ``synched_at``."""

        statement = (
            update(table)
            .where(table.c.DateSynched != synched_at)
            .where(table.c.IsDeleted.is_(False))
            .values(IsDeleted=True)
        )
        result = await connection.execute(statement)
        return result.rowcount or 0

    async def fetch_rows(self) -> list[dict[str, Any]]:
        """Return every snapshot row keyed by column name."""

        columns = await self.column_names()
        if not columns:
            return []
        table = movies_table(name for name in columns if name not in BASE_COLUMNS)
        statement = select(table).order_by(table.c.Id)
        async with self.database.engine.connect() as connection:
            result = await connection.execute(statement)
            return [dict(row) for row in result.mappings().all()]

    async def dispose(self) -> None:
        if self._database is not None:
            await self._database.dispose()
            self._database = None
