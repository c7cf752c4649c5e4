"""Dynamic per-genre schema evolution for the snapshot table."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from ..errors import SchemaEvolutionError
from ..models import CatalogItem
from ..utils import genre_column_name, normalize_genre
from .snapshot import BASE_COLUMNS, SnapshotStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class GenreColumn:
    """A boolean snapshot column and the genre keys it represents."""

    name: str
    keys: set[str] = field(default_factory=set)

    def matches(self, genre_keys: set[str]) -> bool:
        return not self.keys.isdisjoint(genre_keys)


@dataclass(slots=True)
class SchemaEvolution:
    """Outcome of a schema evolution pass."""

    columns: list[GenreColumn]
    added: list[str] = field(default_factory=list)
    failures: list[SchemaEvolutionError] = field(default_factory=list)

    @property
    def column_names(self) -> list[str]:
        return [column.name for column in self.columns]


def discover_genre_columns(items: Iterable[CatalogItem]) -> dict[str, GenreColumn]:
    """Group the genres found in ``items`` by generated column.

    The result is keyed by the case-folded column name because SQLite
    identifiers are case-insensitive. Distinct genre keys producing the same
    column share it; the last label seen decides the column's spelling.
    """

    columns: dict[str, GenreColumn] = {}
    for item in items:
        for label in item.genres:
            key = normalize_genre(label)
            if not key:
                continue
            name = genre_column_name(label)
            if name is None:
                logger.debug("Ignoring genre %r without a usable column name", label)
                continue
            slot = name.casefold()
            column = columns.get(slot)
            if column is None:
                columns[slot] = GenreColumn(name=name, keys={key})
            else:
                column.name = name
                column.keys.add(key)
    return columns


class SchemaEvolver:
    """Ensures the snapshot table carries one column per known genre."""

    def __init__(self, store: SnapshotStore):
        self._store = store

    async def evolve(self, items: Iterable[CatalogItem]) -> SchemaEvolution:
        """Create the table if needed and add columns for new genres.

        Columns are only ever added. A failure on one column is logged and
        the remaining columns are still attempted.
        """

        await self._store.create_table()
        discovered = discover_genre_columns(items)

        existing = {
            name.casefold(): name
            for name in await self._store.column_names()
            if name not in BASE_COLUMNS
        }

        logger.info("Updating table schema with %s genre columns", len(discovered))
        added: list[str] = []
        failures: list[SchemaEvolutionError] = []
        for slot in sorted(discovered):
            column = discovered[slot]
            if slot in existing:
                column.name = existing[slot]
                continue
            try:
                created = await self._store.add_column(column.name)
            except SchemaEvolutionError as exc:
                logger.warning("Error altering snapshot table: %s", exc)
                failures.append(exc)
                continue
            if created:
                added.append(column.name)

        present = {
            name.casefold(): name
            for name in await self._store.column_names()
            if name not in BASE_COLUMNS
        }
        resolved: list[GenreColumn] = []
        for slot in sorted(present):
            column = discovered.get(slot)
            if column is None:
                resolved.append(GenreColumn(name=present[slot]))
            else:
                column.name = present[slot]
                resolved.append(column)

        logger.info(
            "Updated table schema (%s added, %s failed, %s total genre columns)",
            len(added),
            len(failures),
            len(resolved),
        )
        return SchemaEvolution(columns=resolved, added=added, failures=failures)
