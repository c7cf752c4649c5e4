"""Tests for the dynamic genre schema."""

from __future__ import annotations

import asyncio

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import OperationalError

from smartinbox.errors import SchemaEvolutionError
from smartinbox.services.schema import SchemaEvolver, discover_genre_columns
from smartinbox.services.snapshot import SnapshotStore

from helpers import make_item


def _columns(database_path) -> list[str]:
    engine = create_engine(f"sqlite:///{database_path}")
    try:
        return [column["name"] for column in inspect(engine).get_columns("Movies")]
    finally:
        engine.dispose()


def test_discover_genre_columns_collapses_variants() -> None:
    items = [
        make_item("A", genres=["Action", "sci-fi"]),
        make_item("B", genres=[" action ", "Sci Fi", "ACTION"]),
    ]

    columns = discover_genre_columns(items)

    assert sorted(columns) == ["isaction", "isscifi"]
    assert columns["isaction"].keys == {"action"}
    assert columns["isscifi"].keys == {"sci-fi", "sci fi"}
    assert columns["isscifi"].name == "IsSciFi"


def test_discover_genre_columns_last_label_wins_naming() -> None:
    items = [make_item("A", genres=["film-noir"]), make_item("B", genres=["Film-Noir"])]

    columns = discover_genre_columns(items)

    assert columns["isfilmnoir"].name == "IsFilmNoir"


def test_evolve_creates_table_with_base_schema_and_index(tmp_path) -> None:
    database_path = tmp_path / "snapshot.db"

    async def runner() -> None:
        store = SnapshotStore(database_path)
        evolution = await SchemaEvolver(store).evolve(
            [make_item("A", genres=["Action", "Drama"])]
        )
        await store.dispose()
        assert evolution.added == ["IsAction", "IsDrama"]
        assert evolution.failures == []

    asyncio.run(runner())

    assert _columns(database_path) == [
        "Id",
        "Name",
        "CommunityRating",
        "IsPlayed",
        "IsDeleted",
        "DateCreated",
        "DateSynched",
        "IsAction",
        "IsDrama",
    ]
    engine = create_engine(f"sqlite:///{database_path}")
    try:
        indexes = {index["name"] for index in inspect(engine).get_indexes("Movies")}
    finally:
        engine.dispose()
    assert "Id_Idx" in indexes


def test_evolve_twice_is_a_no_op(tmp_path) -> None:
    database_path = tmp_path / "snapshot.db"
    items = [make_item("A", genres=["Action", "sci-fi"])]

    async def runner():
        store = SnapshotStore(database_path)
        evolver = SchemaEvolver(store)
        first = await evolver.evolve(items)
        second = await evolver.evolve(items)
        await store.dispose()
        return first, second

    first, second = asyncio.run(runner())

    assert first.added == ["IsAction", "IsSciFi"]
    assert second.added == []
    assert second.failures == []
    assert second.column_names == first.column_names
    assert _columns(database_path).count("IsAction") == 1


def test_evolve_reuses_existing_column_spelling(tmp_path) -> None:
    """Columns added by earlier runs are matched case-insensitively."""

    database_path = tmp_path / "snapshot.db"

    async def runner():
        store = SnapshotStore(database_path)
        await store.create_table()
        async with store.database.engine.begin() as connection:
            await connection.execute(
                text('ALTER TABLE "Movies" ADD COLUMN "Isscifi" BOOLEAN NOT NULL DEFAULT 0')
            )
        evolution = await SchemaEvolver(store).evolve([make_item("A", genres=["Sci-Fi"])])
        await store.dispose()
        return evolution

    evolution = asyncio.run(runner())

    assert evolution.added == []
    assert evolution.column_names == ["Isscifi"]
    assert evolution.columns[0].keys == {"sci-fi"}


def test_evolve_keeps_columns_of_vanished_genres(tmp_path) -> None:
    database_path = tmp_path / "snapshot.db"

    async def runner():
        store = SnapshotStore(database_path)
        evolver = SchemaEvolver(store)
        await evolver.evolve([make_item("A", genres=["Western"])])
        evolution = await evolver.evolve([make_item("A", genres=["Drama"])])
        await store.dispose()
        return evolution

    evolution = asyncio.run(runner())

    assert evolution.column_names == ["IsDrama", "IsWestern"]
    western = evolution.columns[1]
    assert western.keys == set()


def test_evolve_continues_after_a_column_failure(tmp_path) -> None:
    """A failing column is reported and skipped; others still evolve."""

    database_path = tmp_path / "snapshot.db"

    class FlakyStore(SnapshotStore):
        async def add_column(self, name: str) -> bool:
            if name == "IsAction":
                raise SchemaEvolutionError(name, "duplicate column name")
            return await super().add_column(name)

    async def runner():
        store = FlakyStore(database_path)
        evolution = await SchemaEvolver(store).evolve(
            [make_item("A", genres=["Action", "Comedy", "Drama"])]
        )
        await store.dispose()
        return evolution

    evolution = asyncio.run(runner())

    assert [failure.column for failure in evolution.failures] == ["IsAction"]
    assert evolution.added == ["IsComedy", "IsDrama"]
    assert evolution.column_names == ["IsComedy", "IsDrama"]


def test_column_lookup_failure_is_recovered_per_column(tmp_path) -> None:
    database_path = tmp_path / "snapshot.db"

    class LockedOnceStore(SnapshotStore):
        """Fails the column lookup made while adding the first genre column."""

        def __init__(self, path) -> None:
            super().__init__(path)
            self.lookups = 0

        async def column_names(self) -> list[str]:
            self.lookups += 1
            if self.lookups == 2:
                raise OperationalError(
                    "PRAGMA main.table_info(\"Movies\")", {}, Exception("database is locked")
                )
            return await super().column_names()

    async def runner():
        store = LockedOnceStore(database_path)
        evolution = await SchemaEvolver(store).evolve(
            [make_item("A", genres=["Action", "Comedy"])]
        )
        await store.dispose()
        return evolution

    evolution = asyncio.run(runner())

    assert [failure.column for failure in evolution.failures] == ["IsAction"]
    assert "database is locked" in str(evolution.failures[0])
    assert evolution.added == ["IsComedy"]
    assert evolution.column_names == ["IsComedy"]
