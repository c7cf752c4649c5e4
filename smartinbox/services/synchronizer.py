"""Synchronizes the library catalog into the snapshot table."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Sequence

from sqlalchemy.exc import SQLAlchemyError

from ..errors import SynchronizationError
from ..models import CatalogItem
from ..utils import utcnow
from .schema import GenreColumn
from .snapshot import SnapshotStore, movies_table

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]


@dataclass(slots=True)
class SyncReport:
    """Summary of one synchronization pass."""

    synched_at: datetime
    upserted: int = 0
    skipped: int = 0
    soft_deleted: int = 0


class SnapshotSynchronizer:
    """Upserts eligible movies and soft-deletes the ones that disappeared."""

    def __init__(self, store: SnapshotStore):
        self._store = store

    async def synchronize(
        self,
        items: Sequence[CatalogItem],
        columns: Sequence[GenreColumn],
        *,
        synched_at: datetime | None = None,
        progress: ProgressCallback | None = None,
    ) -> SyncReport:
        """Write one row per eligible item inside a single transaction.

        Every row written shares the ``synched_at`` stamp; afterwards any
        row carrying a different stamp is marked deleted. Nothing is
        committed when a statement fails.
        """

        stamp = synched_at or utcnow()
        report = SyncReport(synched_at=stamp)
        table = movies_table(column.name for column in columns)
        total = len(items)

        logger.info("Synchronizing %s library items into the snapshot", total)
        try:
            async with self._store.transaction() as connection:
                for index, item in enumerate(items):
                    if progress is not None:
                        progress(index * 100.0 / (2 * total))
                    row = self._build_row(item, columns, stamp)
                    if row is None:
                        report.skipped += 1
                        continue
                    await self._store.upsert(connection, table, row)
                    report.upserted += 1

                logger.info("Synchronizing deleted items ...")
                report.soft_deleted = await self._store.mark_deleted(
                    connection, table, stamp
                )
        except SQLAlchemyError as exc:
            raise SynchronizationError(
                f"Snapshot synchronization failed: {exc}"
            ) from exc

        if progress is not None:
            progress(50.0)
        logger.info(
            "Synchronized snapshot (%s upserted, %s skipped, %s soft-deleted)",
            report.upserted,
            report.skipped,
            report.soft_deleted,
        )
        return report

    @staticmethod
    def _build_row(
        item: CatalogItem,
        columns: Sequence[GenreColumn],
        synched_at: datetime,
    ) -> dict[str, Any] | None:
        if not item.is_video:
            return None
        key = item.key
        if key is None:
            return None
        if item.community_rating is None:
            return None

        genre_keys = item.genre_keys
        row: dict[str, Any] = {
            "Id": key,
            "Name": item.name,
            "CommunityRating": item.community_rating,
            "IsPlayed": item.played,
            "IsDeleted": False,
            "DateCreated": item.date_of_record() or synched_at,
            "DateSynched": synched_at,
        }
        for column in columns:
            row[column.name] = column.matches(genre_keys)
        return row
