"""Persistence, polling and lookup of training recommendations."""

from __future__ import annotations

import asyncio
import enum
import logging
from contextlib import suppress
from pathlib import Path
from typing import Sequence

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from ..database import Database
from ..db_models import RECOMMENDED, RecommendationRecord
from ..errors import (
    MissingJobHandleError,
    PollCancelledError,
    PollTransientError,
    RunCancelledError,
)
from ..models import MediaReference, Recommendation
from ..utils import unless_cancelled
from .library import LibraryCatalog
from .training import TrainingClient

logger = logging.getLogger(__name__)


class RecommendationStore:
    """SQLite database holding the latest recommendation set."""

    def __init__(self, path: Path):
        self._path = Path(path)
        self._database: Database | None = None

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.is_file()

    async def _open(self) -> Database:
        if self._database is None:
            database = Database.for_file(self._path)
            try:
                await database.create_all()
            except Exception:
                await database.dispose()
                raise
            self._database = database
        return self._database

    async def replace_all(self, recommendations: Sequence[Recommendation]) -> int:
        """Atomically swap the stored recommendations for ``recommendations``."""

        database = await self._open()
        records: dict[str, RecommendationRecord] = {}
        for recommendation in recommendations:
            records[recommendation.id] = RecommendationRecord(
                id=recommendation.id,
                name=recommendation.title,
                recommendation=recommendation.recommendation_type,
            )
        async with database.session() as session:
            async with session.begin():
                await session.execute(delete(RecommendationRecord))
                session.add_all(records.values())
        return len(records)

    async def all(self) -> list[RecommendationRecord]:
        if not self.exists():
            return []
        database = await self._open()
        async with database.session() as session:
            result = await session.execute(
                select(RecommendationRecord).order_by(RecommendationRecord.id)
            )
            return list(result.scalars().all())

    async def recommended_ids(self) -> set[str]:
        """Return the identities of positively recommended movies."""

        if not self.exists():
            return set()
        database = await self._open()
        async with database.session() as session:
            result = await session.execute(
                select(RecommendationRecord.id).where(
                    RecommendationRecord.recommendation == RECOMMENDED
                )
            )
            return {row[0] for row in result.all()}

    async def dispose(self) -> None:
        if self._database is not None:
            await self._database.dispose()
            self._database = None


class PollOutcome(str, enum.Enum):
    """How a poll for recommendations ended."""

    COMPLETED = "completed"
    NO_JOB = "no_job"
    CANCELLED = "cancelled"
    UNAVAILABLE = "unavailable"
    STORE_FAILED = "store_failed"


class RecommendationPoller:
    """Waits for a training job to finish and stores its recommendations."""

    def __init__(
        self,
        training_client: TrainingClient,
        store: RecommendationStore,
        *,
        interval_seconds: float = 30.0,
    ):
        self._training = training_client
        self._store = store
        self._interval = interval_seconds

    async def poll(
        self,
        job_id: str | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> PollOutcome:
        """Check for completion until results arrive or polling is cancelled."""

        if job_id is None:
            try:
                job_id = self._training.job_handles.read()
            except MissingJobHandleError as exc:
                logger.info("Nothing to poll: %s", exc)
                return PollOutcome.NO_JOB
        if not self._training.is_configured:
            logger.error("Cannot poll training %s: SMART_EMBY_SERVER_URL is not configured", job_id)
            return PollOutcome.UNAVAILABLE

        cancel_event = cancel_event or asyncio.Event()
        logger.info("Getting recommendations for training '%s'", job_id)
        try:
            recommendations = await self._wait_for_results(job_id, cancel_event)
        except PollCancelledError:
            logger.info("Polling for training '%s' cancelled", job_id)
            return PollOutcome.CANCELLED

        try:
            stored = await self._store.replace_all(recommendations)
        except (SQLAlchemyError, OSError) as exc:
            logger.error(
                "Unable to save recommendations for training '%s' to %s: %s",
                job_id,
                self._store.path,
                exc,
            )
            return PollOutcome.STORE_FAILED
        if stored:
            logger.info("Saved %s recommendations for training '%s'", stored, job_id)
        else:
            logger.info("There are no recommendations available for training '%s'", job_id)
        return PollOutcome.COMPLETED

    async def _wait_for_results(
        self, job_id: str, cancel_event: asyncio.Event
    ) -> list[Recommendation]:
        attempt = 0
        while True:
            if cancel_event.is_set():
                raise PollCancelledError(job_id)
            attempt += 1
            try:
                return await unless_cancelled(
                    self._training.fetch_recommendations(job_id), cancel_event
                )
            except RunCancelledError as exc:
                raise PollCancelledError(job_id) from exc
            except PollTransientError as exc:
                logger.debug(
                    "Recommendations for training '%s' are not available yet (attempt %s): %s",
                    job_id,
                    attempt,
                    exc,
                )
            with suppress(asyncio.TimeoutError):
                await asyncio.wait_for(cancel_event.wait(), timeout=self._interval)


class RecommendationFeed:
    """Resolves stored recommendations back to library items."""

    def __init__(self, library: LibraryCatalog, store: RecommendationStore):
        self._library = library
        self._store = store

    async def recommended_media(self, scope: str | None = None) -> list[MediaReference]:
        """Return the positively recommended movies found in ``scope``."""

        if not self._store.exists():
            return []
        recommended = await self._store.recommended_ids()
        if not recommended:
            return []

        movies: dict[str, MediaReference] = {}
        for item in await self._library.get_items(scope):
            key = item.key
            if key is None or key in movies:
                continue
            movies[key] = MediaReference.from_catalog_item(item)

        return [movies[key] for key in sorted(recommended) if key in movies]
