"""Orchestrates snapshot synchronization and the training job lifecycle."""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from sqlalchemy.exc import SQLAlchemyError

from ..errors import RunCancelledError, SubmissionError, SynchronizationError
from ..utils import unless_cancelled
from .library import LibraryCatalog, LibraryError
from .recommendations import PollOutcome, RecommendationPoller
from .schema import SchemaEvolver
from .snapshot import SnapshotStore
from .synchronizer import SnapshotSynchronizer, SyncReport
from .training import TrainingClient

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]

SUBMITTED_PROGRESS = 75.0


class RunState(str, enum.Enum):
    """States a pipeline run moves through."""

    IDLE = "idle"
    EVOLVING_SCHEMA = "evolving_schema"
    SYNCHRONIZING = "synchronizing"
    SUBMITTING = "submitting"
    POLLING = "polling"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(slots=True)
class PipelineResult:
    """Summary of a finished pipeline run."""

    state: RunState
    job_id: str | None = None
    sync: SyncReport | None = None
    poll: PollOutcome | None = None
    genre_columns: list[str] = field(default_factory=list)
    schema_failures: int = 0

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "state": self.state.value,
            "jobId": self.job_id,
            "poll": self.poll.value if self.poll else None,
            "genreColumns": len(self.genre_columns),
            "schemaFailures": self.schema_failures,
        }
        if self.sync is not None:
            payload["sync"] = {
                "synchedAt": self.sync.synched_at.isoformat(),
                "upserted": self.sync.upserted,
                "skipped": self.sync.skipped,
                "softDeleted": self.sync.soft_deleted,
            }
        return payload


class TrainingPipeline:
    """Runs evolve → synchronize → submit → poll for one invocation."""

    def __init__(
        self,
        library: LibraryCatalog,
        store: SnapshotStore,
        training_client: TrainingClient,
        poller: RecommendationPoller,
        *,
        scope: str | None = None,
    ):
        self._library = library
        self._store = store
        self._training = training_client
        self._poller = poller
        self._scope = scope
        self._evolver = SchemaEvolver(store)
        self._synchronizer = SnapshotSynchronizer(store)
        self.state = RunState.IDLE

    def _transition(self, state: RunState) -> None:
        logger.info("Pipeline state %s -> %s", self.state.value, state.value)
        self.state = state

    async def run(
        self,
        *,
        poll: bool = True,
        progress: ProgressCallback | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> PipelineResult:
        """Execute one full run.

        ``SynchronizationError`` and ``SubmissionError`` propagate after the
        run is marked failed. Cancellation while submitting or polling ends the
        run in the cancelled state without an error; a cancelled submission
        leaves the previous job handle in place.
        """

        report = progress or (lambda _value: None)
        self.state = RunState.IDLE
        result = PipelineResult(state=self.state)
        try:
            self._transition(RunState.EVOLVING_SCHEMA)
            try:
                items = await self._library.get_items(self._scope)
            except LibraryError as exc:
                raise SynchronizationError(f"Unable to list library items: {exc}") from exc
            try:
                evolution = await self._evolver.evolve(items)
            except SQLAlchemyError as exc:
                raise SynchronizationError(f"Unable to prepare snapshot table: {exc}") from exc
            result.genre_columns = evolution.column_names
            result.schema_failures = len(evolution.failures)

            self._transition(RunState.SYNCHRONIZING)
            result.sync = await self._synchronizer.synchronize(
                items, evolution.columns, progress=report
            )

            self._transition(RunState.SUBMITTING)
            result.job_id = await unless_cancelled(
                self._training.submit(self._store.path), cancel_event
            )
            report(SUBMITTED_PROGRESS)
        except RunCancelledError:
            logger.info("Training submission cancelled; no job handle was written")
            self._transition(RunState.CANCELLED)
            result.state = self.state
            return result
        except (SynchronizationError, SubmissionError) as exc:
            logger.error("Pipeline run failed during %s: %s", self.state.value, exc)
            self._transition(RunState.FAILED)
            result.state = self.state
            raise

        if not poll:
            self._transition(RunState.DONE)
            result.state = self.state
            return result

        await self._poll(result, result.job_id, report, cancel_event)
        return result

    async def refresh_recommendations(
        self,
        *,
        progress: ProgressCallback | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> PipelineResult:
        """Poll for the persisted job handle without synchronizing."""

        report = progress or (lambda _value: None)
        self.state = RunState.IDLE
        result = PipelineResult(state=self.state)
        await self._poll(result, None, report, cancel_event)
        return result

    async def _poll(
        self,
        result: PipelineResult,
        job_id: str | None,
        report: ProgressCallback,
        cancel_event: asyncio.Event | None,
    ) -> None:
        self._transition(RunState.POLLING)
        try:
            result.poll = await self._poller.poll(job_id, cancel_event=cancel_event)
        except Exception:
            self._transition(RunState.FAILED)
            result.state = self.state
            raise

        if result.poll is PollOutcome.CANCELLED:
            self._transition(RunState.CANCELLED)
        elif result.poll is PollOutcome.STORE_FAILED:
            self._transition(RunState.FAILED)
        else:
            if result.poll is PollOutcome.COMPLETED:
                report(100.0)
            self._transition(RunState.DONE)
        result.state = self.state
