"""Background scheduling of pipeline runs."""

from __future__ import annotations

import asyncio
import enum
import logging
from contextlib import suppress
from datetime import datetime, timedelta
from typing import Any

from ..config import Settings
from ..utils import utcnow
from .pipeline import PipelineResult, RunState, TrainingPipeline
from .recommendations import PollOutcome

logger = logging.getLogger(__name__)


class TaskKind(str, enum.Enum):
    """Kinds of runs the scheduler can start."""

    TRAIN = "train"
    BACKUP = "backup"
    RECOMMENDATIONS = "recommendations"


class SchedulerBusyError(RuntimeError):
    """Raised when a run is requested while another one is in flight."""


class PipelineScheduler:
    """Runs the pipeline daily and on demand, one run at a time."""

    def __init__(self, settings: Settings, pipeline: TrainingPipeline):
        self._settings = settings
        self._pipeline = pipeline
        self._loop_task: asyncio.Task[None] | None = None
        self._job: asyncio.Task[PipelineResult | None] | None = None
        self._cancel_event: asyncio.Event | None = None
        self.kind: TaskKind | None = None
        self.progress = 0.0
        self.started_at: datetime | None = None
        self.finished_at: datetime | None = None
        self.last_result: PipelineResult | None = None
        self.last_error: str | None = None

    async def start(self) -> None:
        """Launch the daily trigger loop."""

        if not self._settings.scheduler_enabled:
            logger.info("Scheduler disabled; runs start only on demand")
            return
        if self._loop_task is None:
            self._loop_task = asyncio.create_task(self._schedule_loop())

    async def stop(self) -> None:
        """Stop the trigger loop and abort any run in flight."""

        for task in (self._loop_task, self._job):
            if task is None or task.done():
                continue
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        self._loop_task = None
        self._job = None

    @property
    def is_running(self) -> bool:
        return self._job is not None and not self._job.done()

    def seconds_until_next_run(self, now: datetime | None = None) -> float:
        """Return the delay until the next daily trigger."""

        now = now or utcnow()
        target = now.replace(
            hour=self._settings.schedule_hour, minute=0, second=0, microsecond=0
        )
        if target <= now:
            target += timedelta(days=1)
        return (target - now).total_seconds()

    async def _schedule_loop(self) -> None:
        while True:
            await asyncio.sleep(self.seconds_until_next_run())
            try:
                job = self.trigger(TaskKind.TRAIN)
            except SchedulerBusyError:
                logger.warning("Skipping scheduled training: a run is already in flight")
                continue
            await asyncio.wait([job])

    def trigger(self, kind: TaskKind) -> asyncio.Task[PipelineResult | None]:
        """Start a run in the background."""

        if self.is_running:
            raise SchedulerBusyError(f"A {self.kind.value if self.kind else 'pipeline'} run is in flight")
        self.kind = kind
        self.progress = 0.0
        self.started_at = utcnow()
        self.finished_at = None
        self.last_error = None
        self._cancel_event = asyncio.Event()
        self._job = asyncio.create_task(self._execute(kind, self._cancel_event))
        return self._job

    def cancel(self) -> bool:
        """Ask the running job to stop at its next cancellation point."""

        if not self.is_running or self._cancel_event is None:
            return False
        logger.info("Cancellation requested for %s run", self.kind.value if self.kind else "pipeline")
        self._cancel_event.set()
        return True

    def _report_progress(self, value: float) -> None:
        self.progress = max(0.0, min(100.0, value))

    async def _execute(
        self, kind: TaskKind, cancel_event: asyncio.Event
    ) -> PipelineResult | None:
        loop = asyncio.get_running_loop()
        deadline = loop.call_later(self._settings.max_runtime_seconds, cancel_event.set)
        result: PipelineResult | None = None
        try:
            if kind is TaskKind.RECOMMENDATIONS:
                result = await self._pipeline.refresh_recommendations(
                    progress=self._report_progress, cancel_event=cancel_event
                )
            else:
                result = await self._pipeline.run(
                    poll=kind is TaskKind.TRAIN,
                    progress=self._report_progress,
                    cancel_event=cancel_event,
                )
        except Exception as exc:
            logger.exception("Pipeline %s run failed: %s", kind.value, exc)
            self.last_error = str(exc)
        finally:
            deadline.cancel()
            self.finished_at = utcnow()
        if result is not None and result.poll is PollOutcome.STORE_FAILED:
            self.last_error = "Recommendations could not be stored"
        self.last_result = result
        return result

    def status(self) -> dict[str, Any]:
        """Return a JSON-serialisable snapshot of the scheduler state."""

        state = self._pipeline.state
        if self.last_error and not self.is_running:
            state = RunState.FAILED
        return {
            "running": self.is_running,
            "kind": self.kind.value if self.kind else None,
            "state": state.value,
            "progress": round(self.progress, 2),
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
            "lastError": self.last_error,
            "lastResult": self.last_result.to_payload() if self.last_result else None,
            "nextRunInSeconds": (
                round(self.seconds_until_next_run())
                if self._settings.scheduler_enabled
                else None
            ),
        }
