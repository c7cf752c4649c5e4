"""Entry point for the FastAPI-powered SmartInbox service."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse

from .config import Settings, get_settings
from .services.library import EmbyLibraryClient, LibraryError
from .services.pipeline import TrainingPipeline
from .services.recommendations import (
    RecommendationFeed,
    RecommendationPoller,
    RecommendationStore,
)
from .services.scheduler import PipelineScheduler, SchedulerBusyError, TaskKind
from .services.snapshot import SnapshotStore
from .services.training import JobHandleStore, TrainingClient

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    settings: Settings = fastapi_app.state.settings
    exit_stack = AsyncExitStack()
    library_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.emby_server_url),
            timeout=httpx.Timeout(60.0, connect=10.0),
        )
    )
    training_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(timeout=httpx.Timeout(300.0, connect=10.0))
    )

    library = EmbyLibraryClient(settings, library_http_client)
    snapshot_store = SnapshotStore(settings.snapshot_path)
    recommendation_store = RecommendationStore(settings.recommendations_path)
    training = TrainingClient(
        settings, training_http_client, JobHandleStore(settings.job_handle_path)
    )
    poller = RecommendationPoller(
        training,
        recommendation_store,
        interval_seconds=settings.poll_interval_seconds,
    )
    pipeline = TrainingPipeline(
        library,
        snapshot_store,
        training,
        poller,
        scope=settings.emby_library_id,
    )
    scheduler = PipelineScheduler(settings, pipeline)

    fastapi_app.state.scheduler = scheduler
    fastapi_app.state.feed = RecommendationFeed(library, recommendation_store)
    await scheduler.start()

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await scheduler.stop()
        await recommendation_store.dispose()
        await snapshot_store.dispose()
        await exit_stack.aclose()


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings)
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Library snapshots and training-based movie recommendations",
        version="1.0.0",
        lifespan=lifespan,
    )
    fastapi_app.state.settings = settings
    register_routes(fastapi_app)
    return fastapi_app


def get_scheduler(fastapi_app: FastAPI) -> PipelineScheduler:
    scheduler = getattr(fastapi_app.state, "scheduler", None)
    if not isinstance(scheduler, PipelineScheduler):
        raise RuntimeError("Scheduler not initialised")
    return scheduler


def get_feed(fastapi_app: FastAPI) -> RecommendationFeed:
    feed = getattr(fastapi_app.state, "feed", None)
    if not isinstance(feed, RecommendationFeed):
        raise RuntimeError("Recommendation feed not initialised")
    return feed


def register_routes(fastapi_app: FastAPI) -> None:
    def _start(kind: TaskKind) -> JSONResponse:
        scheduler = get_scheduler(fastapi_app)
        try:
            scheduler.trigger(kind)
        except SchedulerBusyError as exc:
            logger.warning("Rejected %s trigger: %s", kind.value, exc)
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return JSONResponse(scheduler.status(), status_code=202)

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/api/status")
    async def status_endpoint() -> dict[str, Any]:
        return get_scheduler(fastapi_app).status()

    @fastapi_app.post("/api/tasks/train")
    async def train_endpoint(poll: bool = True) -> JSONResponse:
        return _start(TaskKind.TRAIN if poll else TaskKind.BACKUP)

    @fastapi_app.post("/api/tasks/recommendations")
    async def recommendations_task_endpoint() -> JSONResponse:
        return _start(TaskKind.RECOMMENDATIONS)

    @fastapi_app.post("/api/tasks/cancel")
    async def cancel_endpoint() -> dict[str, Any]:
        scheduler = get_scheduler(fastapi_app)
        cancelled = scheduler.cancel()
        return {"cancelled": cancelled, **scheduler.status()}

    @fastapi_app.get("/api/recommendations")
    async def recommendations_endpoint(scope: str | None = None) -> list[dict[str, Any]]:
        feed = get_feed(fastapi_app)
        try:
            media = await feed.recommended_media(scope)
        except LibraryError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return [reference.model_dump() for reference in media]


app = create_app()
