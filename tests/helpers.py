"""Factories shared by the test modules."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any

from smartinbox.models import CatalogItem
from smartinbox.services.pipeline import PipelineResult, RunState
from smartinbox.services.recommendations import PollOutcome


def make_item(
    name: str,
    *,
    provider_ids: dict[str, str] | None = None,
    rating: float | None = 7.0,
    genres: list[str] | None = None,
    played: bool = False,
    created: datetime = datetime(2020, 1, 1, 12, 0, 0),
    modified: datetime | None = None,
    **extra: Any,
) -> CatalogItem:
    """Return a library movie with sensible defaults."""

    if provider_ids is None:
        provider_ids = {"Imdb": f"tt-{name.lower().replace(' ', '-')}"}
    return CatalogItem(
        id=extra.pop("id", f"item-{name}"),
        name=name,
        provider_ids=provider_ids,
        community_rating=rating,
        genres=genres or [],
        played=played,
        date_created=created,
        date_modified=modified,
        **extra,
    )


class DummyPipeline:
    """Pipeline stand-in that polls until cancelled or released."""

    def __init__(self, *, fail: bool = False) -> None:
        self.state = RunState.IDLE
        self.calls: list[tuple[str, bool]] = []
        self.release = asyncio.Event()
        self.fail = fail

    async def run(self, *, poll=True, progress=None, cancel_event=None) -> PipelineResult:
        self.calls.append(("run", poll))
        if self.fail:
            self.state = RunState.FAILED
            raise RuntimeError("training service unreachable")
        progress(75.0)
        return await self._wait(progress, cancel_event)

    async def refresh_recommendations(self, *, progress=None, cancel_event=None) -> PipelineResult:
        self.calls.append(("refresh", True))
        return await self._wait(progress, cancel_event)

    async def _wait(self, progress, cancel_event) -> PipelineResult:
        self.state = RunState.POLLING
        cancelled = asyncio.create_task(cancel_event.wait())
        released = asyncio.create_task(self.release.wait())
        await asyncio.wait({cancelled, released}, return_when=asyncio.FIRST_COMPLETED)
        cancelled.cancel()
        released.cancel()
        if cancel_event.is_set():
            self.state = RunState.CANCELLED
            return PipelineResult(state=self.state, poll=PollOutcome.CANCELLED)
        progress(100.0)
        self.state = RunState.DONE
        return PipelineResult(state=self.state, poll=PollOutcome.COMPLETED)


class StaticLibrary:
    """Library stub returning a fixed list of movies."""

    def __init__(self, items) -> None:
        self.items = items
        self.scopes: list[str | None] = []

    async def get_items(self, scope: str | None = None):
        self.scopes.append(scope)
        return list(self.items)
