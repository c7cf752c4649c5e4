"""Tests for the training service client."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import httpx
import pytest

from smartinbox.config import Settings
from smartinbox.errors import MissingJobHandleError, PollTransientError, SubmissionError
from smartinbox.services.training import JobHandleStore, TrainingClient


SERVICE_URL = "http://trainer.example.com/api/smartinbox"
JOB_ID = "2f1c8a52-6f53-4a4c-9d0e-4c2f3a6b1e77"


def build_settings(**overrides: Any) -> Settings:
    """Return a settings object with defaults suitable for tests."""

    base: dict[str, Any] = {"SMART_EMBY_SERVER_URL": SERVICE_URL}
    base.update(overrides)
    return Settings(_env_file=None, **base)  # type: ignore[arg-type]


@pytest.fixture
def snapshot_file(tmp_path) -> Path:
    path = tmp_path / "smart-inbox.db"
    path.write_bytes(b"SQLite format 3\x00snapshot")
    return path


@pytest.mark.anyio("asyncio")
async def test_submit_uses_default_parameters_and_persists_handle(tmp_path, snapshot_file) -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json=JOB_ID)

    handles = JobHandleStore(tmp_path / "plugins" / "SmartInbox.Emby.tid")
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        client = TrainingClient(build_settings(), http_client, handles)
        job_id = await client.submit(snapshot_file)

    assert job_id == JOB_ID
    assert handles.read() == JOB_ID
    request = requests[0]
    assert request.method == "POST"
    assert request.url.path == "/api/smartinbox/train"
    assert request.url.query.decode() == (
        "maxEpochs=500&maxEpochsWithNoImprovement=20&newMoviesCount=50"
    )
    body = request.read()
    assert b'name="file"; filename="smart-inbox.db"' in body
    assert b"SQLite format 3\x00snapshot" in body


@pytest.mark.anyio("asyncio")
async def test_submit_sends_configured_overrides(tmp_path, snapshot_file) -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json=JOB_ID)

    settings = build_settings(
        SMART_EMBY_MAX_EPOCHS="100",
        SMART_EMBY_MAX_EPOCHS_WITH_NO_IMPROVEMENT="nope",
        SMART_EMBY_NEW_MOVIES_COUNT="10",
        SMART_EMBY_OLD_MOVIES_TO_TREAT_AS_NEW="3",
    )
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        client = TrainingClient(settings, http_client, JobHandleStore(tmp_path / "job.tid"))
        await client.submit(snapshot_file)

    params = requests[0].url.params
    assert params["maxEpochs"] == "100"
    assert params["maxEpochsWithNoImprovement"] == "20"
    assert params["newMoviesCount"] == "10"
    assert params["oldMoviesToTreatAsNew"] == "3"


@pytest.mark.anyio("asyncio")
async def test_submit_replaces_previous_handle(tmp_path, snapshot_file) -> None:
    handles = JobHandleStore(tmp_path / "job.tid")
    handles.write("previous-job")

    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json="next-job")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        await TrainingClient(build_settings(), http_client, handles).submit(snapshot_file)

    assert handles.read() == "next-job"
    assert handles.path.read_text(encoding="utf-8") == "next-job\n"


@pytest.mark.anyio("asyncio")
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, text="boom"),
        httpx.Response(200, text="not json"),
        httpx.Response(200, json=""),
    ],
)
async def test_failed_submission_preserves_previous_handle(
    tmp_path, snapshot_file, response: httpx.Response
) -> None:
    handles = JobHandleStore(tmp_path / "job.tid")
    handles.write("previous-job")

    def handler(_: httpx.Request) -> httpx.Response:
        return response

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        client = TrainingClient(build_settings(), http_client, handles)
        with pytest.raises(SubmissionError):
            await client.submit(snapshot_file)

    assert handles.read() == "previous-job"


@pytest.mark.anyio("asyncio")
async def test_network_error_raises_submission_error(tmp_path, snapshot_file) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    handles = JobHandleStore(tmp_path / "job.tid")
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        client = TrainingClient(build_settings(), http_client, handles)
        with pytest.raises(SubmissionError):
            await client.submit(snapshot_file)

    with pytest.raises(MissingJobHandleError):
        handles.read()


@pytest.mark.anyio("asyncio")
async def test_submit_requires_service_url_and_snapshot(tmp_path) -> None:
    def handler(_: httpx.Request) -> httpx.Response:  # pragma: no cover - never called
        raise AssertionError("Network access should not be triggered")

    handles = JobHandleStore(tmp_path / "job.tid")
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        unconfigured = TrainingClient(Settings(_env_file=None, SMART_EMBY_SERVER_URL=""), http_client, handles)
        with pytest.raises(SubmissionError, match="not configured"):
            await unconfigured.submit(tmp_path / "missing.db")

        configured = TrainingClient(build_settings(), http_client, handles)
        with pytest.raises(SubmissionError, match="Unable to read snapshot"):
            await configured.submit(tmp_path / "missing.db")


@pytest.mark.anyio("asyncio")
async def test_fetch_recommendations_parses_payload(tmp_path) -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(
            200,
            json=[
                {"Id": "Imdb=tt1", "Title": "Heat", "RecommendationType": 1},
                {"Id": "Imdb=tt2", "Title": None, "RecommendationType": 0},
            ],
        )

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        client = TrainingClient(build_settings(), http_client, JobHandleStore(tmp_path / "job.tid"))
        recommendations = await client.fetch_recommendations(JOB_ID)

    assert requests[0].url.path == "/api/smartinbox/recommendations"
    assert requests[0].url.params["id"] == JOB_ID
    assert [(item.id, item.title, item.recommendation_type) for item in recommendations] == [
        ("Imdb=tt1", "Heat", 1),
        ("Imdb=tt2", "", 0),
    ]


@pytest.mark.anyio("asyncio")
async def test_fetch_recommendations_not_ready(tmp_path) -> None:
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"detail": "training in progress"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        client = TrainingClient(build_settings(), http_client, JobHandleStore(tmp_path / "job.tid"))
        with pytest.raises(PollTransientError):
            await client.fetch_recommendations(JOB_ID)


def test_job_handle_store_reads_first_line(tmp_path) -> None:
    path = tmp_path / "job.tid"
    path.write_text("  abc-123  \nleftover\n", encoding="utf-8")

    assert JobHandleStore(path).read() == "abc-123"


def test_job_handle_store_empty_file_is_missing(tmp_path) -> None:
    path = tmp_path / "job.tid"
    path.write_text("\n", encoding="utf-8")

    with pytest.raises(MissingJobHandleError):
        JobHandleStore(path).read()
