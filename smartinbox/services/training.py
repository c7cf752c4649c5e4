"""Client for the external model training service."""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Any

import httpx
from pydantic import TypeAdapter, ValidationError

from ..config import Settings
from ..errors import MissingJobHandleError, PollTransientError, SubmissionError
from ..models import Recommendation

logger = logging.getLogger(__name__)

_RECOMMENDATIONS_ADAPTER = TypeAdapter(list[Recommendation])


class JobHandleStore:
    """Persists the identifier of the most recent training job."""

    def __init__(self, path: Path):
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def read(self) -> str:
        """Return the stored job identifier.

        Raises :class:`MissingJobHandleError` when nothing was submitted yet.
        """

        try:
            content = self._path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise MissingJobHandleError(f"No training job handle at {self._path}") from exc
        job_id = content.strip().splitlines()[0].strip() if content.strip() else ""
        if not job_id:
            raise MissingJobHandleError(f"Training job handle {self._path} is empty")
        return job_id

    def write(self, job_id: str) -> None:
        """Replace the stored job identifier."""

        self._path.parent.mkdir(parents=True, exist_ok=True)
        temporary = self._path.with_name(f"{self._path.name}.tmp")
        temporary.write_text(f"{job_id}\n", encoding="utf-8")
        os.replace(temporary, self._path)


class TrainingClient:
    """Thin wrapper around the training service HTTP API."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        job_handles: JobHandleStore,
    ):
        self._settings = settings
        self._client = http_client
        self._job_handles = job_handles

    @property
    def is_configured(self) -> bool:
        return self._settings.training_service_url is not None

    @property
    def job_handles(self) -> JobHandleStore:
        return self._job_handles

    def _url(self, path: str) -> str:
        base = str(self._settings.training_service_url).rstrip("/")
        return f"{base}/{path}"

    async def submit(self, snapshot_path: Path) -> str:
        """Upload the snapshot, start training and persist the job handle."""

        if not self.is_configured:
            raise SubmissionError("SMART_EMBY_SERVER_URL is not configured")
        try:
            payload = await asyncio.to_thread(Path(snapshot_path).read_bytes)
        except OSError as exc:
            raise SubmissionError(f"Unable to read snapshot {snapshot_path}: {exc}") from exc

        params = self._settings.training_parameters
        logger.info(
            "Uploading snapshot %s to training service %s",
            snapshot_path,
            self._settings.training_service_url,
        )
        try:
            response = await self._client.post(
                self._url("train"),
                params=params,
                files={
                    "file": (
                        Path(snapshot_path).name,
                        payload,
                        "application/octet-stream",
                    )
                },
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise SubmissionError(
                f"Training service rejected the snapshot ({exc.response.status_code})"
            ) from exc
        except httpx.HTTPError as exc:
            raise SubmissionError(f"Failed to reach training service: {exc}") from exc

        job_id = self._parse_job_id(response)
        try:
            self._job_handles.write(job_id)
        except OSError as exc:
            raise SubmissionError(f"Unable to persist training id {job_id}: {exc}") from exc
        logger.info("Saved training id '%s'", job_id)
        return job_id

    @staticmethod
    def _parse_job_id(response: httpx.Response) -> str:
        try:
            data: Any = response.json()
        except ValueError as exc:
            raise SubmissionError("Training service returned a non-JSON job id") from exc
        if isinstance(data, (int, float)) and not isinstance(data, bool):
            data = str(data)
        if not isinstance(data, str) or not data.strip():
            raise SubmissionError("Training service returned an empty job id")
        return data.strip()

    async def fetch_recommendations(self, job_id: str) -> list[Recommendation]:
        """Return the recommendations of ``job_id`` once training completed.

        Any non-success answer means the job is not ready and raises
        :class:`PollTransientError`.
        """

        try:
            response = await self._client.get(
                self._url("recommendations"), params={"id": job_id}
            )
        except httpx.HTTPError as exc:
            raise PollTransientError(
                f"Completion check for {job_id} failed: {exc.__class__.__name__}"
            ) from exc
        if not response.is_success:
            raise PollTransientError(
                f"Recommendations for {job_id} not ready ({response.status_code})"
            )
        try:
            return _RECOMMENDATIONS_ADAPTER.validate_json(response.content or b"[]")
        except ValidationError as exc:
            raise PollTransientError(
                f"Malformed recommendations payload for {job_id}"
            ) from exc
