"""Read-only access to the Emby/Jellyfin movie library."""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..models import CatalogItem

logger = logging.getLogger(__name__)


class LibraryError(Exception):
    """Raised when the media library cannot be queried."""


class LibraryCatalog(Protocol):
    """Source of the movies that make up the snapshot."""

    async def get_items(self, scope: str | None = None) -> list[CatalogItem]:
        """Return every video item below ``scope`` (the whole library if ``None``)."""


class EmbyLibraryClient:
    """Thin wrapper around the Emby/Jellyfin items API.

    Played state is reported for one user: the configured ``EMBY_USER_ID``
    or, when unset, the first enabled user of the server.
    """

    _ITEM_FIELDS = (
        "ProviderIds",
        "Genres",
        "DateCreated",
        "DateModified",
        "Path",
        "CommunityRating",
        "MediaType",
    )

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client
        self._user_id: str | None = settings.emby_user_id

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/json",
            "User-Agent": f"{self._settings.app_name} (smartinbox)",
        }
        if self._settings.emby_api_key:
            headers["X-Emby-Token"] = self._settings.emby_api_key
        return headers

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        try:
            response = await self._client.get(path, headers=self._headers(), params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise LibraryError(
                f"Library request {path} failed with status {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise LibraryError(f"Library request {path} failed: {exc}") from exc
        try:
            return response.json()
        except ValueError as exc:
            raise LibraryError(f"Library request {path} returned invalid JSON") from exc

    async def resolve_user_id(self) -> str:
        """Return the user whose played state is recorded in the snapshot."""

        if self._user_id:
            return self._user_id
        users = await self._get("/Users")
        if not isinstance(users, list):
            raise LibraryError("Unexpected response listing library users")
        for user in users:
            if not isinstance(user, dict):
                continue
            policy = user.get("Policy") or {}
            if policy.get("IsDisabled"):
                continue
            user_id = user.get("Id")
            if user_id:
                self._user_id = str(user_id)
                logger.info("Using library user %s (%s)", user.get("Name"), user_id)
                return self._user_id
        raise LibraryError("The library has no enabled user")

    async def get_items(self, scope: str | None = None) -> list[CatalogItem]:
        user_id = await self.resolve_user_id()
        params: dict[str, Any] = {
            "Recursive": "true",
            "IncludeItemTypes": "Movie",
            "MediaTypes": "Video",
            "Fields": ",".join(self._ITEM_FIELDS),
        }
        parent_id = scope or self._settings.emby_library_id
        if parent_id:
            params["ParentId"] = parent_id

        payload = await self._get(f"/Users/{user_id}/Items", params=params)
        raw_items = payload.get("Items") if isinstance(payload, dict) else payload
        if not isinstance(raw_items, list):
            raise LibraryError("Unexpected response listing library items")

        items: list[CatalogItem] = []
        for entry in raw_items:
            if not isinstance(entry, dict):
                continue
            try:
                items.append(CatalogItem.model_validate(entry))
            except ValidationError as exc:
                logger.warning("Skipping malformed library item %s: %s", entry.get("Id"), exc)
        if not items:
            logger.warning("Library scope %s has no movies", parent_id or "<root>")
        return items
