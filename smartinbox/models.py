"""Pydantic models describing library items and training service payloads."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from .utils import normalize_genres, provider_key


VIDEO_MEDIA_TYPE = "Video"

_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


def _parse_timestamp(value: object) -> object:
    """Parse library timestamps into naive UTC datetimes.

    Emby and Jellyfin report seven fractional digits which ``datetime`` does
    not accept, so the fraction is truncated to microseconds first.
    """

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        text = _FRACTION_RE.sub(r"\1", text)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            value = datetime.fromisoformat(text)
        except ValueError:
            return None
    if isinstance(value, datetime) and value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class CatalogItem(BaseModel):
    """A movie reported by the media library."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(default="", validation_alias=AliasChoices("id", "Id"))
    name: str = Field(default="", validation_alias=AliasChoices("name", "Name"))
    provider_ids: dict[str, str] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("provider_ids", "ProviderIds"),
    )
    community_rating: float | None = Field(
        default=None,
        validation_alias=AliasChoices("community_rating", "CommunityRating"),
    )
    played: bool = Field(default=False, validation_alias=AliasChoices("played", "Played"))
    genres: list[str] = Field(
        default_factory=list, validation_alias=AliasChoices("genres", "Genres")
    )
    date_created: datetime | None = Field(
        default=None, validation_alias=AliasChoices("date_created", "DateCreated")
    )
    date_modified: datetime | None = Field(
        default=None, validation_alias=AliasChoices("date_modified", "DateModified")
    )
    media_type: str = Field(
        default=VIDEO_MEDIA_TYPE,
        validation_alias=AliasChoices("media_type", "MediaType"),
    )
    path: str | None = Field(default=None, validation_alias=AliasChoices("path", "Path"))

    @model_validator(mode="before")
    @classmethod
    def _lift_user_data(cls, data: Any) -> Any:
        """Expose ``UserData.Played`` as the top-level played flag."""

        if not isinstance(data, dict):
            return data
        user_data = data.get("UserData")
        if isinstance(user_data, dict) and "Played" not in data and "played" not in data:
            data = {**data, "Played": bool(user_data.get("Played"))}
        return data

    @field_validator("provider_ids", mode="before")
    @classmethod
    def _clean_provider_ids(cls, value: object) -> object:
        if value is None:
            return {}
        if isinstance(value, dict):
            return {
                str(name): str(identifier)
                for name, identifier in value.items()
                if name and identifier is not None
            }
        return value

    @field_validator("genres", mode="before")
    @classmethod
    def _clean_genres(cls, value: object) -> object:
        if value is None:
            return []
        if isinstance(value, (list, tuple)):
            return [str(entry) for entry in value if entry is not None]
        return value

    @field_validator("date_created", "date_modified", mode="before")
    @classmethod
    def _parse_dates(cls, value: object) -> object:
        return _parse_timestamp(value)

    @property
    def key(self) -> str | None:
        """Return the canonical provider key identifying this movie."""

        return provider_key(self.provider_ids)

    @property
    def genre_keys(self) -> set[str]:
        """Return the normalized genre membership keys of this movie."""

        return normalize_genres(self.genres)

    @property
    def is_video(self) -> bool:
        return (self.media_type or "").casefold() == VIDEO_MEDIA_TYPE.casefold()

    def date_of_record(self) -> datetime | None:
        """Return the modification date when it is later than the creation date."""

        if self.date_created is None:
            return self.date_modified
        if self.date_modified is not None and self.date_modified > self.date_created:
            return self.date_modified
        return self.date_created


class Recommendation(BaseModel):
    """A single recommendation returned by the training service."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(validation_alias=AliasChoices("id", "Id"))
    title: str = Field(default="", validation_alias=AliasChoices("title", "Title"))
    recommendation_type: int = Field(
        validation_alias=AliasChoices("recommendation_type", "RecommendationType")
    )

    @field_validator("title", mode="before")
    @classmethod
    def _blank_title(cls, value: object) -> object:
        return "" if value is None else value


class MediaReference(BaseModel):
    """Minimal description of a recommended library item."""

    id: str
    name: str
    path: str | None = None
    provider_ids: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_catalog_item(cls, item: CatalogItem) -> "MediaReference":
        return cls(
            id=item.id,
            name=item.name,
            path=item.path,
            provider_ids=dict(item.provider_ids),
        )
