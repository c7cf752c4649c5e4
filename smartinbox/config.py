"""Environment-driven settings for the SmartInbox service."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import Field, HttpUrl, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_MAX_EPOCHS = 500
DEFAULT_MAX_EPOCHS_WITH_NO_IMPROVEMENT = 20
DEFAULT_NEW_MOVIES_COUNT = 50

_TRAINING_PARAMETER_MINIMUMS: dict[str, int] = {
    "max_epochs": 1,
    "max_epochs_with_no_improvement": 1,
    "new_movies_count": 0,
    "old_movies_to_treat_as_new": 0,
}


def _coerce_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return int(text)
    except ValueError:
        return None


class Settings(BaseSettings):
    """Service settings read from the environment or a .env file."""

    app_name: str = Field(default="SmartInbox", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=8097, alias="PORT")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", alias="LOG_LEVEL"
    )

    training_service_url: HttpUrl | None = Field(
        default=None, alias="SMART_EMBY_SERVER_URL"
    )
    max_epochs: int = Field(default=DEFAULT_MAX_EPOCHS, alias="SMART_EMBY_MAX_EPOCHS")
    max_epochs_with_no_improvement: int = Field(
        default=DEFAULT_MAX_EPOCHS_WITH_NO_IMPROVEMENT,
        alias="SMART_EMBY_MAX_EPOCHS_WITH_NO_IMPROVEMENT",
    )
    new_movies_count: int = Field(
        default=DEFAULT_NEW_MOVIES_COUNT, alias="SMART_EMBY_NEW_MOVIES_COUNT"
    )
    old_movies_to_treat_as_new: int | None = Field(
        default=None, alias="SMART_EMBY_OLD_MOVIES_TO_TREAT_AS_NEW"
    )

    emby_server_url: HttpUrl = Field(
        default="http://localhost:8096", alias="EMBY_SERVER_URL"
    )
    emby_api_key: str | None = Field(default=None, alias="EMBY_API_KEY")
    emby_user_id: str | None = Field(default=None, alias="EMBY_USER_ID")
    emby_library_id: str | None = Field(default=None, alias="EMBY_LIBRARY_ID")

    snapshot_path: Path = Field(
        default=Path("/config/data/smart-inbox.db"), alias="SNAPSHOT_PATH"
    )
    recommendations_path: Path = Field(
        default=Path("/config/data/smart-inbox-recommendations.db"),
        alias="RECOMMENDATIONS_PATH",
    )
    job_handle_path: Path = Field(
        default=Path("/config/plugins/SmartInbox.Emby.tid"), alias="JOB_HANDLE_PATH"
    )

    poll_interval_seconds: float = Field(
        default=30.0, alias="POLL_INTERVAL_SECONDS", gt=0
    )
    schedule_hour: int = Field(default=5, alias="SCHEDULE_HOUR", ge=0, le=23)
    max_runtime_seconds: int = Field(
        default=10_800, alias="MAX_RUNTIME_SECONDS", ge=60
    )
    scheduler_enabled: bool = Field(default=True, alias="SCHEDULER_ENABLED")

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator(
        "max_epochs",
        "max_epochs_with_no_improvement",
        "new_movies_count",
        "old_movies_to_treat_as_new",
        mode="before",
    )
    @classmethod
    def _fallback_training_parameters(
        cls, value: object, info: ValidationInfo
    ) -> int | None:
        """Replace missing or malformed hyperparameter overrides by their default."""

        default = cls.model_fields[info.field_name].default
        parsed = _coerce_int(value)
        if parsed is None or parsed < _TRAINING_PARAMETER_MINIMUMS[info.field_name]:
            return default
        return parsed

    @field_validator(
        "training_service_url", "emby_api_key", "emby_user_id", "emby_library_id",
        mode="before",
    )
    @classmethod
    def _strip_blank(cls, value: object) -> object:
        if isinstance(value, str):
            stripped = value.strip()
            return stripped or None
        return value

    @property
    def training_parameters(self) -> dict[str, int]:
        """Return the query parameters sent along with a training submission."""

        params = {
            "maxEpochs": self.max_epochs,
            "maxEpochsWithNoImprovement": self.max_epochs_with_no_improvement,
            "newMoviesCount": self.new_movies_count,
        }
        if self.old_movies_to_treat_as_new is not None:
            params["oldMoviesToTreatAsNew"] = self.old_movies_to_treat_as_new
        return params

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]
