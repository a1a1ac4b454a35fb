"""Application configuration utilities."""
from __future__ import annotations

import os
from typing import Any, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

DEFAULT_ALLOWED_ORIGINS = "https://happy-dreamers.app"
DEFAULT_PREVIEW_ORIGIN_PATTERN = r"^https://happy-dreamers-.*\.vercel\.app$"


class EnvValidationError(Exception):
    """Raised when required environment variables are missing or malformed."""

    def __init__(self, missing_keys: List[str]) -> None:
        self.missing_keys = missing_keys
        super().__init__(
            f"[env] Missing or invalid environment variables: {', '.join(missing_keys)}"
        )


class AppConfig(BaseModel):
    """Strongly typed configuration loaded from the process environment."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    zoom_webhook_secret: str = Field(..., alias="ZOOM_WEBHOOK_SECRET", min_length=1)
    google_drive_service_account_key: str = Field(
        ..., alias="GOOGLE_DRIVE_SERVICE_ACCOUNT_KEY", min_length=1
    )
    mongodb_uri: str = Field(..., alias="MONGODB_URI", min_length=1)
    nextauth_secret: str = Field(..., alias="NEXTAUTH_SECRET", min_length=1)
    enable_debug_endpoints: bool = Field(default=False, alias="ENABLE_DEBUG_ENDPOINTS")

    app_env: str = Field(default="development", alias="APP_ENV")
    mongodb_database: Optional[str] = Field(default=None, alias="MONGODB_DATABASE")
    mongodb_max_pool_size: int = Field(default=10, alias="MONGODB_MAX_POOL_SIZE", ge=1)
    mongodb_min_pool_size: int = Field(default=2, alias="MONGODB_MIN_POOL_SIZE", ge=0)
    mongodb_max_idle_time_ms: int = Field(
        default=30_000, alias="MONGODB_MAX_IDLE_TIME_MS", ge=0
    )
    allowed_origins: List[str] = Field(
        default_factory=lambda: [DEFAULT_ALLOWED_ORIGINS], alias="ALLOWED_ORIGINS"
    )
    preview_origin_pattern: str = Field(
        default=DEFAULT_PREVIEW_ORIGIN_PATTERN, alias="PREVIEW_ORIGIN_PATTERN"
    )

    @field_validator(
        "zoom_webhook_secret",
        "google_drive_service_account_key",
        "mongodb_uri",
        "nextauth_secret",
        mode="before",
    )
    @classmethod
    def _strip_required(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("enable_debug_endpoints", mode="before")
    @classmethod
    def _parse_flag(cls, value: Any) -> Any:
        if isinstance(value, bool):
            return value
        if value in ("true", "false"):
            return value == "true"
        raise ValueError("must be 'true' or 'false'")

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def log_level(self) -> str:
        if self.app_env == "production":
            return "INFO"
        if self.app_env == "test":
            return "CRITICAL"
        return "DEBUG"


def _missing_keys(error: ValidationError) -> List[str]:
    keys: List[str] = []
    for issue in error.errors():
        key = ".".join(str(part) for part in issue["loc"]) or issue["msg"]
        if key not in keys:
            keys.append(key)
    return keys


def load_config(environ: Optional[Mapping[str, str]] = None) -> AppConfig:
    """Validate the environment, raising EnvValidationError with the bad keys."""

    source = dict(os.environ if environ is None else environ)
    try:
        return AppConfig.model_validate(source)
    except ValidationError as exc:
        raise EnvValidationError(_missing_keys(exc)) from exc
