"""API-layer configuration loaded from environment variables."""

from __future__ import annotations

from typing import Self
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class APISettings(BaseSettings):
    """FastAPI application settings.

    All values can be overridden via environment variables prefixed with
    ``API_`` (e.g. ``API_HOST=0.0.0.0``) or through a ``.env`` file in the
    working directory.  The quota timezone is the exception: it is shared
    with the engine settings as ``METER_REFERENCE_TIMEZONE``.
    """

    model_config = SettingsConfigDict(
        env_prefix="API_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False

    # Usage store (asyncpg for PostgreSQL, aiosqlite for local mode).
    database_url: str = "sqlite+aiosqlite:///.salonmeter/state.db"
    database_pool_size: int = 10
    database_max_overflow: int = 20

    # Create tables at startup.  Always on for SQLite.
    auto_create_tables: bool = False

    # Quota periods roll over at midnight in this timezone.  Read from the
    # same METER_REFERENCE_TIMEZONE variable as the aggregator CLI.
    reference_timezone: str = Field(
        default="UTC",
        validation_alias=AliasChoices("METER_REFERENCE_TIMEZONE", "reference_timezone"),
    )

    # Observability summary window and row cap.
    observability_window_days: int = 14
    observability_row_limit: int = 5000

    # Raw metric rows returned with the usage overview.
    recent_metrics_limit: int = 100

    # Persist per-request api.request.* metrics.
    instrumentation_enabled: bool = True

    # Origins permitted by the CORS middleware.
    cors_origins: list[str] = ["http://localhost:3000"]

    # Whether CORS responses include credentials (cookies, auth headers).
    cors_allow_credentials: bool = True

    # Structured JSON logging.
    structured_logging: bool = False

    @field_validator("reference_timezone")
    @classmethod
    def _validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {v!r}") from exc
        return v

    @model_validator(mode="after")
    def _validate_cors_credentials_not_wildcard(self) -> Self:
        """Reject wildcard origins when credentials are enabled.

        Browsers reject ``Access-Control-Allow-Origin: *`` when
        ``Access-Control-Allow-Credentials: true`` is present, so fail at
        startup instead.
        """
        if self.cors_allow_credentials and "*" in self.cors_origins:
            raise ValueError(
                "Cannot use wildcard origins with credentials. "
                "Specify explicit origins instead of '*' when "
                "cors_allow_credentials=True."
            )
        return self

    @property
    def is_local(self) -> bool:
        return self.database_url.startswith("sqlite")


def load_api_settings() -> APISettings:
    """Construct settings from the environment / ``.env`` file."""
    return APISettings()
