"""Metering engine configuration loaded from environment variables."""

from __future__ import annotations

import logging
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class MeteringSettings(BaseSettings):
    """Engine settings loaded from environment variables with METER_ prefix."""

    model_config = SettingsConfigDict(
        env_prefix="METER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    debug: bool = False

    # Database
    database_url: str = "sqlite+aiosqlite:///.salonmeter/state.db"
    database_pool_size: int = 10
    database_max_overflow: int = 20

    # Quota periods are anchored to this timezone.
    reference_timezone: str = "UTC"

    # Observability
    observability_window_days: int = 14
    observability_row_limit: int = 5000

    # Dashboard
    recent_metrics_limit: int = 100

    # Logging
    structured_logging: bool = False

    @field_validator("reference_timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {v!r}") from exc
        return v

    @field_validator("observability_window_days", "observability_row_limit", "recent_metrics_limit")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v


def load_settings(**overrides: object) -> MeteringSettings:
    """Load settings from environment, with optional overrides for testing."""
    settings = MeteringSettings(**overrides)  # type: ignore[arg-type]

    if settings.debug:
        logger.info(
            "Loaded metering settings: database=%s timezone=%s",
            settings.database_url.split("@")[-1],
            settings.reference_timezone,
        )

    return settings
