"""
Application settings.

Loads configuration from environment variables using pydantic-settings.
"""

from functools import lru_cache
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="REWARD_LEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = "reward-ledger"

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    # Calendar days (streaks, "completed today") are cut in this zone
    timezone: str = "UTC"

    # Points
    default_habit_points: int = Field(default=10, ge=0)
    default_attendance_points: int = Field(default=10, ge=0)
    default_completion_points: int = Field(default=50, ge=0)

    leaderboard_page_size: int = Field(default=20, ge=1, le=100)

    seed_demo_data: bool = False
    cors_allow_origins: list[str] = ["*"]

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except ZoneInfoNotFoundError as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


@lru_cache
def get_settings() -> Settings:
    return Settings()
