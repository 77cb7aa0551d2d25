"""Environment-backed settings for the booking service."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .validation import ValidationPolicy


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="ROOM_BOOKING_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    DATA_DIR: str = Field(default="data", description="Directory holding the YAML booking files")
    REQUIRE_FUTURE_START: bool = Field(default=True, description="Reject bookings starting at or before now")
    REQUIRE_MINUTE_ALIGNMENT: bool = Field(default=True, description="Reject timestamps with seconds or microseconds")
    LOCK_TIMEOUT_SECONDS: float = Field(default=5.0, gt=0, description="Max wait for a storage lock")
    HOST: str = Field(default="127.0.0.1")
    PORT: int = Field(default=5000)
    LOG_LEVEL: str = Field(default="INFO")
    SEED_ROOMS: bool = Field(default=True, description="Create the default rooms on startup")

    def validation_policy(self) -> ValidationPolicy:
        return ValidationPolicy(
            require_future_start=self.REQUIRE_FUTURE_START,
            require_minute_alignment=self.REQUIRE_MINUTE_ALIGNMENT,
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()
