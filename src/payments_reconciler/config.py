"""Healing scheduler settings using Pydantic for environment-based configuration."""

from datetime import timedelta
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MIN_INTERVAL = timedelta(seconds=1)


class HealingSettings(BaseSettings):
    """Settings for the background healing loop.

    Durations accept seconds (``300``) or ISO-8601 (``PT5M``), e.g.
    ``PAYMENT_HEALING_INTERVAL=PT5M``.
    """

    enabled: bool = Field(default=True, description="Run the healing loop at all")
    interval: timedelta = Field(default=timedelta(minutes=5), description="Delay between healing passes")
    initial_delay: timedelta = Field(default=timedelta(seconds=10), description="Delay before the first pass")
    min_age: timedelta = Field(
        default=timedelta(minutes=10),
        description="Minimum age before an intent is eligible, to avoid racing in-flight confirmations",
    )
    batch_size: int = Field(default=50, description="Maximum intents per category per pass")

    model_config = SettingsConfigDict(
        env_prefix="PAYMENT_HEALING_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("interval", "initial_delay", "min_age", mode="before")
    @classmethod
    def parse_seconds(cls, v: Any) -> Any:
        """Accept a bare number of seconds given as a string."""
        if isinstance(v, str) and v.strip().replace(".", "", 1).isdigit():
            return float(v)
        return v

    @field_validator("interval")
    @classmethod
    def clamp_interval(cls, v: timedelta) -> timedelta:
        return max(v, MIN_INTERVAL)

    @field_validator("initial_delay", "min_age")
    @classmethod
    def non_negative(cls, v: timedelta) -> timedelta:
        return max(v, timedelta(0))

    @field_validator("batch_size")
    @classmethod
    def clamp_batch_size(cls, v: int) -> int:
        return max(1, v)
