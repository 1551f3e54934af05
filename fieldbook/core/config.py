# fieldbook/core/config.py
import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field, SecretStr, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 24 * 60

# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = Path(__file__).resolve().parents[2] / ".env"
    logger.debug(f"[CONFIG] Looking for .env at: {env_path}")
    load_dotenv(env_path)


def parse_clock(value: str) -> int:
    """
    Parse an ``HH:MM`` wall-clock string into minutes after midnight.

    ``24:00`` is accepted and maps to the end of the day.
    """
    try:
        hours_raw, minutes_raw = value.strip().split(":", 1)
        hours, minutes = int(hours_raw), int(minutes_raw)
    except (AttributeError, ValueError):
        raise ValueError(f"Expected HH:MM, got {value!r}")
    if not 0 <= minutes < 60 or not 0 <= hours <= 24 or (hours == 24 and minutes):
        raise ValueError(f"Clock value out of range: {value!r}")
    return hours * 60 + minutes


class Settings(BaseSettings):
    """Runtime configuration for the reservation engine."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    environment: str = Field(
        default="development",
        description="Deployment environment name (development, test, production)",
    )

    # Persistent store
    database_url: str = Field(
        default="sqlite:///./fieldbook.db",
        description="SQLAlchemy URL for the persistent store",
    )
    store_statement_timeout_ms: int = Field(
        default=15000,
        description="Upper bound for a single statement (Postgres statement_timeout)",
    )
    store_pool_timeout_seconds: int = Field(
        default=5,
        description="How long to wait for a pooled connection / sqlite lock",
    )
    store_retry_attempts: int = Field(
        default=3,
        description="Attempts for an operation that hits a transient store failure",
    )

    # Cache / pub-sub
    redis_url: Optional[str] = Field(
        default=None,
        description="Redis URL for availability cache and event fan-out; in-memory when unset",
    )
    availability_cache_ttl_seconds: int = Field(
        default=300,
        description="TTL fallback for cached availability entries",
    )

    # Booking rules
    grace_period_minutes: int = Field(
        default=30,
        description="Minutes a pending reservation holds its slot while awaiting payment",
    )
    slot_granularity_minutes: int = Field(
        default=60,
        description="Bucket size used when listing free slots",
    )
    operating_day_start: str = Field(default="00:00", description="Opening time (HH:MM)")
    operating_day_end: str = Field(
        default="24:00", description="Closing time (HH:MM, 24:00 = midnight)"
    )
    facility_timezone: str = Field(
        default="Asia/Jakarta",
        description="Timezone the booking date and times are expressed in",
    )

    # Background jobs
    expiry_sweep_interval_seconds: int = Field(default=60)
    completion_sweep_interval_seconds: int = Field(default=300)

    # Payment gateway
    gateway_server_key: SecretStr = Field(
        default=SecretStr(""),
        description="Server key used to verify gateway notification signatures",
    )
    gateway_verify_signature: bool = Field(
        default=True,
        description="Reject gateway notifications whose signature does not match",
    )

    @field_validator(
        "grace_period_minutes",
        "slot_granularity_minutes",
        "availability_cache_ttl_seconds",
        "expiry_sweep_interval_seconds",
        "completion_sweep_interval_seconds",
        "store_retry_attempts",
    )
    @classmethod
    def _require_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive integer")
        return value

    @field_validator("slot_granularity_minutes")
    @classmethod
    def _granularity_divides_day(cls, value: int) -> int:
        if MINUTES_PER_DAY % value:
            raise ValueError("slot_granularity_minutes must divide 1440")
        return value

    @field_validator("operating_day_start", "operating_day_end")
    @classmethod
    def _valid_clock(cls, value: str) -> str:
        parse_clock(value)
        return value.strip()

    @field_validator("operating_day_end")
    @classmethod
    def _end_after_start(cls, value: str, info: ValidationInfo) -> str:
        start = info.data.get("operating_day_start")
        if start is None:
            return value
        end_minutes = parse_clock(value) or MINUTES_PER_DAY
        if end_minutes <= parse_clock(start):
            raise ValueError("operating_day_end must be after operating_day_start")
        return value

    @property
    def operating_window(self) -> tuple[int, int]:
        """Opening and closing minute of the operating day."""
        start = parse_clock(self.operating_day_start)
        end = parse_clock(self.operating_day_end) or MINUTES_PER_DAY
        return start, end


settings = Settings()
