"""Engine configuration via pydantic-settings."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Seat Booking Engine"
    app_version: str = "1.0.0"
    environment: Literal["development", "staging", "production", "test"] = "development"
    debug: bool = False

    # Database
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "booking"
    postgres_password: str = Field(default="booking_secret")
    postgres_db: str = "booking_engine"
    db_pool_size: int = 20
    db_max_overflow: int = 10

    @computed_field
    @property
    def database_url(self) -> str:
        """Async PostgreSQL connection URL."""
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # Redis (Celery broker and result backend)
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: Optional[str] = None
    redis_db: int = 0

    @computed_field
    @property
    def redis_url(self) -> str:
        """Redis connection URL."""
        auth = f":{self.redis_password}@" if self.redis_password else ""
        return f"redis://{auth}{self.redis_host}:{self.redis_port}/{self.redis_db}"

    # Holds
    hold_duration_minutes: int = 15
    seat_lock_ttl_minutes: int = 15
    payment_session_minutes: int = 10

    # Sweeper
    sweep_interval_seconds: int = 300  # 5 minutes

    # Payment gateway
    gateway_timeout_seconds: float = 10.0
    sandbox_latency_seconds: float = 0.0

    # Pricing (amounts in VND, no minor unit)
    currency: str = "VND"
    default_price_per_seat: int = 150_000
    min_price_per_seat: int = 50_000
    max_price_per_seat: int = 2_000_000
    convenience_fee_rate: float = 0.05
    convenience_fee_fixed: int = 0
    bank_charge_rate: float = 0.02
    bank_charge_fixed: int = 0
    rounding_unit: int = 1_000
    min_total: int = 50_000
    max_total: int = 100_000_000

    # Refund policy
    full_refund_hours: int = 24
    partial_refund_hours: int = 12
    partial_refund_rate: float = 0.5

    # Booking references are retried on collision up to this many times
    reference_max_attempts: int = 5


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
