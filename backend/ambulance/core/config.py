# backend/ambulance/core/config.py
import logging
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Runtime configuration loaded from the environment and ``.env``."""

    environment: str = Field(default="development", description="Deployment environment name")
    log_level: str = Field(default="INFO", description="Root log level for workers and commands")

    # Database
    database_url: str = Field(
        default="sqlite:///./ambulance.db",
        description="SQLAlchemy URL for the booking/payment schema",
    )
    database_echo: bool = False

    # Celery broker / result backend
    redis_url: str = Field(default="redis://localhost:6379", description="Redis URL for Celery")
    payments_queue: str = "payments"

    # Pricing
    base_price: int = Field(default=500000, description="Flat booking fee in rupiah")
    downpayment_percentage: float = Field(
        default=0.30, description="Share of the total due as downpayment"
    )

    # Reminders
    reminder_cooldown_hours: int = Field(
        default=6, ge=0, description="Minimum gap between two reminders for the same target"
    )
    reminder_lead_hours: int = Field(
        default=6, ge=0, description="How far ahead of a scheduled deadline reminders start"
    )

    # Auto-cancellation
    final_payment_breach_status: Literal["payment_failed", "cancelled"] = Field(
        default="payment_failed",
        description="Status applied when a scheduled booking misses its final-payment deadline",
    )
    stale_payment_hours: int = Field(
        default=24,
        gt=0,
        description="Age after which a pending payment without an expiry is abandoned",
    )
    sweep_batch_limit: int = Field(
        default=500, gt=0, description="Maximum candidates loaded per sweep rule per run"
    )

    # Beat cadence
    auto_cancellation_interval_minutes: int = Field(default=60, gt=0)
    payment_reminder_interval_minutes: int = Field(default=10, gt=0)

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("downpayment_percentage")
    @classmethod
    def _validate_downpayment_percentage(cls, value: float) -> float:
        if not 0 < value <= 1:
            raise ValueError("downpayment_percentage must be in (0, 1]")
        return value

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        return value.upper()


settings = Settings()
