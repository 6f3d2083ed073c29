# backend/homeserve/core/config.py
import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = Path(__file__).parent.parent.parent / ".env"  # backend/.env
    logger.debug(f"[CONFIG] Looking for .env at: {env_path}")
    load_dotenv(env_path)


_DEFAULT_SECRET_KEY = SecretStr("homeserve-dev-secret-change-me")


class Settings(BaseSettings):
    # Auth
    secret_key: SecretStr = Field(
        default=_DEFAULT_SECRET_KEY,
        description="HMAC key for JWT bearer tokens and OTP digests",
    )
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60

    # Infrastructure
    database_url: str = Field(
        default="sqlite:///./homeserve.db",
        description="SQLAlchemy database URL",
    )
    redis_url: Optional[str] = Field(
        default=None,
        description="Redis URL for cross-process booking/wallet locks (local locks when unset)",
    )
    lock_ttl_seconds: int = Field(default=30, ge=1)
    lock_wait_seconds: float = Field(default=5.0, ge=0)

    # Payments
    stripe_secret_key: SecretStr = Field(
        default=SecretStr(""),
        description="Stripe API key used by the payment processor",
    )
    stripe_webhook_secret: SecretStr = Field(
        default=SecretStr(""),
        description="Signing secret for processor webhooks",
    )
    payment_currency: str = "inr"
    payment_link_success_url: str = "http://localhost:3000/payments/complete"

    # Booking lifecycle
    otp_ttl_minutes: int = Field(default=15, ge=1, description="Lifetime of start/completion codes")
    loyalty_coins_per_completion: int = Field(default=5, ge=0)

    # Listing
    default_page_size: int = 20
    max_page_size: int = 100

    log_level: str = "INFO"
    environment: str = "development"

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("payment_currency")
    @classmethod
    def _lower_currency(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        return value.strip().upper()


settings = Settings()
