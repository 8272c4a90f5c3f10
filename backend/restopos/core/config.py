"""Application configuration using pydantic-settings.

All environment variables should be accessed through the settings object
rather than using os.getenv() directly.
"""

from decimal import Decimal
from functools import lru_cache
from typing import List, Literal, Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra env vars
    )

    app_name: str = "RestoPOS"
    environment: Literal["development", "production", "test"] = "development"

    # Database - SQLite file for a single till; use PostgreSQL for multi-terminal outlets
    database_url: str = "sqlite:///./data/restopos.db"

    # Redis - optional, mirrors realtime events to pub/sub when set
    redis_url: Optional[str] = None
    redis_event_channel: str = "restopos:events"

    # Security
    secret_key: str = "change-me-in-production"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 720  # one service shift

    # CORS - comma-separated origins or "*" for development only
    cors_origins: str = "http://localhost:3000,http://localhost:8000"

    # Server
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # API
    api_v1_prefix: str = "/api/v1"

    # Rate limiting
    rate_limit_enabled: bool = True
    rate_limit_default: str = "120/minute"

    # Business day boundaries and document numbering
    timezone: str = "Asia/Kolkata"

    # Billing
    service_charge_percent: Decimal = Decimal("10")
    bill_rounding: Literal["nearest", "up", "down", "none"] = "nearest"
    bill_rounding_unit: Decimal = Decimal("1")

    # Print queue
    print_job_max_attempts: int = 3
    printer_config_refresh_seconds: int = 60

    @field_validator("service_charge_percent")
    @classmethod
    def validate_service_charge(cls, v: Decimal) -> Decimal:
        if v < 0 or v > 100:
            raise ValueError("service_charge_percent must be between 0 and 100")
        return v

    @field_validator("bill_rounding_unit")
    @classmethod
    def validate_rounding_unit(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("bill_rounding_unit must be positive")
        return v

    @model_validator(mode="after")
    def validate_production_settings(self) -> "Settings":
        """Refuse to start in production with an insecure secret key."""
        if not self.debug:
            if self.secret_key == "change-me-in-production":
                raise ValueError(
                    "FATAL: Cannot start in production mode with default SECRET_KEY. "
                    "Set a secure SECRET_KEY environment variable (minimum 32 characters)."
                )
            if len(self.secret_key) < 32:
                raise ValueError(
                    f"FATAL: SECRET_KEY must be at least 32 characters in production mode "
                    f"(current length: {len(self.secret_key)})."
                )
        return self

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins into a list."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
