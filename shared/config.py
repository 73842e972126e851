"""
Shared Configuration Module

Centralized configuration for the equipment booking service using Pydantic Settings.
Supports environment variables, .env files, and runtime overrides.
"""

from functools import lru_cache
from typing import Literal
from uuid import UUID

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application-wide configuration settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = Field(default=False, description="Enable debug mode (SQL echo)")

    # Database - PostgreSQL
    postgres_user: str = "postgres"
    postgres_password: str = "postgres"
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "equipment-booking"

    database_url_override: str | None = Field(
        default=None,
        alias="database_url",
        description="Full SQLAlchemy async URL; takes precedence over the postgres_* fields",
    )

    @property
    def async_database_url(self) -> str:
        """Construct async database URL."""
        if self.database_url_override:
            return self.database_url_override
        return f"postgresql+psycopg://{self.postgres_user}:{self.postgres_password}@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"

    db_pool_size: int = 20
    db_max_overflow: int = 40

    # Lifecycle engine
    transaction_max_attempts: int = Field(
        default=3, ge=1, description="Attempts per operation on write conflicts"
    )
    system_actor_id: UUID = Field(
        default=UUID("00000000-0000-0000-0000-000000000000"),
        description="Actor recorded for unattended transitions",
    )
    sweep_interval_seconds: float = Field(default=60.0, gt=0)
    sweeper_enabled: bool = True

    # Notifications
    notification_endpoint: str = Field(
        default="",
        description="URL of the send-notification function; empty logs intents instead",
    )
    notification_api_key: str | None = Field(default=None)
    notification_timeout: float = Field(default=10.0, gt=0)

    # API Configuration
    api_v1_prefix: str = "/api/v1"
    booking_service_host: str = "0.0.0.0"
    booking_service_port: int = 8010

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_format: Literal["json", "text"] = "json"

    # CORS
    cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:3000", "http://localhost:5173"]
    )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: Application settings singleton
    """
    return Settings()


# Convenience exports
settings = get_settings()
