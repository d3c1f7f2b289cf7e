"""Application configuration via Pydantic BaseSettings."""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    development = "development"
    staging = "staging"
    production = "production"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Environment
    ENVIRONMENT: Environment = Environment.development

    # Logging
    LOG_LEVEL: str = "INFO"

    # CORS
    CORS_ALLOWED_ORIGINS: str = "*"

    # Monitoring
    SENTRY_DSN: str = ""

    # Meeting scheduling
    DEFAULT_TIMEZONE: str = "Asia/Kolkata"  # Form default when the viewer has none
    SLOT_INTERVAL_MINUTES: int = 30
    DEFAULT_START_TIME: str = "09:00"  # Fallback when a day has no slots left
    SUGGESTION_WINDOW_DAYS: int = 7


@lru_cache
def get_settings() -> Settings:
    """Singleton settings instance."""
    return Settings()
