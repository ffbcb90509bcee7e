"""
Configuration Management

Uses Pydantic Settings for environment-based configuration.
Loads from .env file automatically.
"""

from typing import Optional
from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Claude API (optional - synthesis is skipped without it)
    ANTHROPIC_API_KEY: Optional[str] = None
    CLAUDE_MODEL: str = "claude-sonnet-4-20250514"

    # CRM / call-platform gateway
    SOURCE_API_URL: str = "http://localhost:8080"
    SOURCE_API_KEY: Optional[str] = None

    # Application Settings
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Timeouts
    SOURCE_TIMEOUT_SECONDS: float = 30.0
    SYNTHESIS_TIMEOUT_SECONDS: float = 60.0

    # Warmup
    WARMUP_ON_STARTUP: bool = True
    WARMUP_BATCH_SIZE: int = 3

    # Schedulers
    REFRESH_INTERVAL_SECONDS: int = 1800
    DAILY_WARM_HOUR: int = 6
    DAILY_WARM_MINUTE: int = 0
    DAILY_RECENCY_DAYS: int = 7

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra fields in .env file
        case_sensitive = False  # Allow both UPPERCASE and lowercase


@lru_cache
def get_settings() -> Settings:
    """Get or create cached settings instance."""
    return Settings()
