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

    # Database (SQLite fallback when unset)
    DATABASE_URL: Optional[str] = None
    SQLITE_PATH: str = "taxonomy_engine.db"
    SQL_DEBUG: bool = False
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10

    # Application Settings
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Batch processing
    BATCH_SIZE: int = 100
    MAX_CONCURRENT_BATCHES: int = 5
    BATCH_TIMEOUT_SECONDS: float = 300.0
    MAX_RETRIES: int = 3

    # Retry jobs for failed items
    RETRY_BATCH_SIZE: int = 50
    RETRY_MAX_RETRIES: int = 5

    # Results
    RANKING_LIMIT: int = 50
    OPPORTUNITY_TTL_DAYS: int = 7

    # Optional directory for JSON job snapshots
    JOBS_PATH: Optional[str] = None

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra fields in .env file
        case_sensitive = False  # Allow both UPPERCASE and lowercase


@lru_cache
def get_settings() -> Settings:
    """Get or create cached settings instance."""
    return Settings()
