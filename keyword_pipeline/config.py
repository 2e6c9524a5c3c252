"""Application configuration using pydantic-settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Process-wide settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "KeywordPipeline"
    app_version: str = "0.1.0"
    environment: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"

    # Database (checkpoint persistence)
    database_url: str = "sqlite+aiosqlite:///./keyword_pipeline.db"
    database_echo: bool = False

    # Batch processing
    batch_size: int = Field(default=100, ge=1)
    fast_sample_percentage: float = Field(default=0.1, gt=0.0, le=1.0)
    fast_sample_minimum: int = Field(default=50, ge=1)
    max_memory_usage_mb: int = Field(default=512, ge=1)
    checkpoint_interval: int = Field(default=100, ge=1)  # keywords between mid-stage checkpoints
    checkpoint_keep_count: int = Field(default=5, ge=1)
    checkpoint_compression_threshold: int = Field(default=1000, ge=0)
    checkpoint_write_attempts: int = Field(default=3, ge=1)
    checkpoint_write_retry_delay_seconds: float = Field(default=0.2, ge=0.0)

    # Clustering
    random_seed: int = 42

    @field_validator("database_url", mode="before")
    @classmethod
    def _normalize_database_url(cls, value: object) -> object:
        """Normalize sync Postgres URLs to asyncpg for async SQLAlchemy usage."""
        if not isinstance(value, str):
            return value

        raw = value.strip()
        if raw.startswith("postgresql+asyncpg://"):
            return raw
        if raw.startswith("postgresql+psycopg2://"):
            return raw.replace("postgresql+psycopg2://", "postgresql+asyncpg://", 1)
        if raw.startswith("postgresql+psycopg://"):
            return raw.replace("postgresql+psycopg://", "postgresql+asyncpg://", 1)
        if raw.startswith("postgresql://"):
            return raw.replace("postgresql://", "postgresql+asyncpg://", 1)
        if raw.startswith("postgres://"):
            return raw.replace("postgres://", "postgresql+asyncpg://", 1)
        if raw.startswith("sqlite:///"):
            return raw.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
        return raw

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper() or "INFO"
        return value

    @property
    def is_sqlite(self) -> bool:
        """Whether the configured database is SQLite."""
        return self.database_url.startswith("sqlite")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    settings = Settings()

    return settings


settings = get_settings()
