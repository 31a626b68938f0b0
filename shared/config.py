"""
Shared Configuration Module

Centralized configuration for the learning platform core using Pydantic Settings.
Supports environment variables, .env files, and runtime overrides.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application-wide configuration settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Environment
    environment: Literal["development", "test", "staging", "production"] = "development"
    debug: bool = Field(default=False, description="Enable debug mode")

    # Database - PostgreSQL
    postgres_user: str = "postgres"
    postgres_password: str = "postgres"
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "learning_platform"

    database_url_override: str | None = Field(
        default=None,
        alias="DATABASE_URL",
        description="Full async SQLAlchemy URL; takes precedence over postgres_* fields",
    )
    database_echo: bool = False
    database_pool_size: int = 20
    database_max_overflow: int = 40

    @property
    def database_url(self) -> str:
        """Construct async database URL."""
        if self.database_url_override:
            return self.database_url_override
        return f"postgresql+psycopg://{self.postgres_user}:{self.postgres_password}@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"

    # Public URLs
    app_base_url: str = Field(
        default="https://platform.example.com",
        description="Base URL used to build certificate verification links",
    )

    # Object storage (assignment uploads)
    object_storage_base_url: str = "http://localhost:9000"
    object_storage_bucket: str = "assignment-submissions"
    object_storage_api_key: str | None = None
    object_storage_timeout_seconds: float = 30.0

    # Course publication
    min_modules_to_publish: int = Field(default=3, ge=1)

    # Assignments
    default_max_file_size_mb: int = Field(default=10, gt=0)

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_format: Literal["json", "text"] = "json"


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
