"""
Configuration management for FX Quote Aggregator Service.
Uses pydantic-settings for environment variable management.
"""

from typing import Optional
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application metadata
    app_name: str = "Currency Converter API"
    app_version: str = "1.0.0"
    debug: bool = False

    # HTTP server
    server_host: str = "0.0.0.0"
    port: int = 3000

    # Database configuration
    database_url: Optional[str] = None
    db_driver: str = "postgresql+psycopg2"
    db_host: str = "localhost"
    db_port: int = 5432
    db_user: str = "postgres"
    db_password: str = ""
    db_name: str = "currency_converter"
    db_echo: bool = False

    # Cache and source behaviour (in seconds)
    cache_ttl_seconds: int = 60
    source_timeout_seconds: float = 10.0

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of: {', '.join(sorted(valid_levels))}")
        return v.upper()

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Validate log format."""
        valid_formats = {"json", "text"}
        if v.lower() not in valid_formats:
            raise ValueError(f"log_format must be one of: {', '.join(sorted(valid_formats))}")
        return v.lower()

    @field_validator("cache_ttl_seconds", "source_timeout_seconds")
    @classmethod
    def validate_positive(cls, v):
        if v <= 0:
            raise ValueError("must be positive")
        return v

    def get_database_url(self) -> str:
        """Get database connection URL."""
        if self.database_url:
            return self.database_url
        credentials = self.db_user
        if self.db_password:
            credentials = f"{self.db_user}:{self.db_password}"
        return f"{self.db_driver}://{credentials}@{self.db_host}:{self.db_port}/{self.db_name}"


# Global settings instance
settings = Settings()
