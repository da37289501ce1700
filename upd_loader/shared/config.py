"""Shared configuration management for the UPD loader.

Based on Pydantic Settings v2 best practices:
https://docs.pydantic.dev/latest/concepts/pydantic_settings/
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with the prefix 'APP_'.
    Example: APP_MOYSKLAD_API_TOKEN=secret
    """

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Service configuration
    service_name: str = Field(
        default="upd-loader",
        description="Service identifier for metrics and logs",
    )
    service_version: str = Field(
        default="0.1.0",
        description="Service version",
    )

    # MoySklad API configuration
    moysklad_api_url: str = Field(
        default="https://api.moysklad.ru/api/remap/1.2",
        description="MoySklad JSON API base URL",
    )
    moysklad_api_token: str = Field(
        default="",
        description="MoySklad bearer token (use env var APP_MOYSKLAD_API_TOKEN)",
    )
    moysklad_web_url: str = Field(
        default="https://online.moysklad.ru/app",
        description="MoySklad web console base URL used for document links",
    )
    moysklad_timeout: float = Field(
        default=30.0,
        description="Timeout in seconds for a single MoySklad API call",
        gt=0,
    )

    # UPD processing
    temp_dir: Path = Field(
        default=Path("./temp"),
        description="Root directory for per-request scratch files",
    )
    max_file_size: int = Field(
        default=10 * 1024 * 1024,
        description="Maximum accepted archive size in bytes",
        gt=0,
    )
    upd_encoding: str = Field(
        default="windows-1251",
        description="Code page of the card and main UPD documents",
    )
    strict_parsing: bool = Field(
        default=False,
        description=(
            "Raise on malformed main documents instead of degrading to a stub document"
        ),
    )
    rollback_shipment_on_invoice_failure: bool = Field(
        default=False,
        description="Delete the created shipment when invoice creation fails",
    )

    # Queue configuration (arq + Redis)
    queue_enabled: bool = Field(
        default=False,
        description="Enable background processing through the arq job queue",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL for the job queue",
    )
    queue_max_jobs: int = Field(
        default=10,
        description="Maximum number of concurrent jobs per worker",
    )
    queue_job_timeout: int = Field(
        default=300,
        description="Job timeout in seconds",
    )

    def ensure_temp_dir(self) -> Path:
        """Create the scratch root if it does not exist yet.

        Returns:
            The scratch root directory
        """
        self.temp_dir.mkdir(parents=True, exist_ok=True)
        return self.temp_dir


def get_settings() -> Settings:
    """Factory function to get settings instance.

    Returns:
        Configured Settings instance
    """
    return Settings()
