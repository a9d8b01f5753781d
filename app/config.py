"""Application configuration using pydantic-settings."""

from functools import lru_cache
from typing import Literal

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env file and override existing env vars
load_dotenv(override=True)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = True

    # API Server
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Remote workflow dispatch
    dispatch_url: str = "https://ci.example.internal/api/workflows/deploy/dispatches"
    # Formatted with the remote run id
    run_status_url: str = "https://ci.example.internal/api/runs/{run_id}"
    dispatch_token: str = Field(default="")
    dispatch_timeout_seconds: float = 10.0
    dispatch_max_retries: int = 3
    dispatch_backoff_seconds: float = 0.5

    # Request validation
    allowed_environments: list[str] = Field(
        default_factory=lambda: ["dev", "staging", "prod"]
    )
    allowed_input_keys: list[str] = Field(
        default_factory=lambda: ["services", "image_tag", "skip_tests", "reason"]
    )

    # Run tracking
    poll_enabled: bool = True
    poll_interval_seconds: float = Field(default=15.0, gt=0)
    run_deadline_minutes: float = Field(default=30.0, gt=0)
    run_retention_hours: int = 24

    # Notifications
    notify_webhook_url: str | None = None
    notify_timeout_seconds: float = 5.0

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["console", "json"] = "console"
    log_directory: str = "logs"
    log_file_name: str = "dispatch.log"

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()
