"""Configuration management for SkyGig."""

from typing import Literal, Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Job posting policy
    closing_soon_days: float = Field(3.0, ge=0, description="Days before expiry a job is shown as closing soon")
    title_min_length: int = Field(5, ge=1, description="Minimum job title length")
    title_max_length: int = Field(100, ge=1, description="Maximum job title length")
    description_min_words: int = Field(50, ge=0, description="Minimum job description word count")

    # Event delivery
    notification_dispatch: Literal["background", "inline"] = Field(
        "background", description="How notification handlers receive domain events"
    )
    event_worker_poll_seconds: float = Field(0.5, gt=0, description="Background worker queue poll interval")
    notification_dedup_window: int = Field(
        10_000, ge=1, description="Delivered events remembered for notification deduplication"
    )

    # Application Configuration
    debug: bool = Field(False, description="Enable debug mode")
    log_level: str = Field("INFO", description="Logging level")

    # Server Configuration
    host: str = Field("0.0.0.0", description="Server host")
    port: int = Field(8000, description="Server port")
    reload: bool = Field(False, description="Enable auto-reload")
    allowed_origins: list[str] = Field(["*"], description="CORS allowed origins")
    allowed_hosts: Optional[list[str]] = Field(None, description="Trusted hosts")
    user_header: str = Field("X-User-Id", description="Header carrying the caller identity")


# Global settings instance
settings = Settings()
