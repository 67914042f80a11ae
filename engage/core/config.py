"""Configuration management for engage."""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # SQLite Configuration
    sqlite_db_path: str = Field(default="./data/engage.db", description="Path to the SQLite database file")

    # Pydantic Logfire Configuration (optional)
    logfire_token: str | None = Field(default=None, description="Pydantic Logfire token for observability")

    # Redis Configuration (optional)
    redis_url: str | None = Field(default=None, description="Redis connection URL (e.g., redis://localhost:6379)")

    # Outbound Channel Configuration
    channel_provider: str = Field(default="manychat", description="Provider key used to look up channel credentials")
    channel_base_url: str = Field(
        default="https://api.manychat.com", description="Base URL of the chat provider's sending API"
    )
    channel_message_tag: str = Field(
        default="ACCOUNT_UPDATE", description="Message tag required for sends outside the 24h window"
    )

    # Points Policy
    media_bonus_points: int = Field(
        default=15, ge=0, description="Points added to the template base when a submission carries media"
    )
    approval_points_source: Literal["template", "submitted"] = Field(
        default="template",
        description="Whether approval re-derives points from the template base or keeps the submitted amount",
    )

    # Completion Ledger
    template_fallback_from_tasks: bool = Field(
        default=False,
        description="Synthesize a missing day template from the project's dispatch tasks (compatibility mode)",
    )
    auto_approve_channel_submissions: bool = Field(
        default=False, description="Approve submissions arriving through the chat webhook immediately"
    )

    # Dispatch Scheduler
    dispatch_interval_seconds: int = Field(default=60, ge=1, description="Seconds between dispatch ticks")
    dispatch_lease_ttl_seconds: int = Field(
        default=300, ge=1, description="Lifetime of the dispatch lease before another tick may take it over"
    )
    dispatch_max_attempts: int = Field(
        default=1, ge=1, description="Send attempts per recipient (1 disables retries)"
    )
    dispatch_retry_delay_seconds: float = Field(
        default=1.0, ge=0, description="Base delay for exponential backoff between send attempts"
    )


# Application Constants
class Constants:
    """Application-wide constants."""

    # API Configuration
    API_TIMEOUT_SECONDS: int = 30

    # HTTP Status Codes
    HTTP_BAD_REQUEST: int = 400
    HTTP_NOT_FOUND: int = 404
    HTTP_UNPROCESSABLE: int = 422
    HTTP_SERVER_ERROR: int = 500

    # Projects
    DEFAULT_TOTAL_DAYS: int = 21
    DEFAULT_POINTS_BASE: int = 10

    # Leaderboard
    LEADERBOARD_SIZE: int = 10
    CACHE_TTL_LEADERBOARD_SECONDS: int = 60

    # Dispatch
    DISPATCH_LEASE_NAME: str = "dispatch"
    DISPATCH_JOB_NAME: str = "dispatch_tick"
    RECIPIENT_NOT_CONNECTED_ERROR: str = "recipient not connected"

    # Pagination
    MAX_PER_PAGE_LIMIT: int = 1000

    # Redis Configuration
    REDIS_MAX_CONNECTIONS: int = 10

    # Job Tracker Configuration
    TRACKER_ERROR_MAX_LENGTH: int = 500
    TRACKER_KEY_TTL_SECONDS: int = 86400 * 7
    TRACKER_RUN_TTL_SECONDS: int = 3600


def get_settings() -> Settings:
    """Get application settings (singleton pattern)."""
    return Settings()


# Global settings instance
settings = get_settings()
constants = Constants()
