"""Configuration management for Mailbox Sync.

This module handles application configuration using Pydantic settings.
Configuration can be loaded from environment variables or .env files.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with
    the MAILBOX_SYNC_ prefix (e.g., MAILBOX_SYNC_SYNC_CONCURRENCY).
    """

    model_config = SettingsConfigDict(
        env_prefix="MAILBOX_SYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # OAuth Configuration
    oauth_client_id: str = Field(
        default="",
        description="OAuth client ID used when refreshing access tokens",
    )
    oauth_client_secret: SecretStr = Field(
        default=SecretStr(""),
        description="OAuth client secret used when refreshing access tokens",
    )
    oauth_token_uri: str = Field(
        default="https://oauth2.googleapis.com/token",
        description="Token endpoint used for refresh-token grants",
    )
    oauth_credentials_path: Path = Field(
        default=Path("credentials.json"),
        description="Path to the OAuth client secrets file used by the connect command",
    )
    refresh_skew_seconds: int = Field(
        default=300,
        ge=0,
        description="Refresh access tokens this many seconds before they expire",
    )

    # Gmail Configuration
    gmail_scope: str = Field(
        default="https://www.googleapis.com/auth/gmail.readonly",
        description="OAuth scope used for Gmail access",
    )
    gmail_user_id: str = Field(
        default="me",
        description="Gmail API user id",
    )
    gmail_page_size: int = Field(
        default=100,
        ge=1,
        le=500,
        description="Number of message stubs requested per list page",
    )
    http_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Connect/read timeout for every remote call in seconds",
    )

    # Sync Configuration
    sync_max_messages: int = Field(
        default=100,
        ge=1,
        description="Per-owner message cap for routine sync cycles",
    )
    sync_concurrency: int = Field(
        default=4,
        ge=1,
        description="Maximum number of owners synced in parallel",
    )
    sync_interval_hours: float = Field(
        default=6.0,
        gt=0,
        description="Interval between routine sync cycles",
    )
    poll_interval_minutes: float = Field(
        default=30.0,
        ge=0,
        description="Interval between lightweight poll cycles (0 disables polling)",
    )
    poll_max_messages: int = Field(
        default=20,
        ge=1,
        description="Per-owner message cap for lightweight poll cycles",
    )

    # Retention Configuration
    retention_days: int = Field(
        default=365,
        ge=1,
        description="Messages received before now minus this many days are swept",
    )
    retention_hour: int = Field(
        default=2,
        ge=0,
        le=23,
        description="Local hour of day at which the daily retention sweep runs",
    )

    # Storage Configuration
    db_path: Path = Field(
        default=Path("mailbox_sync.sqlite3"),
        description="Path to the SQLite database holding credentials and messages",
    )

    # Application Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings: Application settings instance.
    """
    return Settings()
