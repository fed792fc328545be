"""
Configuration: typed, validated settings loaded from environment/.env.

Uses pydantic-settings to:
  - Load from environment variables (12-factor app)
  - Fall back to .env file
  - Validate types and constraints at startup
  - Keep secrets out of source control

Only AppSettings is a BaseSettings instance. Sub-settings are plain BaseModel
classes populated by AppSettings via env_nested_delimiter="__", so the env var
LINE__CHANNEL_ID maps to line.channel_id, DATASTORE__URL to datastore.url, etc.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve the .env file relative to the project root (two levels above this file),
# so settings load correctly regardless of the working directory at runtime.
_ENV_FILE = Path(__file__).parent.parent.parent / ".env"


class LineSettings(BaseModel):
    """
    LINE Login channel configuration.

    ``access_token`` is normally supplied per session by the LIFF front end;
    setting it here is meant for local runs.
    """

    channel_id: str = Field(description="LINE Login channel ID")
    access_token: SecretStr | None = Field(default=None, description="LIFF access token")
    api_base_url: str = Field(default="https://api.line.me", description="LINE API base URL")


class DatastoreSettings(BaseModel):
    """Member datastore (PostgREST) configuration."""

    url: str = Field(description="PostgREST base URL, e.g. https://xyz.supabase.co/rest/v1")
    api_key: SecretStr = Field(description="API key sent as apikey and Bearer token")
    members_table: str = Field(default="members", description="Members table name")


class CacheSettings(BaseModel):
    """Registration status cache."""

    ttl_hours: float = Field(default=24, gt=0, description="Entry lifetime in hours")
    key_prefix: str = Field(default="registration_status", min_length=1)

    @property
    def ttl_ms(self) -> int:
        return int(self.ttl_hours * 60 * 60 * 1000)


class AnalyticsSettings(BaseModel):
    max_events: int = Field(default=1000, ge=1, description="Events kept in the bounded log")
    storage_key: str = Field(default="registration_analytics", min_length=1)


class WelcomeSettings(BaseModel):
    """
    New-member welcome screen.

    ``auto_hide_delay_ms`` of None or 0 keeps the welcome until the user
    dismisses it.
    """

    auto_hide_delay_ms: int | None = Field(default=5000, description="Welcome auto-hide delay")

    @field_validator("auto_hide_delay_ms")
    @classmethod
    def non_negative(cls, value: int | None) -> int | None:
        if value is not None and value < 0:
            raise ValueError(f"auto_hide_delay_ms must be >= 0, got {value}")
        return value


class StorageSettings(BaseModel):
    """Durable key-value storage. Without a path everything stays in memory."""

    path: Path | None = Field(default=None, description="JSON file backing the key-value store")


class AppSettings(BaseSettings):
    """
    Root application settings, aggregating all sub-settings.

    Load order (highest priority first):
      1. Environment variables
      2. .env file
      3. Default values
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    line: LineSettings
    datastore: DatastoreSettings
    cache: CacheSettings = Field(default_factory=lambda: CacheSettings())
    analytics: AnalyticsSettings = Field(default_factory=lambda: AnalyticsSettings())
    welcome: WelcomeSettings = Field(default_factory=lambda: WelcomeSettings())
    storage: StorageSettings = Field(default_factory=lambda: StorageSettings())

    http_timeout_seconds: float = Field(default=10, gt=0)
    log_level: str = Field(default="INFO")
