"""Application settings using pydantic-settings.

Loads configuration from environment variables with .env file support.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from stagegate.staging.config import DEFAULT_ALLOWED_EXTENSIONS


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,  # Allow both field name and alias
    )

    # Environment
    environment: Literal["development", "staging", "production", "testing"] = "development"
    debug: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Identity
    zipline_token: SecretStr = Field(
        default=SecretStr(""),
        description="Credential that scopes the per-identity sandbox",
        validation_alias=AliasChoices("zipline_token", "stagegate_token"),
    )
    zipline_disable_sandboxing: bool = Field(
        default=False,
        description="Use one shared staging root instead of per-identity sandboxes",
    )

    # Sandbox layout
    sandbox_base_dir: Path = Field(
        default_factory=lambda: Path.home() / ".zipline_tmp",
        description="Base directory holding the per-identity sandboxes",
    )

    # Content gates
    allowed_extensions: list[str] = Field(
        default_factory=lambda: sorted(DEFAULT_ALLOWED_EXTENSIONS),
        description="File extensions that may be staged",
    )
    content_mismatch_action: Literal["reject", "warn"] = Field(
        default="reject",
        description="What to do when sniffed content disagrees with the extension",
    )

    # Size limits
    memory_threshold_bytes: int = Field(
        default=5 * 1024 * 1024,
        ge=1,
        description="Files strictly below this size are buffered in memory",
    )
    max_file_size_bytes: int = Field(
        default=100 * 1024 * 1024,
        ge=1,
        description="Files above this size are rejected outright",
    )
    tmp_max_read_size: int = Field(
        default=1024 * 1024,
        ge=1,
        description="Largest sandbox file returned by a text read",
    )

    # Cleanup
    sandbox_retention_seconds: int = Field(
        default=24 * 60 * 60,
        ge=60,
        description="Sandboxes untouched for longer than this are swept",
    )
    lock_timeout_seconds: int = Field(
        default=30 * 60,
        ge=1,
        description="Lock markers older than this are considered stale",
    )
    sweep_interval_seconds: int | None = Field(
        default=None,
        ge=60,
        description="Periodic sweep interval (None = startup sweep only)",
    )

    # Downloads
    download_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=600,
        description="Timeout for fetching external URLs into the sandbox",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Uses lru_cache to ensure settings are loaded once and reused.
    """
    return Settings()
