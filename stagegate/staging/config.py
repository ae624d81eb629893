"""Staging configuration passed to every pipeline component.

A single immutable model replaces process-wide constants: each component
receives the config it was built with, so two pipelines with different
limits can coexist in one process.
"""

from __future__ import annotations

from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

if TYPE_CHECKING:
    from stagegate.settings import Settings

MEMORY_THRESHOLD_BYTES = 5 * 1024 * 1024  # 5,242,880
SANDBOX_RETENTION_SECONDS = 24 * 60 * 60
LOCK_TIMEOUT_SECONDS = 30 * 60
USERS_DIR_NAME = "users"
LOCK_FILE_NAME = ".lock"

DEFAULT_ALLOWED_EXTENSIONS: frozenset[str] = frozenset(
    {
        ".txt",
        ".md",
        ".gpx",
        ".html",
        ".htm",
        ".json",
        ".xml",
        ".csv",
        ".js",
        ".ts",
        ".css",
        ".py",
        ".sh",
        ".yaml",
        ".yml",
        ".toml",
        ".mp4",
        ".mkv",
        ".webm",
        ".avi",
        ".png",
        ".jpg",
        ".jpeg",
        ".gif",
        ".webp",
        ".svg",
    }
)


class ContentMismatchAction(StrEnum):
    """Policy for sniffed-type vs. extension disagreements."""

    REJECT = "reject"  # Default: spoofed content never stages
    WARN = "warn"  # Log and continue


class StagingConfig(BaseModel):
    """Complete staging configuration.

    Policies are immutable after creation.
    """

    model_config = ConfigDict(frozen=True)

    base_dir: Path = Field(
        default_factory=lambda: Path.home() / ".zipline_tmp",
        description="Base directory for sandboxes",
    )
    multi_tenant: bool = Field(
        default=True,
        description="Isolate each identity in its own hashed sandbox",
    )

    allowed_extensions: frozenset[str] = Field(
        default=DEFAULT_ALLOWED_EXTENSIONS,
        description="Extensions permitted to stage (lowercase, with dot)",
    )
    content_mismatch_action: ContentMismatchAction = Field(
        default=ContentMismatchAction.REJECT,
        description="Reject or warn on content spoofing",
    )

    memory_threshold_bytes: int = Field(
        default=MEMORY_THRESHOLD_BYTES,
        ge=1,
        description="Strict upper bound for in-memory staging",
    )
    max_file_size_bytes: int = Field(
        default=100 * 1024 * 1024,
        ge=1,
        description="Rejection boundary for any staged file",
    )
    tmp_max_read_size: int = Field(
        default=1024 * 1024,
        ge=1,
        description="Largest sandbox file returned as text",
    )

    retention_seconds: int = Field(
        default=SANDBOX_RETENTION_SECONDS,
        ge=1,
        description="Sandbox roots older than this are stale",
    )
    lock_timeout_seconds: int = Field(
        default=LOCK_TIMEOUT_SECONDS,
        ge=1,
        description="Lock markers older than this are stale",
    )
    sweep_interval_seconds: int | None = Field(
        default=None,
        ge=1,
        description="Periodic sweep interval (None = startup only)",
    )

    download_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for external downloads",
    )

    @field_validator("allowed_extensions", mode="before")
    @classmethod
    def _normalize_extensions(cls, value: Any) -> frozenset[str]:
        exts = {str(e).strip().lower() for e in value if str(e).strip()}
        return frozenset(e if e.startswith(".") else f".{e}" for e in exts)

    @property
    def users_dir(self) -> Path:
        """Parent directory of all per-identity sandboxes."""
        return self.base_dir / USERS_DIR_NAME

    @classmethod
    def from_settings(cls, settings: Settings) -> StagingConfig:
        """Build a staging config from application settings."""
        return cls(
            base_dir=settings.sandbox_base_dir.expanduser(),
            multi_tenant=not settings.zipline_disable_sandboxing,
            allowed_extensions=settings.allowed_extensions,
            content_mismatch_action=settings.content_mismatch_action,
            memory_threshold_bytes=settings.memory_threshold_bytes,
            max_file_size_bytes=settings.max_file_size_bytes,
            tmp_max_read_size=settings.tmp_max_read_size,
            retention_seconds=settings.sandbox_retention_seconds,
            lock_timeout_seconds=settings.lock_timeout_seconds,
            sweep_interval_seconds=settings.sweep_interval_seconds,
            download_timeout_seconds=settings.download_timeout_seconds,
        )


__all__ = [
    "DEFAULT_ALLOWED_EXTENSIONS",
    "LOCK_FILE_NAME",
    "LOCK_TIMEOUT_SECONDS",
    "MEMORY_THRESHOLD_BYTES",
    "SANDBOX_RETENTION_SECONDS",
    "USERS_DIR_NAME",
    "ContentMismatchAction",
    "StagingConfig",
]
