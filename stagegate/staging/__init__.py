"""Secure staging of untrusted files before upload.

Every file passes path sanitization, per-identity sandbox isolation,
secret scanning and extension/content validation, then is held either
in memory or by reference on disk until it is released.
"""

from stagegate.staging.cleanup import CleanupManager, SweepResult, staged_resource
from stagegate.staging.config import ContentMismatchAction, StagingConfig
from stagegate.staging.content import ContentValidator, ValidationResult, sniff_content_type
from stagegate.staging.downloads import download_external_url
from stagegate.staging.identity import SandboxResolver, identity_hash
from stagegate.staging.locks import SandboxLock
from stagegate.staging.paths import sanitize_path, validate_filename, validate_sandbox_path
from stagegate.staging.pipeline import StagingPipeline
from stagegate.staging.router import DiskStagedFile, MemoryStagedFile, StagedFile, StagingRouter
from stagegate.staging.secrets import SecretCategory, SecretFinding, SecretScanner
from stagegate.staging.workspace import SandboxWorkspace

__all__ = [
    # Config
    "StagingConfig",
    "ContentMismatchAction",
    # Gates
    "sanitize_path",
    "validate_sandbox_path",
    "validate_filename",
    "SandboxResolver",
    "identity_hash",
    "SecretScanner",
    "SecretCategory",
    "SecretFinding",
    "ContentValidator",
    "ValidationResult",
    "sniff_content_type",
    # Staging
    "StagingRouter",
    "StagedFile",
    "MemoryStagedFile",
    "DiskStagedFile",
    "StagingPipeline",
    # Cleanup
    "CleanupManager",
    "SweepResult",
    "staged_resource",
    "SandboxLock",
    # Sandbox files
    "SandboxWorkspace",
    "download_external_url",
]
