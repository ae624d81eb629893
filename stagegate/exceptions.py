"""Stagegate exception hierarchy.

Every gate of the staging pipeline fails with a typed rejection.  Each
error carries a correlation_id for tracing across layers and a ``kind``
that callers can map to their own transport-level error codes.

Usage:
    from stagegate.exceptions import SecretDetectedError, StagegateError

    try:
        handle = await pipeline.stage_file("notes.txt")
    except SecretDetectedError as e:
        logger.warning("Rejected %s (%s): %s", e.category, e.correlation_id, e)
"""

import uuid
from enum import StrEnum


class ErrorKind(StrEnum):
    """Rejection categories exposed to callers."""

    INVALID_PATH = "invalid_path"
    TRAVERSAL_ATTEMPT = "traversal_attempt"
    UNSUPPORTED_EXTENSION = "unsupported_extension"
    CONTENT_MISMATCH = "content_mismatch"
    SECRET_DETECTED = "secret_detected"
    PAYLOAD_TOO_LARGE = "payload_too_large"
    ALLOCATION_FAILURE = "allocation_failure"
    NOT_FOUND = "not_found"
    CONFIGURATION = "configuration"
    DOWNLOAD_FAILED = "download_failed"
    LOCKED = "locked"


class StagegateError(Exception):
    """Base exception for all staging errors.

    Carries a correlation_id for tracing errors across layers.
    """

    kind: ErrorKind = ErrorKind.INVALID_PATH

    def __init__(self, message: str, *, correlation_id: str | None = None):
        self.correlation_id = correlation_id or str(uuid.uuid4())
        super().__init__(message)


class InvalidPathError(StagegateError, ValueError):
    """Malformed candidate path: empty, whitespace-only, null bytes, absolute."""

    kind = ErrorKind.INVALID_PATH


class TraversalAttemptError(StagegateError, ValueError):
    """Candidate path resolves outside its sandbox root."""

    kind = ErrorKind.TRAVERSAL_ATTEMPT


class UnsupportedExtensionError(StagegateError):
    """File extension is missing or not on the allow-list."""

    kind = ErrorKind.UNSUPPORTED_EXTENSION

    def __init__(self, message: str, *, extension: str = "", **kwargs):
        self.extension = extension
        super().__init__(message, **kwargs)


class ContentMismatchError(StagegateError):
    """Sniffed content type disagrees with the declared extension."""

    kind = ErrorKind.CONTENT_MISMATCH

    def __init__(
        self,
        message: str,
        *,
        declared_type: str | None = None,
        sniffed_type: str | None = None,
        **kwargs,
    ):
        self.declared_type = declared_type
        self.sniffed_type = sniffed_type
        super().__init__(message, **kwargs)


class SecretDetectedError(StagegateError):
    """Content or filename looks like it holds a credential.

    The message never contains the matched value.
    """

    kind = ErrorKind.SECRET_DETECTED

    def __init__(self, message: str, *, category: str, **kwargs):
        self.category = category
        super().__init__(message, **kwargs)


class PayloadTooLargeError(StagegateError):
    """Source exceeds a configured size limit."""

    kind = ErrorKind.PAYLOAD_TOO_LARGE

    def __init__(
        self,
        message: str,
        *,
        size_bytes: int | None = None,
        limit_bytes: int | None = None,
        **kwargs,
    ):
        self.size_bytes = size_bytes
        self.limit_bytes = limit_bytes
        super().__init__(message, **kwargs)


class AllocationFailureError(StagegateError):
    """Buffering a file in memory failed.

    Internal only: the router converts it into a disk-staging fallback.
    """

    kind = ErrorKind.ALLOCATION_FAILURE


class SourceNotFoundError(StagegateError, FileNotFoundError):
    """Source file to stage does not exist."""

    kind = ErrorKind.NOT_FOUND


class ConfigurationError(StagegateError):
    """Errors from application configuration (e.g. missing credential)."""

    kind = ErrorKind.CONFIGURATION


class DownloadError(StagegateError):
    """Fetching an external URL into the sandbox failed."""

    kind = ErrorKind.DOWNLOAD_FAILED

    def __init__(self, message: str, *, status_code: int | None = None, **kwargs):
        self.status_code = status_code
        super().__init__(message, **kwargs)


class SandboxLockedError(StagegateError):
    """Sandbox root is locked by another operation."""

    kind = ErrorKind.LOCKED
