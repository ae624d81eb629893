"""Extension and content-type validation for staged files.

Enforces the extension allowlist and cross-checks the claimed extension
against the type sniffed from leading bytes, so a renamed executable or
a spoofed image never stages.

Types with reliable magic numbers (images, video containers) must carry
the right signature.  Text-family types have none; their type is inferred
from the extension, and a missing signature is not an error.  A text
extension whose content *does* carry a binary signature is a mismatch.
"""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import BaseModel, Field

from stagegate.exceptions import ContentMismatchError, UnsupportedExtensionError
from stagegate.staging.config import ContentMismatchAction, StagingConfig

logger = logging.getLogger(__name__)

# Bytes of leading content the sniffer needs
SNIFF_BYTES = 4096


# =============================================================================
# MAGIC BYTE SIGNATURES
# =============================================================================

# (offset, signature, mime); checked in order
_MAGIC_SIGNATURES: list[tuple[int, bytes, str]] = [
    (0, b"\x89PNG\r\n\x1a\n", "image/png"),
    (0, b"\xff\xd8\xff", "image/jpeg"),
    (0, b"GIF87a", "image/gif"),
    (0, b"GIF89a", "image/gif"),
    (0, b"\x1a\x45\xdf\xa3", "video/x-matroska"),
    (4, b"ftyp", "video/mp4"),
]

# RIFF containers: the form type at offset 8 decides
_RIFF_FORMS: dict[bytes, str] = {
    b"WEBP": "image/webp",
    b"AVI ": "video/x-msvideo",
}


# =============================================================================
# CONTENT-TYPE MAPPING
# =============================================================================

# Extensions whose type is identified by signature
_BINARY_TYPES: dict[str, str] = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".mp4": "video/mp4",
    ".mkv": "video/x-matroska",
    ".webm": "video/webm",
    ".avi": "video/x-msvideo",
}

# Text family: inferred from the extension
_TEXT_TYPES: dict[str, str] = {
    ".txt": "text/plain",
    ".md": "text/markdown",
    ".gpx": "application/gpx+xml",
    ".html": "text/html",
    ".htm": "text/html",
    ".json": "application/json",
    ".xml": "application/xml",
    ".csv": "text/csv",
    ".js": "text/javascript",
    ".ts": "text/x-typescript",
    ".css": "text/css",
    ".py": "text/x-python",
    ".sh": "application/x-sh",
    ".yaml": "application/yaml",
    ".yml": "application/yaml",
    ".toml": "application/toml",
    ".svg": "image/svg+xml",
}

# Matroska and WebM share the EBML header
_EQUIVALENT: dict[str, frozenset[str]] = {
    "video/webm": frozenset({"video/webm", "video/x-matroska"}),
    "video/x-matroska": frozenset({"video/webm", "video/x-matroska"}),
}


def content_type_for_extension(extension: str) -> str:
    """MIME type implied by an extension (``application/octet-stream`` if unknown)."""
    ext = extension.lower()
    return _BINARY_TYPES.get(ext) or _TEXT_TYPES.get(ext) or "application/octet-stream"


def sniff_content_type(content: bytes) -> str | None:
    """Infer a MIME type from magic bytes.

    Returns:
        The sniffed type, or None when the content has no known signature
        (plain text, empty input, unknown formats).
    """
    if content.startswith(b"RIFF") and len(content) >= 12:
        return _RIFF_FORMS.get(content[8:12])
    for offset, signature, mime in _MAGIC_SIGNATURES:
        if content[offset : offset + len(signature)] == signature:
            return mime
    return None


def _types_agree(declared: str, sniffed: str) -> bool:
    return sniffed in _EQUIVALENT.get(declared, frozenset({declared}))


# =============================================================================
# RESULT
# =============================================================================


class ValidationResult(BaseModel):
    """Outcome of a successful validation."""

    filename: str
    extension: str
    content_type: str = Field(..., description="Type the file will be uploaded as")
    sniffed_type: str | None = Field(default=None, description="Type found in magic bytes")
    mismatch: bool = Field(default=False, description="Set when warn-only mode let a mismatch through")
    warnings: list[str] = Field(default_factory=list)


# =============================================================================
# VALIDATOR
# =============================================================================


class ContentValidator:
    """Validates extension allowlist membership and content consistency.

    Usage:
        validator = ContentValidator(config)
        result = validator.validate("chart.png", head_bytes)
    """

    def __init__(self, config: StagingConfig) -> None:
        self.config = config

    def check_extension(self, filename: str) -> str:
        """Return the lowercase extension, or raise if it is not allowed."""
        name = Path(filename.replace("\\", "/")).name
        ext = Path(name).suffix.lower()
        if not ext:
            logger.warning("File rejected (no extension): %r", name)
            raise UnsupportedExtensionError(
                f"File type not supported: {name} has no extension",
                extension="",
            )
        if ext not in self.config.allowed_extensions:
            logger.warning("File rejected (extension %s): %r", ext, name)
            supported = ", ".join(sorted(self.config.allowed_extensions))
            raise UnsupportedExtensionError(
                f"File type {ext} not supported. Supported types: {supported}",
                extension=ext,
            )
        return ext

    def _structural_problem(self, ext: str, content: bytes) -> str | None:
        """SVG is text, so it has no magic bytes to sniff."""
        if not content.strip():
            return None
        if ext == ".svg" and "<svg" not in content.decode("utf-8", errors="replace").lower():
            return "not valid SVG"
        return None

    def validate(self, filename: str, content: bytes) -> ValidationResult:
        """Validate ``filename`` and its (leading) ``content``.

        Args:
            filename: Declared name; only the extension matters here.
            content: Full content or at least the first ``SNIFF_BYTES``.

        Raises:
            UnsupportedExtensionError: Extension missing or not allowed.
            ContentMismatchError: Sniffed type contradicts the extension and
                the mismatch action is ``reject``.
        """
        ext = self.check_extension(filename)
        name = Path(filename.replace("\\", "/")).name
        declared = content_type_for_extension(ext)
        sniffed = sniff_content_type(content[:SNIFF_BYTES])

        problem: str | None = None
        if ext in _BINARY_TYPES:
            if sniffed is None or not _types_agree(declared, sniffed):
                problem = f"content does not match {ext} signature"
        elif sniffed is not None:
            problem = f"{ext} file carries a {sniffed} signature"
        else:
            problem = self._structural_problem(ext, content)

        result = ValidationResult(
            filename=name,
            extension=ext,
            content_type=declared,
            sniffed_type=sniffed,
        )
        if problem is None:
            return result

        if self.config.content_mismatch_action == ContentMismatchAction.REJECT:
            logger.warning("File rejected (%s): %r", problem, name)
            raise ContentMismatchError(
                f"File rejected: {name} {problem}",
                declared_type=declared,
                sniffed_type=sniffed,
            )

        logger.warning("Content mismatch allowed by policy (%s): %r", problem, name)
        result.mismatch = True
        result.warnings.append(problem)
        return result


__all__ = [
    "SNIFF_BYTES",
    "ContentValidator",
    "ValidationResult",
    "content_type_for_extension",
    "sniff_content_type",
]
