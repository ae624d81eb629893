"""Credential detection for files about to leave the machine.

Three stages, cheapest first:

1. Filename fast-path: ``.env`` and its variants are rejected without
   reading a byte of content.
2. Binary short-circuit: content containing a NUL byte (or flagged as
   binary by the caller) skips body scanning.
3. Pattern scan: a fixed list of category-tagged, case-insensitive
   regular expressions runs over the decoded text; the first hit wins.

Patterns only use bounded or single-class repetitions after a literal
anchor, so matching stays linear in the input size.  Ambiguous matches
count as detections.

Findings never carry the matched text.  Messages name the category and
a remediation hint only.
"""

from __future__ import annotations

import logging
import re
from enum import StrEnum
from pathlib import Path

from pydantic import BaseModel, Field

from stagegate.exceptions import SecretDetectedError
from stagegate.staging.audit import log_sandbox_operation

logger = logging.getLogger(__name__)


class SecretCategory(StrEnum):
    """Kinds of credential the scanner recognizes."""

    ENVIRONMENT_FILE = "environment-file"
    API_KEY = "api-key"
    PASSWORD = "password"  # noqa: S105
    GENERIC_SECRET = "generic-secret"  # noqa: S105
    TOKEN = "token"  # noqa: S105
    PRIVATE_KEY = "private-key"
    CLOUD_CREDENTIAL = "cloud-credential"


class SecretFinding(BaseModel):
    """Result of a scan.  Ephemeral: never persisted."""

    detected: bool = Field(..., description="Whether a secret was found")
    category: SecretCategory | None = Field(default=None, description="What was found")
    message: str = Field(default="", description="Safe, value-free explanation")


# =============================================================================
# FILENAME FAST-PATH
# =============================================================================

# Exact names (lowercase) that always hold environment secrets
_SENSITIVE_NAMES: frozenset[str] = frozenset(
    {
        ".env",
        ".envrc",
        ".env.local",
        ".env.development",
        ".env.production",
        ".env.staging",
        ".env.test",
        ".env.backup",
        ".flaskenv",
    }
)


def is_sensitive_filename(filename: str) -> bool:
    """True for env files and their variants (``.env.*``, ``*.env``)."""
    name = Path(filename.replace("\\", "/")).name.lower()
    if not name:
        return False
    return (
        name in _SENSITIVE_NAMES
        or name.startswith(".env.")
        or name.endswith(".env")
    )


# =============================================================================
# PATTERNS
# =============================================================================

_ASSIGN = r"""\s{0,8}["']?\s{0,8}[:=]\s{0,8}["']?"""
_VALUE = r"""[^\s"'`,;]"""
# Keyword start: underscores count as separators (DB_PASSWORD, my_token)
_KEY_START = r"(?<![A-Za-z0-9])"

# Order matters only for which category is reported; first match wins.
_PATTERNS: list[tuple[SecretCategory, re.Pattern[str]]] = [
    (
        SecretCategory.PRIVATE_KEY,
        re.compile(r"-----BEGIN[A-Z ]{0,32}PRIVATE KEY(?: BLOCK)?-----", re.IGNORECASE),
    ),
    (
        SecretCategory.CLOUD_CREDENTIAL,
        re.compile(r"\b(?:AKIA|ASIA|AGPA|AIDA|AROA|ANPA|ANVA|AIPA)[A-Z0-9]{16}\b", re.IGNORECASE),
    ),
    (
        SecretCategory.CLOUD_CREDENTIAL,
        re.compile(_KEY_START + r"aws_?secret_?access_?key" + _ASSIGN + _VALUE + r"{16}", re.IGNORECASE),
    ),
    (
        SecretCategory.CLOUD_CREDENTIAL,
        re.compile(r"\bAIza[0-9A-Za-z_\-]{35}"),
    ),
    (
        SecretCategory.API_KEY,
        re.compile(_KEY_START + r"(?:x[_-]?)?api[_-]?key" + _ASSIGN + _VALUE + r"{8}", re.IGNORECASE),
    ),
    (
        SecretCategory.TOKEN,
        re.compile(
            _KEY_START
            + r"(?:access|refresh|auth|id|session|bearer)?[_-]?token" + _ASSIGN + _VALUE + r"{8}",
            re.IGNORECASE,
        ),
    ),
    (
        SecretCategory.TOKEN,
        re.compile(r"\bbearer\s+[A-Za-z0-9\-._~+/]{16}", re.IGNORECASE),
    ),
    (
        SecretCategory.GENERIC_SECRET,
        re.compile(
            _KEY_START
            + r"(?:client[_-]?secret|secret[_-]?key|app[_-]?secret|secret)" + _ASSIGN + _VALUE + r"{6}",
            re.IGNORECASE,
        ),
    ),
    (
        SecretCategory.PASSWORD,
        re.compile(_KEY_START + r"(?:password|passwd|pwd|pass)" + _ASSIGN + _VALUE + r"{4}", re.IGNORECASE),
    ),
]

# Longest prefix a pattern needs before its value; used for chunk overlap
_CHUNK_OVERLAP = 256
_CHUNK_SIZE = 1024 * 1024

_REMEDIATION = {
    SecretCategory.ENVIRONMENT_FILE: "Environment files must never be uploaded.",
    SecretCategory.API_KEY: "Remove the API key or load it from a secret store.",
    SecretCategory.PASSWORD: "Remove the password before uploading.",
    SecretCategory.GENERIC_SECRET: "Remove the secret value before uploading.",
    SecretCategory.TOKEN: "Remove or revoke the token before uploading.",
    SecretCategory.PRIVATE_KEY: "Private keys must never be uploaded.",
    SecretCategory.CLOUD_CREDENTIAL: "Remove and rotate the cloud credential.",
}


def _finding(filename: str, category: SecretCategory) -> SecretFinding:
    name = Path(filename.replace("\\", "/")).name or "file"
    return SecretFinding(
        detected=True,
        category=category,
        message=f"File rejected: {name} appears to contain a secret ({category.value}). {_REMEDIATION[category]}",
    )


_CLEAN = SecretFinding(detected=False)


def is_binary(content: bytes) -> bool:
    """Binary heuristic: any NUL byte."""
    return b"\x00" in content


class SecretScanner:
    """Synchronous credential scanner.

    Usage:
        scanner = SecretScanner()
        finding = scanner.scan("config.yml", data)
        scanner.ensure_clean("config.yml", data)  # raises SecretDetectedError
    """

    def __init__(
        self,
        patterns: list[tuple[SecretCategory, re.Pattern[str]]] | None = None,
    ) -> None:
        self.patterns = patterns if patterns is not None else _PATTERNS

    def check_filename(self, filename: str) -> SecretFinding:
        """Extension/name fast-path.  Never reads content."""
        if is_sensitive_filename(filename):
            return _finding(filename, SecretCategory.ENVIRONMENT_FILE)
        return _CLEAN

    def scan_text(self, filename: str, text: str) -> SecretFinding:
        """Run the pattern set over decoded text."""
        for category, pattern in self.patterns:
            if pattern.search(text):
                return _finding(filename, category)
        return _CLEAN

    def scan(
        self,
        filename: str,
        content: bytes | None = None,
        *,
        binary: bool = False,
    ) -> SecretFinding:
        """Scan a filename and, for text content, its body.

        Args:
            filename: Name (or path) of the file; only its basename is reported.
            content: File bytes.  None limits the scan to the filename.
            binary: Caller already knows the content is binary.
        """
        finding = self.check_filename(filename)
        if finding.detected or content is None:
            return finding
        if binary or is_binary(content):
            return _CLEAN
        return self.scan_text(filename, content.decode("utf-8", errors="replace"))

    def scan_file(self, path: Path, *, chunk_size: int = _CHUNK_SIZE) -> SecretFinding:
        """Scan a file on disk without materializing it.

        Reads fixed-size chunks with a small overlap so a pattern split
        across a boundary is still seen.  A NUL byte anywhere marks the
        file binary and ends body scanning.
        """
        finding = self.check_filename(path.name)
        if finding.detected:
            return finding

        tail = ""
        with path.open("rb") as fh:
            while True:
                chunk = fh.read(chunk_size)
                if not chunk:
                    return _CLEAN
                if is_binary(chunk):
                    logger.debug("Binary content, body scan skipped: %s", path.name)
                    return _CLEAN
                text = tail + chunk.decode("utf-8", errors="replace")
                result = self.scan_text(path.name, text)
                if result.detected:
                    return result
                tail = text[-_CHUNK_OVERLAP:]

    def ensure_clean(
        self,
        filename: str,
        content: bytes | None = None,
        *,
        binary: bool = False,
    ) -> None:
        """Like :meth:`scan` but raises on detection."""
        raise_for_finding(self.scan(filename, content, binary=binary))


def raise_for_finding(finding: SecretFinding) -> None:
    """Raise ``SecretDetectedError`` for a positive finding."""
    if not finding.detected or finding.category is None:
        return
    log_sandbox_operation(
        "SECRET_DETECTED",
        details=f"Category: {finding.category.value}",
        level=logging.WARNING,
    )
    raise SecretDetectedError(finding.message, category=finding.category.value)


__all__ = [
    "SecretCategory",
    "SecretFinding",
    "SecretScanner",
    "is_binary",
    "is_sensitive_filename",
    "raise_for_finding",
]
