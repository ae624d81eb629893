"""Security audit trail for sandbox operations.

Every sandbox event is written to the ``stagegate.audit`` logger as a
single line.  The per-identity hash directory is replaced with ``[HASH]``
so log files never tie an operation to a credential digest.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

audit_logger = logging.getLogger("stagegate.audit")

_HASH_SEGMENT = re.compile(r"([/\\]users[/\\])[0-9a-f]{64}")


def redact_sandbox_path(path: str | Path | None) -> str:
    """Replace the identity hash segment of a sandbox path with ``[HASH]``."""
    if path is None:
        return "-"
    return _HASH_SEGMENT.sub(r"\1[HASH]", str(path))


def log_sandbox_operation(
    operation: str,
    filename: str | None = None,
    details: str | None = None,
    *,
    sandbox_root: str | Path | None = None,
    level: int = logging.INFO,
) -> None:
    """Record a sandbox operation.

    Args:
        operation: Upper-case event name (e.g. ``FILE_STAGED``).
        filename: Bare name of the file involved, if any.
        details: Free-form detail.  Must never contain secrets.
        sandbox_root: Sandbox the operation touched; logged redacted.
        level: Logging level for the entry.
    """
    parts = [f"SANDBOX_OPERATION: {operation}"]
    if filename:
        parts.append(filename)
    parts.append(f"Path: {redact_sandbox_path(sandbox_root)}")
    if details:
        parts.append(details)
    audit_logger.log(level, " - ".join(parts))


__all__ = ["audit_logger", "log_sandbox_operation", "redact_sandbox_path"]
