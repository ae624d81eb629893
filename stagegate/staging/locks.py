"""Lock markers for sandbox roots.

A lock is a ``.lock`` file in the sandbox root holding JSON
``{"timestamp": <epoch ms>, "owner": <identity hash>}``.  Locks expire
after the configured timeout; expired or unreadable locks are removed
when inspected.  Only the identity hash is written, never the credential.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from stagegate.exceptions import SandboxLockedError
from stagegate.staging.audit import log_sandbox_operation
from stagegate.staging.config import LOCK_FILE_NAME, StagingConfig

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


def read_lock_timestamp(lock_path: Path) -> int | None:
    """Timestamp (epoch ms) stored in a lock file, or None if unreadable."""
    try:
        data = json.loads(lock_path.read_text(encoding="utf-8"))
        return int(data["timestamp"])
    except (OSError, ValueError, KeyError, TypeError):
        return None


class SandboxLock:
    """Advisory lock on one sandbox root.

    Usage:
        lock = SandboxLock(root, config, owner=identity_hash(token))
        with lock.held():
            ...
    """

    def __init__(self, sandbox_root: Path, config: StagingConfig, owner: str) -> None:
        self.sandbox_root = sandbox_root
        self.config = config
        self.owner = owner

    @property
    def lock_path(self) -> Path:
        return self.sandbox_root / LOCK_FILE_NAME

    def _read(self) -> dict | None:
        try:
            data = json.loads(self.lock_path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return None
        if not isinstance(data, dict) or "timestamp" not in data:
            return None
        return data

    def _remove(self) -> None:
        self.lock_path.unlink(missing_ok=True)

    def is_locked(self) -> bool:
        """True while a fresh lock exists.  Stale or corrupt locks are removed."""
        if not self.config.multi_tenant:
            return False
        if not self.lock_path.exists():
            return False

        data = self._read()
        if data is None:
            self._remove()
            return False

        try:
            age_ms = _now_ms() - int(data["timestamp"])
        except (TypeError, ValueError):
            self._remove()
            return False

        if age_ms > self.config.lock_timeout_seconds * 1000:
            self._remove()
            log_sandbox_operation("LOCK_EXPIRED", sandbox_root=self.sandbox_root)
            return False
        return True

    def acquire(self) -> bool:
        """Create the lock.  Returns False if someone already holds it."""
        if not self.config.multi_tenant:
            return True

        if self.is_locked():
            log_sandbox_operation(
                "LOCK_ACQUIRE_FAILED", details="Reason: Already locked", sandbox_root=self.sandbox_root
            )
            return False

        payload = json.dumps({"timestamp": _now_ms(), "owner": self.owner})
        try:
            # Exclusive create: a concurrent acquirer loses the race
            with self.lock_path.open("x", encoding="utf-8") as fh:
                fh.write(payload)
        except OSError:
            log_sandbox_operation(
                "LOCK_ACQUIRE_FAILED",
                details="Reason: Could not write lock file",
                sandbox_root=self.sandbox_root,
            )
            return False

        log_sandbox_operation(
            "LOCK_ACQUIRED",
            details=f"Timeout: {self.config.lock_timeout_seconds // 60} minutes",
            sandbox_root=self.sandbox_root,
        )
        return True

    def release(self) -> bool:
        """Remove the lock if this owner holds it (or it is corrupt)."""
        if not self.config.multi_tenant:
            return True

        if not self.lock_path.exists():
            log_sandbox_operation(
                "LOCK_RELEASE_NOT_NEEDED", details="Reason: No lock file exists", sandbox_root=self.sandbox_root
            )
            return True

        data = self._read()
        if data is None:
            self._remove()
            log_sandbox_operation(
                "LOCK_RELEASED", details="Reason: Lock file corrupted", sandbox_root=self.sandbox_root
            )
            return True

        if data.get("owner") != self.owner:
            log_sandbox_operation(
                "LOCK_RELEASE_FAILED", details="Reason: Owner mismatch", sandbox_root=self.sandbox_root
            )
            return False

        self._remove()
        log_sandbox_operation("LOCK_RELEASED", details="Reason: Manual release", sandbox_root=self.sandbox_root)
        return True

    @contextmanager
    def held(self) -> Iterator[None]:
        """Hold the lock for the duration of a block.

        Raises:
            SandboxLockedError: If the lock is already held.
        """
        if not self.acquire():
            raise SandboxLockedError("Sandbox is locked by another operation")
        try:
            yield
        finally:
            self.release()


__all__ = ["SandboxLock", "read_lock_timestamp"]
