"""Release of staged handles and sweeping of stale sandboxes.

Two independent duties:

- ``release``: idempotent, never raises.  Memory handles drop their
  buffer; disk handles are only marked released, the referenced file is
  left alone.
- ``sweep_stale``: walks ``{base_dir}/users``, removes lock markers older
  than the lock timeout first, then removes sandbox roots whose mtime is
  older than the retention window and that hold no active lock.  Errors on
  one entry are logged and counted, the sweep carries on.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import shutil
import time
from collections.abc import AsyncIterator
from pathlib import Path

from pydantic import BaseModel, Field

from stagegate.staging.audit import log_sandbox_operation
from stagegate.staging.config import LOCK_FILE_NAME, StagingConfig
from stagegate.staging.locks import read_lock_timestamp
from stagegate.staging.router import StagedFile

logger = logging.getLogger(__name__)


class SweepResult(BaseModel):
    """Counts from one sweep pass."""

    roots_removed: int = Field(default=0, ge=0)
    locks_removed: int = Field(default=0, ge=0)
    errors: int = Field(default=0, ge=0)


class CleanupManager:
    """Releases staged handles and reclaims stale sandbox roots.

    Usage:
        cleanup = CleanupManager(config)
        await cleanup.initialize_cleanup()
        ...
        cleanup.release(staged)
    """

    def __init__(self, config: StagingConfig) -> None:
        self.config = config
        self._sweep_task: asyncio.Task[None] | None = None

    # -------------------------------------------------------------------------
    # Release
    # -------------------------------------------------------------------------

    def release(self, staged: StagedFile | None) -> None:
        """Release a staged handle.  Safe to call repeatedly; never raises."""
        if staged is None:
            return
        try:
            staged.release()
        except Exception:
            logger.exception("Failed to release staged file: %s", getattr(staged, "path", "?"))

    # -------------------------------------------------------------------------
    # Sweep
    # -------------------------------------------------------------------------

    async def sweep_stale(self) -> SweepResult:
        """Remove stale locks and stale sandbox roots.

        Returns:
            Counts of removed roots, removed locks and per-entry errors.
            All zero when multi-tenancy is disabled or nothing exists yet.
        """
        if not self.config.multi_tenant:
            return SweepResult()
        return await asyncio.to_thread(self._sweep, time.time())

    def _sweep(self, now: float) -> SweepResult:
        result = SweepResult()
        users_dir = self.config.users_dir
        try:
            entries = list(os.scandir(users_dir))
        except FileNotFoundError:
            return result
        except OSError as e:
            logger.warning("Cannot list sandbox directory %s: %s", users_dir, e)
            result.errors += 1
            return result

        for entry in entries:
            try:
                if not entry.is_dir(follow_symlinks=False):
                    continue
            except OSError:
                continue
            root = Path(entry.path)
            try:
                # Removing a lock bumps the root mtime, so age the root first
                age = now - root.stat().st_mtime
                if self._remove_stale_lock(root, now):
                    result.locks_removed += 1
                if self._remove_stale_root(root, age):
                    result.roots_removed += 1
            except FileNotFoundError:
                continue
            except OSError as e:
                result.errors += 1
                log_sandbox_operation(
                    "SANDBOX_CLEANUP_FAILED",
                    details=f"Error: {e.strerror or type(e).__name__}",
                    sandbox_root=root,
                    level=logging.WARNING,
                )
        return result

    def _lock_is_stale(self, lock_path: Path, now: float) -> bool:
        timestamp_ms = read_lock_timestamp(lock_path)
        if timestamp_ms is None:
            # Unreadable marker: age it by mtime instead
            created = lock_path.stat().st_mtime
        else:
            created = timestamp_ms / 1000
        return now - created > self.config.lock_timeout_seconds

    def _remove_stale_lock(self, root: Path, now: float) -> bool:
        lock_path = root / LOCK_FILE_NAME
        try:
            if not self._lock_is_stale(lock_path, now):
                return False
        except FileNotFoundError:
            return False
        lock_path.unlink(missing_ok=True)
        log_sandbox_operation("STALE_LOCK_REMOVED", sandbox_root=root)
        return True

    def _remove_stale_root(self, root: Path, age: float) -> bool:
        if (root / LOCK_FILE_NAME).exists():
            # Active lock survived the stale-lock pass
            return False
        if age <= self.config.retention_seconds:
            return False
        shutil.rmtree(root)
        log_sandbox_operation(
            "SANDBOX_CLEANED",
            details=f"Age: {int(age // 3600)} hours",
            sandbox_root=root,
        )
        return True

    async def initialize_cleanup(self) -> SweepResult:
        """Startup sweep.  Zero counts when sandboxing is disabled."""
        result = await self.sweep_stale()
        if self.config.multi_tenant:
            log_sandbox_operation(
                "STARTUP_CLEANUP",
                details=(
                    f"Sandboxes removed: {result.roots_removed}, "
                    f"Locks removed: {result.locks_removed}, Errors: {result.errors}"
                ),
                sandbox_root=self.config.users_dir,
            )
        return result

    # -------------------------------------------------------------------------
    # Periodic sweep
    # -------------------------------------------------------------------------

    def start_periodic_sweep(self, interval: float | None = None) -> asyncio.Task[None]:
        """Start a background sweep loop on the running event loop.

        Args:
            interval: Seconds between sweeps.  Defaults to
                ``config.sweep_interval_seconds``.

        Raises:
            ValueError: If no interval is given or configured.
        """
        interval = interval if interval is not None else self.config.sweep_interval_seconds
        if not interval or interval <= 0:
            raise ValueError("A positive sweep interval is required")
        if self._sweep_task is not None and not self._sweep_task.done():
            return self._sweep_task
        self._sweep_task = asyncio.create_task(self._sweep_loop(interval))
        return self._sweep_task

    async def stop_periodic_sweep(self) -> None:
        """Cancel the background sweep loop, if running."""
        task, self._sweep_task = self._sweep_task, None
        if task and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _sweep_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                result = await self.sweep_stale()
            except Exception:
                logger.exception("Periodic sandbox sweep failed")
                continue
            if result.roots_removed or result.locks_removed:
                logger.info(
                    "Periodic sweep removed %d sandboxes, %d locks",
                    result.roots_removed,
                    result.locks_removed,
                )


@contextlib.asynccontextmanager
async def staged_resource(
    cleanup: CleanupManager,
    staged: StagedFile,
) -> AsyncIterator[StagedFile]:
    """Yield ``staged`` and release it on exit, including on cancellation."""
    try:
        yield staged
    finally:
        cleanup.release(staged)


__all__ = ["CleanupManager", "SweepResult", "staged_resource"]
