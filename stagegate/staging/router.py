"""Memory-first staging with disk fallback.

Per-call state machine:

    SizeCheck -> MemoryAttempt -> Staged(memory)
         |            |
         |            +-- allocation failure or growth --+
         v                                               v
    (size >= threshold) ----------------------------> DiskFallback -> Staged(disk)

A file whose size equals the threshold goes to disk: the memory branch
uses a strict less-than comparison.

Disk staging never copies the source.  The handle references the
original path and cleanup never deletes it; the caller keeps ownership.
Because no buffer was scanned, disk staging re-runs the secret scanner
over the file in streaming mode.

Large bytes handed in by the caller are written to a new file (never over
an existing one) and removed again if disk staging rejects them.
"""

from __future__ import annotations

import asyncio
import logging
import os
import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import ClassVar, Literal

from stagegate.exceptions import AllocationFailureError, InvalidPathError, SourceNotFoundError
from stagegate.staging.audit import log_sandbox_operation
from stagegate.staging.config import StagingConfig
from stagegate.staging.content import SNIFF_BYTES
from stagegate.staging.secrets import SecretScanner, raise_for_finding

logger = logging.getLogger(__name__)


# =============================================================================
# STAGED FILE VARIANTS
# =============================================================================


@dataclass(eq=False)
class MemoryStagedFile:
    """Content buffered in memory.  Owns its buffer."""

    kind: ClassVar[Literal["memory"]] = "memory"

    path: Path  # provenance only
    content: bytes | None
    size: int = field(init=False)

    def __post_init__(self) -> None:
        self.size = len(self.content or b"")

    @property
    def released(self) -> bool:
        return self.content is None

    def release(self) -> None:
        """Drop the buffer reference.  Safe to call repeatedly."""
        self.content = None


@dataclass(eq=False)
class DiskStagedFile:
    """Reference to a file left on disk.  Does not own the file."""

    kind: ClassVar[Literal["disk"]] = "disk"

    path: Path
    size: int
    released: bool = False

    def release(self) -> None:
        """Mark the handle released.  The file itself is never touched."""
        self.released = True


StagedFile = MemoryStagedFile | DiskStagedFile


# =============================================================================
# ROUTER
# =============================================================================


class StagingRouter:
    """Chooses memory or disk staging for a validated file.

    Usage:
        router = StagingRouter(config)
        staged = await router.stage(resolved_path)
        try:
            upload(staged)
        finally:
            cleanup.release(staged)
    """

    def __init__(
        self,
        config: StagingConfig,
        scanner: SecretScanner | None = None,
    ) -> None:
        self.config = config
        self.scanner = scanner or SecretScanner()

    def fits_in_memory(self, size: int) -> bool:
        return size < self.config.memory_threshold_bytes

    async def size_of(self, path: Path) -> int:
        """Size from metadata only.

        Raises:
            SourceNotFoundError: ``path`` is missing or not a regular file.
        """
        try:
            st = await asyncio.to_thread(os.stat, path)
        except FileNotFoundError as e:
            raise SourceNotFoundError(f"File not found: {path.name}") from e
        if not stat.S_ISREG(st.st_mode):
            raise SourceNotFoundError(f"Not a regular file: {path.name}")
        return st.st_size

    async def _read_into_memory(self, path: Path) -> bytes | None:
        """Buffer ``path``, or return None if it no longer fits the threshold."""
        limit = self.config.memory_threshold_bytes
        try:
            data = await asyncio.to_thread(self._read_bounded, path, limit)
        except MemoryError as e:
            raise AllocationFailureError(f"Could not buffer {path.name} in memory") from e
        except FileNotFoundError as e:
            raise SourceNotFoundError(f"File not found: {path.name}") from e
        if not self.fits_in_memory(len(data)):
            logger.warning("File grew past the memory threshold, falling back to disk: %s", path.name)
            log_sandbox_operation("STAGING_FALLBACK", path.name, "Reason: size changed")
            return None
        return data

    @staticmethod
    def _read_bounded(path: Path, limit: int) -> bytes:
        with path.open("rb") as fh:
            return fh.read(limit + 1)

    async def try_load(self, path: Path) -> bytes | None:
        """Read ``path`` fully, or return None when it must go to disk."""
        try:
            return await self._read_into_memory(path)
        except AllocationFailureError:
            logger.warning("Memory allocation failed, falling back to disk: %s", path.name)
            log_sandbox_operation("STAGING_FALLBACK", path.name, "Reason: allocation failure")
            return None

    async def read_head(self, path: Path, size: int = SNIFF_BYTES) -> bytes:
        """Leading bytes of ``path`` for content sniffing."""

        def _read() -> bytes:
            with path.open("rb") as fh:
                return fh.read(size)

        try:
            return await asyncio.to_thread(_read)
        except FileNotFoundError as e:
            raise SourceNotFoundError(f"File not found: {path.name}") from e

    async def stage(self, resolved_path: Path, source_bytes: bytes | None = None) -> StagedFile:
        """Stage ``resolved_path`` (or ``source_bytes`` already in hand).

        Secret scanning and content validation must have passed upstream.

        Args:
            resolved_path: Sanitized absolute path of the file.
            source_bytes: Content already read by the caller, if any.  When
                large, it is written to a new file at ``resolved_path`` so
                the disk handle has something to reference.

        Returns:
            A memory or disk staged handle.

        Raises:
            InvalidPathError: Large ``source_bytes`` would replace an
                existing file.
        """
        # SizeCheck
        if source_bytes is not None:
            size = len(source_bytes)
        else:
            size = await self.size_of(resolved_path)

        # MemoryAttempt
        if self.fits_in_memory(size):
            content = source_bytes if source_bytes is not None else await self.try_load(resolved_path)
            if content is not None:
                staged = MemoryStagedFile(path=resolved_path, content=content)
                log_sandbox_operation("FILE_STAGED", resolved_path.name, f"Mode: memory, Size: {staged.size}")
                return staged

        # DiskFallback
        if source_bytes is None:
            return await self.stage_on_disk(resolved_path)

        await asyncio.to_thread(self._write_source, resolved_path, source_bytes)
        try:
            return await self.stage_on_disk(resolved_path)
        except BaseException:
            resolved_path.unlink(missing_ok=True)
            raise

    async def stage_on_disk(self, resolved_path: Path) -> DiskStagedFile:
        """Disk-mode staging: re-scan the file in place and reference it."""
        size = await self.size_of(resolved_path)
        finding = await asyncio.to_thread(self.scanner.scan_file, resolved_path)
        raise_for_finding(finding)
        staged = DiskStagedFile(path=resolved_path, size=size)
        log_sandbox_operation("FILE_STAGED", resolved_path.name, f"Mode: disk, Size: {size}")
        return staged

    @staticmethod
    def _write_source(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fh = path.open("xb")
        except FileExistsError as e:
            raise InvalidPathError(f"File already exists: {path.name}") from e
        try:
            with fh:
                fh.write(data)
        except OSError:
            path.unlink(missing_ok=True)
            raise


__all__ = ["DiskStagedFile", "MemoryStagedFile", "StagedFile", "StagingRouter"]
