"""Minimal file management inside one sandbox root.

Backs the local scratch-file commands: resolve a path, list files,
create (overwrite) a text file and read it back.  Only bare filenames
are accepted; anything with separators, dot segments or a leading dot is
refused before the filesystem is touched.
"""

from __future__ import annotations

import logging
from pathlib import Path

from stagegate.exceptions import InvalidPathError, PayloadTooLargeError, SourceNotFoundError
from stagegate.staging.audit import log_sandbox_operation
from stagegate.staging.config import StagingConfig
from stagegate.staging.paths import sanitize_path, validate_filename

logger = logging.getLogger(__name__)


def format_file_size(size_bytes: int) -> str:
    """Human-readable size (``1.5 MB``)."""
    size = float(size_bytes)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            return f"{int(size)} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"


class SandboxWorkspace:
    """File operations scoped to a sandbox root.

    Usage:
        workspace = SandboxWorkspace(config, root)
        path = workspace.write_file("notes.md", "# Notes")
        text = workspace.read_text("notes.md")
    """

    def __init__(self, config: StagingConfig, root: Path) -> None:
        self.config = config
        self.root = root

    def path_for(self, filename: str) -> Path:
        """Absolute path of a bare filename inside the sandbox.

        Raises:
            InvalidPathError: ``filename`` is not a bare filename.
            TraversalAttemptError: The resolved path escapes the sandbox.
        """
        error = validate_filename(filename)
        if error:
            raise InvalidPathError(error)
        return sanitize_path(filename, self.root)

    def list_files(self) -> list[str]:
        """Names of regular files in the sandbox, sorted."""
        try:
            names = sorted(p.name for p in self.root.iterdir() if p.is_file())
        except FileNotFoundError:
            names = []
        except OSError as e:
            log_sandbox_operation(
                "FILE_LIST_FAILED",
                details=f"Error: {e.strerror or type(e).__name__}",
                sandbox_root=self.root,
                level=logging.WARNING,
            )
            raise
        log_sandbox_operation("FILE_LIST", details=f"Files: {len(names)}", sandbox_root=self.root)
        return names

    def write_file(self, filename: str, content: str = "") -> Path:
        """Create or overwrite ``filename`` with UTF-8 text."""
        path = self.path_for(filename)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
        except OSError as e:
            log_sandbox_operation(
                "FILE_CREATE_FAILED",
                path.name,
                f"Error: {e.strerror or type(e).__name__}",
                sandbox_root=self.root,
                level=logging.WARNING,
            )
            raise
        log_sandbox_operation(
            "FILE_CREATED",
            path.name,
            f"Size: {len(content.encode('utf-8'))} bytes",
            sandbox_root=self.root,
        )
        return path

    def read_text(self, filename: str) -> str:
        """Read ``filename`` as UTF-8 text.

        Raises:
            SourceNotFoundError: File does not exist.
            PayloadTooLargeError: File exceeds ``tmp_max_read_size``.
        """
        path = self.path_for(filename)
        try:
            size = path.stat().st_size
        except FileNotFoundError as e:
            log_sandbox_operation(
                "FILE_READ_FAILED", path.name, "Reason: not found", sandbox_root=self.root
            )
            raise SourceNotFoundError(f"File not found: {path.name}") from e

        limit = self.config.tmp_max_read_size
        if size > limit:
            log_sandbox_operation(
                "FILE_READ_FAILED",
                path.name,
                f"Reason: File too large ({size} bytes)",
                sandbox_root=self.root,
            )
            raise PayloadTooLargeError(
                f"File too large ({format_file_size(size)}). Max allowed: {format_file_size(limit)}.",
                size_bytes=size,
                limit_bytes=limit,
            )

        text = path.read_text(encoding="utf-8", errors="replace")
        log_sandbox_operation("FILE_READ", path.name, f"Size: {size} bytes", sandbox_root=self.root)
        return text


__all__ = ["SandboxWorkspace", "format_file_size"]
