"""Path sanitization for caller-supplied filenames.

Turns an untrusted relative candidate into an absolute path that is
guaranteed to sit strictly inside a sandbox root.  Pure string/path
computation: nothing here touches the filesystem, so symlinks are not
followed and the result does not depend on what exists on disk.

Rejections:
- ``InvalidPathError``: None/non-string, empty or whitespace-only, null
  bytes, absolute POSIX paths, Windows drive-letter or UNC paths (checked
  on every host OS).
- ``TraversalAttemptError``: any ``..`` segment, or a resolved path that
  is not strictly below the sandbox root.
"""

from __future__ import annotations

import os
import re
from pathlib import Path

from stagegate.exceptions import InvalidPathError, TraversalAttemptError

# Drive-letter forms: "C:\x", "C:/x" and drive-relative "C:x"
_WINDOWS_DRIVE = re.compile(r"^[A-Za-z]:")
# UNC / device paths: "\\server\share", "\\?\C:\"
_WINDOWS_UNC = re.compile(r"^[\\/]{2}")

_MAX_ECHO = 80


def _echo(candidate: str) -> str:
    """Shorten a rejected candidate for error messages."""
    if len(candidate) > _MAX_ECHO:
        return repr(candidate[:_MAX_ECHO] + "...")
    return repr(candidate)


def _validate_input(candidate: object) -> str:
    if candidate is None:
        raise InvalidPathError("Path cannot be null or undefined")
    if not isinstance(candidate, str):
        raise InvalidPathError("Path must be a string")
    trimmed = candidate.strip()
    if not trimmed:
        raise InvalidPathError("Path cannot be empty or whitespace-only")
    if "\x00" in trimmed:
        raise InvalidPathError("Path contains null bytes")
    return trimmed


def _normalized_root(sandbox_root: str | os.PathLike[str]) -> str:
    return os.path.normpath(os.path.abspath(os.fspath(sandbox_root)))


def _is_strictly_inside(path: str, root: str) -> bool:
    if path == root:
        return False
    try:
        return os.path.commonpath([path, root]) == root
    except ValueError:
        # Different drives on Windows
        return False


def sanitize_path(candidate: str, sandbox_root: str | os.PathLike[str]) -> Path:
    """Resolve ``candidate`` against ``sandbox_root``.

    Mixed ``/`` and ``\\`` separators are normalized before resolution;
    empty and ``.`` segments are dropped.

    Args:
        candidate: Untrusted relative path supplied by a caller.
        sandbox_root: Directory the result must stay inside.

    Returns:
        Absolute, normalized path strictly below ``sandbox_root``.

    Raises:
        InvalidPathError: Malformed or absolute candidate.
        TraversalAttemptError: Candidate escapes the sandbox.
    """
    trimmed = _validate_input(candidate)

    if _WINDOWS_DRIVE.match(trimmed) or _WINDOWS_UNC.match(trimmed):
        raise InvalidPathError(f"Absolute Windows paths are not allowed: {_echo(trimmed)}")

    unified = trimmed.replace("\\", "/")
    if unified.startswith("/"):
        raise InvalidPathError(f"Absolute paths are not allowed: {_echo(trimmed)}")

    segments = [seg for seg in unified.split("/") if seg not in ("", ".")]
    if any(seg == ".." for seg in segments):
        raise TraversalAttemptError(f"Path traversal attempt detected: {_echo(trimmed)}")
    if not segments:
        raise InvalidPathError(f"Path does not name an entry inside the sandbox: {_echo(trimmed)}")

    root = _normalized_root(sandbox_root)
    resolved = os.path.normpath(os.path.join(root, *segments))

    # Re-verify after resolution
    if not _is_strictly_inside(resolved, root):
        raise TraversalAttemptError(f"Path traversal attempt detected: {_echo(trimmed)}")

    return Path(resolved)


def validate_sandbox_path(
    test_path: str | os.PathLike[str] | None,
    sandbox_root: str | os.PathLike[str],
) -> bool:
    """Non-raising check that an absolute path lies strictly inside a root."""
    if test_path is None:
        return False
    raw = os.fspath(test_path) if isinstance(test_path, os.PathLike) else test_path
    if not isinstance(raw, str):
        return False
    trimmed = raw.strip()
    if not trimmed or "\x00" in trimmed:
        return False
    return _is_strictly_inside(
        os.path.normpath(os.path.abspath(trimmed)),
        _normalized_root(sandbox_root),
    )


def validate_filename(filename: str | None) -> str | None:
    """Validate a bare filename for direct sandbox file operations.

    Returns:
        None when valid, otherwise a human-readable rejection reason.
    """
    if (
        not filename
        or not filename.strip()
        or "/" in filename
        or "\\" in filename
        or ".." in filename
        or "\x00" in filename
        or filename.startswith(".")
        or _WINDOWS_DRIVE.match(filename)
    ):
        return (
            "Filenames must not include path separators, dot segments, or be empty. "
            "Only bare filenames in your sandbox are allowed."
        )
    return None


__all__ = ["sanitize_path", "validate_filename", "validate_sandbox_path"]
