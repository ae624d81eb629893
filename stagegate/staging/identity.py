"""Per-identity sandbox roots.

Each credential maps to ``{base_dir}/users/{sha256(credential)}``.  The
digest is one-way, so the directory name reveals nothing about the
credential, and two credentials never share a root.  When multi-tenancy
is switched off the shared ``base_dir`` is used for everyone.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import os
from pathlib import Path

from stagegate.exceptions import ConfigurationError
from stagegate.staging.audit import log_sandbox_operation
from stagegate.staging.config import StagingConfig

logger = logging.getLogger(__name__)

SANDBOX_DIR_MODE = 0o700


def identity_hash(credential: str) -> str:
    """Hex SHA-256 digest identifying a credential."""
    return hashlib.sha256(credential.encode("utf-8")).hexdigest()


class SandboxResolver:
    """Resolves and creates identity-scoped sandbox roots.

    Usage:
        resolver = SandboxResolver(config)
        root = resolver.resolve_sandbox_root(token)
        await resolver.ensure_sandbox_root(root)
    """

    def __init__(self, config: StagingConfig) -> None:
        self.config = config

    def resolve_sandbox_root(self, credential: str | None) -> Path:
        """Derive the sandbox root for ``credential``.

        Raises:
            ConfigurationError: If no credential is available.
        """
        if not credential or not credential.strip():
            raise ConfigurationError("A credential is required for sandbox functionality")

        if not self.config.multi_tenant:
            return self.config.base_dir

        return self.config.users_dir / identity_hash(credential)

    async def ensure_sandbox_root(self, path: Path) -> Path:
        """Create ``path`` with owner-only permissions if absent.

        Idempotent: an existing directory is left as is (permissions are
        re-tightened).
        """
        created = await asyncio.to_thread(self._ensure_dir, path)
        if created:
            log_sandbox_operation("SANDBOX_CREATED", sandbox_root=path)
        return path

    def _ensure_dir(self, path: Path) -> bool:
        existed = path.is_dir()
        path.mkdir(parents=True, exist_ok=True, mode=SANDBOX_DIR_MODE)
        if os.name != "nt":
            # mkdir's mode is filtered by umask and skipped for existing dirs
            os.chmod(path, SANDBOX_DIR_MODE)
        return not existed


__all__ = ["SANDBOX_DIR_MODE", "SandboxResolver", "identity_hash"]
