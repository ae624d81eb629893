"""Staging pipeline: every gate a file passes before it may be uploaded.

Gate order for one call (any failure stops the call):

1. Path sanitize        ``sanitize_path``
2. Size metadata        stat, ``PayloadTooLargeError`` above the cap
3. Secret fast-path     env-file names, no content read
4. Extension allowlist  ``ContentValidator.check_extension``
5. Body secret scan     in memory, or streamed during disk staging
6. Content validate     sniffed type vs. extension
7. Route and stage      memory below the threshold, disk otherwise

For disk staging the content check runs on a leading sample and the body
scan runs while staging; both must pass before a handle is returned.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING

from stagegate.exceptions import PayloadTooLargeError
from stagegate.staging.cleanup import CleanupManager, SweepResult
from stagegate.staging.config import StagingConfig
from stagegate.staging.content import SNIFF_BYTES, ContentValidator
from stagegate.staging.downloads import download_external_url
from stagegate.staging.identity import SandboxResolver, identity_hash
from stagegate.staging.locks import SandboxLock
from stagegate.staging.paths import sanitize_path
from stagegate.staging.router import StagedFile, StagingRouter
from stagegate.staging.secrets import SecretScanner, raise_for_finding
from stagegate.staging.workspace import SandboxWorkspace

if TYPE_CHECKING:
    import httpx

    from stagegate.settings import Settings

logger = logging.getLogger(__name__)


class StagingPipeline:
    """Secure staging bound to one identity.

    Usage:
        pipeline = StagingPipeline(config, credential=token)
        await pipeline.prepare()
        async with pipeline.staged("report.csv") as handle:
            await upload(handle)
    """

    def __init__(
        self,
        config: StagingConfig,
        credential: str,
        *,
        scanner: SecretScanner | None = None,
    ) -> None:
        self.config = config
        self.resolver = SandboxResolver(config)
        self.sandbox_root = self.resolver.resolve_sandbox_root(credential)
        self._owner = identity_hash(credential)
        self.scanner = scanner or SecretScanner()
        self.validator = ContentValidator(config)
        self.router = StagingRouter(config, self.scanner)
        self.cleanup = CleanupManager(config)
        self.workspace = SandboxWorkspace(config, self.sandbox_root)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> StagingPipeline:
        """Build a pipeline from application settings (cached by default)."""
        if settings is None:
            from stagegate.settings import get_settings

            settings = get_settings()
        return cls(
            StagingConfig.from_settings(settings),
            settings.zipline_token.get_secret_value(),
        )

    async def prepare(self) -> Path:
        """Create the sandbox root if needed."""
        return await self.resolver.ensure_sandbox_root(self.sandbox_root)

    def lock(self) -> SandboxLock:
        """Lock marker for this identity's sandbox root."""
        return SandboxLock(self.sandbox_root, self.config, owner=self._owner)

    def _check_size(self, name: str, size: int) -> None:
        limit = self.config.max_file_size_bytes
        if size > limit:
            logger.warning("File rejected (size %d > %d): %r", size, limit, name)
            raise PayloadTooLargeError(
                f"File too large: {name} is {size} bytes, maximum is {limit} bytes",
                size_bytes=size,
                limit_bytes=limit,
            )

    async def stage_file(
        self,
        candidate: str,
        content: bytes | None = None,
        *,
        sandbox_root: Path | None = None,
    ) -> StagedFile:
        """Run every gate for ``candidate`` and stage it.

        Args:
            candidate: Untrusted relative path inside the sandbox.
            content: Bytes already in hand.  When given, the file need not
                exist yet; large content is written into the sandbox as a new
                file and never replaces an existing one.
            sandbox_root: Root to resolve against (defaults to this
                identity's sandbox).

        Returns:
            A staged handle.  Release it with :meth:`release`.
        """
        root = sandbox_root or self.sandbox_root
        resolved = sanitize_path(candidate, root)
        name = resolved.name

        size = len(content) if content is not None else await self.router.size_of(resolved)
        self._check_size(name, size)

        raise_for_finding(self.scanner.check_filename(name))
        self.validator.check_extension(name)

        if content is not None:
            raise_for_finding(self.scanner.scan(name, content))
            in_memory = self.router.fits_in_memory(size)
            self.validator.validate(name, content if in_memory else content[:SNIFF_BYTES])
            return await self.router.stage(resolved, content)

        if self.router.fits_in_memory(size):
            data = await self.router.try_load(resolved)
            if data is not None:
                raise_for_finding(self.scanner.scan(name, data))
                self.validator.validate(name, data)
                return await self.router.stage(resolved, data)
            # may have grown since it was measured
            self._check_size(name, await self.router.size_of(resolved))

        self.validator.validate(name, await self.router.read_head(resolved))
        return await self.router.stage_on_disk(resolved)

    def release(self, staged: StagedFile | None) -> None:
        """Release a staged handle.  Never raises."""
        self.cleanup.release(staged)

    @asynccontextmanager
    async def staged(
        self,
        candidate: str,
        content: bytes | None = None,
    ) -> AsyncIterator[StagedFile]:
        """Stage ``candidate`` for the duration of a block.

        The handle is released on normal exit, on error and on
        cancellation.
        """
        handle = await self.stage_file(candidate, content)
        try:
            yield handle
        finally:
            self.release(handle)

    async def initialize_cleanup(self) -> SweepResult:
        """Startup sweep of stale sandboxes and locks."""
        return await self.cleanup.initialize_cleanup()

    async def download(
        self,
        url: str,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> Path:
        """Download ``url`` into this identity's sandbox."""
        await self.prepare()
        return await download_external_url(
            url,
            sandbox_root=self.sandbox_root,
            config=self.config,
            client=client,
        )


__all__ = ["StagingPipeline"]
