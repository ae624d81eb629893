"""Fetch an external http(s) URL into a sandbox root.

The body is streamed to disk and capped twice: by the advertised
``Content-Length`` before reading, and by the bytes actually received.
A failed or oversized download leaves no partial file behind.
"""

from __future__ import annotations

import logging
import posixpath
from pathlib import Path
from urllib.parse import unquote, urlparse

import httpx

from stagegate.exceptions import DownloadError, PayloadTooLargeError
from stagegate.staging.audit import log_sandbox_operation
from stagegate.staging.config import StagingConfig
from stagegate.staging.paths import sanitize_path, validate_filename

logger = logging.getLogger(__name__)

_ALLOWED_SCHEMES = {"http", "https"}
_FALLBACK_NAME = "download"


def filename_from_url(url: str) -> str:
    """Bare filename from the last URL path segment (``download`` if unusable)."""
    name = posixpath.basename(unquote(urlparse(url).path))
    if validate_filename(name):
        return _FALLBACK_NAME
    return name


def _too_large(size: int, limit: int) -> PayloadTooLargeError:
    return PayloadTooLargeError(
        f"Download exceeds maximum size of {limit} bytes",
        size_bytes=size,
        limit_bytes=limit,
    )


async def download_external_url(
    url: str,
    *,
    sandbox_root: Path,
    config: StagingConfig,
    timeout: float | None = None,
    max_file_size_bytes: int | None = None,
    client: httpx.AsyncClient | None = None,
) -> Path:
    """Download ``url`` into ``sandbox_root``.

    Args:
        url: Absolute http or https URL.
        sandbox_root: Existing or creatable sandbox directory.
        config: Staging config supplying default timeout and size cap.
        timeout: Request timeout in seconds.
        max_file_size_bytes: Size cap for the body.
        client: Pre-configured client (tests inject a mock transport).

    Returns:
        Absolute path of the downloaded file.

    Raises:
        DownloadError: Bad URL, transport failure or non-2xx status.
        PayloadTooLargeError: Body exceeds the size cap.
    """
    parsed = urlparse(url)
    if parsed.scheme not in _ALLOWED_SCHEMES or not parsed.netloc:
        raise DownloadError(f"Unsupported scheme or invalid URL: {parsed.scheme or url!r}")

    limit = max_file_size_bytes or config.max_file_size_bytes
    timeout = timeout or config.download_timeout_seconds
    target = sanitize_path(filename_from_url(url), sandbox_root)

    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(timeout=httpx.Timeout(timeout), follow_redirects=True)

    received = 0
    started = False
    try:
        async with client.stream("GET", url, timeout=timeout) as response:
            if response.status_code >= 400:
                raise DownloadError(
                    f"Download failed with HTTP {response.status_code}",
                    status_code=response.status_code,
                )

            advertised = response.headers.get("content-length")
            if advertised and advertised.isdigit() and int(advertised) > limit:
                raise _too_large(int(advertised), limit)

            target.parent.mkdir(parents=True, exist_ok=True)
            started = True
            with target.open("wb") as fh:
                async for chunk in response.aiter_bytes():
                    received += len(chunk)
                    if received > limit:
                        raise _too_large(received, limit)
                    fh.write(chunk)
    except (DownloadError, PayloadTooLargeError) as e:
        if started:
            target.unlink(missing_ok=True)
        log_sandbox_operation(
            "DOWNLOAD_FAILED",
            target.name,
            f"Reason: {e}",
            sandbox_root=sandbox_root,
            level=logging.WARNING,
        )
        raise
    except (httpx.HTTPError, OSError) as e:
        if started:
            target.unlink(missing_ok=True)
        log_sandbox_operation(
            "DOWNLOAD_FAILED",
            target.name,
            f"Reason: {type(e).__name__}",
            sandbox_root=sandbox_root,
            level=logging.WARNING,
        )
        raise DownloadError(f"Download failed: {type(e).__name__}") from e
    finally:
        if owns_client:
            await client.aclose()

    log_sandbox_operation(
        "DOWNLOAD_COMPLETED",
        target.name,
        f"Size: {received} bytes",
        sandbox_root=sandbox_root,
    )
    return target


__all__ = ["download_external_url", "filename_from_url"]
