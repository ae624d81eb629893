"""Unit tests for handle release and stale-sandbox sweeping.

Staleness is simulated by back-dating mtimes with ``os.utime``.
"""

import asyncio
import json
import os
import time
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from stagegate.staging.cleanup import CleanupManager, SweepResult, staged_resource
from stagegate.staging.config import StagingConfig
from stagegate.staging.router import DiskStagedFile, MemoryStagedFile

DAY = 24 * 60 * 60


def _age(path: Path, seconds: float) -> None:
    past = time.time() - seconds
    os.utime(path, (past, past))


def _make_root(config: StagingConfig, name: str, age: float = 0) -> Path:
    root = config.users_dir / name
    root.mkdir(parents=True)
    (root / "file.txt").write_text("data")
    if age:
        _age(root, age)
    return root


def _write_lock(root: Path, age: float) -> Path:
    lock = root / ".lock"
    lock.write_text(json.dumps({"timestamp": int((time.time() - age) * 1000), "owner": "o"}))
    return lock


class TestRelease:
    """Release never raises and is idempotent."""

    def test_memory_release_twice(self, staging_config: StagingConfig, tmp_path: Path):
        cleanup = CleanupManager(staging_config)
        staged = MemoryStagedFile(path=tmp_path / "a.txt", content=b"abc")
        cleanup.release(staged)
        cleanup.release(staged)
        assert staged.content is None

    def test_disk_release_keeps_file(self, staging_config: StagingConfig, tmp_path: Path):
        path = tmp_path / "big.bin"
        path.write_bytes(b"x" * 10)
        staged = DiskStagedFile(path=path, size=10)
        cleanup = CleanupManager(staging_config)
        cleanup.release(staged)
        cleanup.release(staged)
        assert staged.released is True
        assert path.read_bytes() == b"x" * 10

    def test_none_is_ignored(self, staging_config: StagingConfig):
        CleanupManager(staging_config).release(None)

    def test_failing_release_is_swallowed(self, staging_config: StagingConfig, caplog):
        staged = MagicMock()
        staged.release.side_effect = RuntimeError("boom")
        CleanupManager(staging_config).release(staged)
        assert "Failed to release" in caplog.text


class TestStagedResource:
    """Guaranteed release around a block."""

    @pytest.mark.asyncio
    async def test_released_on_success(self, staging_config: StagingConfig, tmp_path: Path):
        staged = MemoryStagedFile(path=tmp_path / "a.txt", content=b"abc")
        async with staged_resource(CleanupManager(staging_config), staged) as handle:
            assert handle.content == b"abc"
        assert staged.released is True

    @pytest.mark.asyncio
    async def test_released_on_error(self, staging_config: StagingConfig, tmp_path: Path):
        staged = MemoryStagedFile(path=tmp_path / "a.txt", content=b"abc")
        with pytest.raises(ValueError):
            async with staged_resource(CleanupManager(staging_config), staged):
                raise ValueError("upload failed")
        assert staged.released is True

    @pytest.mark.asyncio
    async def test_released_on_cancellation(self, staging_config: StagingConfig, tmp_path: Path):
        staged = MemoryStagedFile(path=tmp_path / "a.txt", content=b"abc")
        entered = asyncio.Event()

        async def upload() -> None:
            async with staged_resource(CleanupManager(staging_config), staged):
                entered.set()
                await asyncio.sleep(3600)

        task = asyncio.create_task(upload())
        await entered.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert staged.released is True


class TestSweepStale:
    """Removal of stale roots and locks."""

    @pytest.mark.asyncio
    async def test_missing_users_dir(self, staging_config: StagingConfig):
        result = await CleanupManager(staging_config).sweep_stale()
        assert result == SweepResult()

    @pytest.mark.asyncio
    async def test_removes_old_roots_only(self, staging_config: StagingConfig):
        old = _make_root(staging_config, "a" * 64, age=2 * DAY)
        fresh = _make_root(staging_config, "b" * 64)

        result = await CleanupManager(staging_config).sweep_stale()

        assert result.roots_removed == 1
        assert not old.exists()
        assert fresh.exists()

    @pytest.mark.asyncio
    async def test_second_sweep_is_noop(self, staging_config: StagingConfig):
        root = _make_root(staging_config, "a" * 64)
        _write_lock(root, age=2 * 60 * 60)
        _age(root, 2 * DAY)
        cleanup = CleanupManager(staging_config)

        first = await cleanup.sweep_stale()
        second = await cleanup.sweep_stale()

        assert (first.roots_removed, first.locks_removed) == (1, 1)
        assert (second.roots_removed, second.locks_removed) == (0, 0)

    @pytest.mark.asyncio
    async def test_stale_lock_removed_fresh_root_kept(self, staging_config: StagingConfig):
        root = _make_root(staging_config, "a" * 64)
        lock = _write_lock(root, age=31 * 60)

        result = await CleanupManager(staging_config).sweep_stale()

        assert result.locks_removed == 1
        assert result.roots_removed == 0
        assert not lock.exists()
        assert root.exists()

    @pytest.mark.asyncio
    async def test_active_lock_protects_old_root(self, staging_config: StagingConfig):
        root = _make_root(staging_config, "a" * 64)
        _write_lock(root, age=60)
        _age(root, 2 * DAY)

        result = await CleanupManager(staging_config).sweep_stale()

        assert result == SweepResult()
        assert root.exists()

    @pytest.mark.asyncio
    async def test_corrupt_lock_aged_by_mtime(self, staging_config: StagingConfig):
        root = _make_root(staging_config, "a" * 64)
        lock = root / ".lock"
        lock.write_text("not json")
        _age(lock, 2 * 60 * 60)

        result = await CleanupManager(staging_config).sweep_stale()

        assert result.locks_removed == 1

    @pytest.mark.asyncio
    async def test_ignores_stray_files(self, staging_config: StagingConfig):
        staging_config.users_dir.mkdir(parents=True)
        stray = staging_config.users_dir / "README.txt"
        stray.write_text("x")
        _age(stray, 2 * DAY)

        result = await CleanupManager(staging_config).sweep_stale()

        assert result == SweepResult()
        assert stray.exists()

    @pytest.mark.asyncio
    async def test_errors_do_not_abort_sweep(self, staging_config: StagingConfig):
        _make_root(staging_config, "a" * 64, age=2 * DAY)
        _make_root(staging_config, "b" * 64, age=2 * DAY)

        with patch("stagegate.staging.cleanup.shutil.rmtree", side_effect=[PermissionError(13, "denied"), None]):
            result = await CleanupManager(staging_config).sweep_stale()

        assert result.errors == 1
        assert result.roots_removed == 1

    @pytest.mark.asyncio
    async def test_single_tenant_never_sweeps(self, tmp_path: Path):
        config = StagingConfig(base_dir=tmp_path, multi_tenant=False)
        root = _make_root(config, "a" * 64, age=2 * DAY)

        result = await CleanupManager(config).sweep_stale()

        assert result == SweepResult()
        assert root.exists()


class TestInitializeCleanup:
    """Startup sweep."""

    @pytest.mark.asyncio
    async def test_logs_startup_line(self, staging_config: StagingConfig, caplog):
        _make_root(staging_config, "a" * 64, age=2 * DAY)
        with caplog.at_level("INFO", logger="stagegate.audit"):
            result = await CleanupManager(staging_config).initialize_cleanup()
        assert result.roots_removed == 1
        assert "STARTUP_CLEANUP" in caplog.text
        assert "SANDBOX_CLEANED" in caplog.text
        assert "a" * 64 not in caplog.text


class TestPeriodicSweep:
    """Background sweep task."""

    @pytest.mark.asyncio
    async def test_runs_and_stops(self, staging_config: StagingConfig):
        cleanup = CleanupManager(staging_config)
        calls = 0

        async def fake_sweep() -> SweepResult:
            nonlocal calls
            calls += 1
            return SweepResult()

        with patch.object(cleanup, "sweep_stale", side_effect=fake_sweep):
            task = cleanup.start_periodic_sweep(0.01)
            assert cleanup.start_periodic_sweep(0.01) is task
            await asyncio.sleep(0.05)
            await cleanup.stop_periodic_sweep()

        assert calls >= 1
        assert task.done()

    def test_requires_interval(self, staging_config: StagingConfig):
        with pytest.raises(ValueError, match="interval"):
            CleanupManager(staging_config).start_periodic_sweep()
