"""Unit tests for sandbox lock markers."""

import json
import time
from pathlib import Path

import pytest

from stagegate.exceptions import SandboxLockedError
from stagegate.staging.config import StagingConfig
from stagegate.staging.identity import identity_hash
from stagegate.staging.locks import SandboxLock, read_lock_timestamp

OWNER = identity_hash("owner-credential")


@pytest.fixture
def lock(sandbox_root: Path, staging_config: StagingConfig) -> SandboxLock:
    return SandboxLock(sandbox_root, staging_config, owner=OWNER)


class TestAcquireRelease:
    """Basic lock lifecycle."""

    def test_acquire_writes_owner_hash(self, lock: SandboxLock):
        assert lock.acquire() is True
        data = json.loads(lock.lock_path.read_text())
        assert data["owner"] == OWNER
        assert "owner-credential" not in lock.lock_path.read_text()
        assert abs(data["timestamp"] - time.time() * 1000) < 60_000

    def test_second_acquire_fails(self, lock: SandboxLock, sandbox_root: Path, staging_config: StagingConfig):
        assert lock.acquire() is True
        other = SandboxLock(sandbox_root, staging_config, owner="someone-else")
        assert other.acquire() is False
        assert lock.is_locked() is True

    def test_release_by_owner(self, lock: SandboxLock):
        lock.acquire()
        assert lock.release() is True
        assert not lock.lock_path.exists()

    def test_release_by_other_owner_refused(
        self, lock: SandboxLock, sandbox_root: Path, staging_config: StagingConfig
    ):
        lock.acquire()
        other = SandboxLock(sandbox_root, staging_config, owner="someone-else")
        assert other.release() is False
        assert lock.lock_path.exists()

    def test_release_without_lock(self, lock: SandboxLock):
        assert lock.release() is True

    def test_corrupt_lock_released(self, lock: SandboxLock):
        lock.lock_path.write_text("{broken")
        assert lock.release() is True
        assert not lock.lock_path.exists()


class TestExpiry:
    """Stale and corrupt markers."""

    def test_expired_lock_is_removed(self, lock: SandboxLock, staging_config: StagingConfig):
        old = int((time.time() - staging_config.lock_timeout_seconds - 60) * 1000)
        lock.lock_path.write_text(json.dumps({"timestamp": old, "owner": "x"}))
        assert lock.is_locked() is False
        assert not lock.lock_path.exists()

    def test_expired_lock_can_be_taken_over(self, lock: SandboxLock, staging_config: StagingConfig):
        old = int((time.time() - staging_config.lock_timeout_seconds - 60) * 1000)
        lock.lock_path.write_text(json.dumps({"timestamp": old, "owner": "x"}))
        assert lock.acquire() is True

    @pytest.mark.parametrize("payload", ["", "[]", '{"owner": "x"}', '{"timestamp": "soon"}'])
    def test_corrupt_lock_is_not_held(self, lock: SandboxLock, payload: str):
        lock.lock_path.write_text(payload)
        assert lock.is_locked() is False
        assert not lock.lock_path.exists()

    def test_read_lock_timestamp(self, tmp_path: Path):
        path = tmp_path / ".lock"
        path.write_text('{"timestamp": 1700000000000}')
        assert read_lock_timestamp(path) == 1700000000000
        path.write_text("nope")
        assert read_lock_timestamp(path) is None
        assert read_lock_timestamp(tmp_path / "missing") is None


class TestHeld:
    """Context-manager form."""

    def test_held_releases_on_exit(self, lock: SandboxLock):
        with lock.held():
            assert lock.is_locked() is True
        assert not lock.lock_path.exists()

    def test_held_releases_on_error(self, lock: SandboxLock):
        with pytest.raises(RuntimeError), lock.held():
            raise RuntimeError("boom")
        assert not lock.lock_path.exists()

    def test_held_raises_when_locked(self, lock: SandboxLock, sandbox_root: Path, staging_config: StagingConfig):
        SandboxLock(sandbox_root, staging_config, owner="other").acquire()
        with pytest.raises(SandboxLockedError), lock.held():
            pass


class TestSingleTenant:
    """Locks are no-ops without multi-tenancy."""

    def test_always_acquires(self, tmp_path: Path):
        config = StagingConfig(base_dir=tmp_path, multi_tenant=False)
        lock = SandboxLock(tmp_path, config, owner=OWNER)
        assert lock.acquire() is True
        assert lock.is_locked() is False
        assert not lock.lock_path.exists()
