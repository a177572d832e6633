"""Unit tests for lifecycle_engine.state.locks."""

from __future__ import annotations

import json
import os
import threading
import time
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from lifecycle_engine.errors import LockError, StorageError
from lifecycle_engine.state.locks import DeploymentLockManager


@pytest.fixture()
def locks(tmp_path: Path) -> DeploymentLockManager:
    return DeploymentLockManager(tmp_path / "locks", ttl_seconds=60)


class TestAcquireRelease:
    def test_acquire_writes_lock_file(self, locks: DeploymentLockManager, tmp_path: Path):
        assert locks.acquire("lab", owner="cli")
        data = json.loads((tmp_path / "locks" / "lab.lock").read_text(encoding="utf-8"))
        assert data["owner"] == "cli"
        assert data["pid"] == os.getpid()
        assert locks.is_locked("lab")
        locks.release("lab")
        assert not locks.is_locked("lab")

    def test_second_acquire_fails(self, locks: DeploymentLockManager):
        assert locks.acquire("lab", owner="a")
        assert not locks.acquire("lab", owner="b")
        locks.release("lab")
        assert locks.acquire("lab", owner="b")
        locks.release("lab")

    def test_deployments_are_independent(self, locks: DeploymentLockManager):
        assert locks.acquire("lab", owner="a")
        assert locks.acquire("prod", owner="a")
        locks.release("lab")
        locks.release("prod")

    def test_other_process_lock_file_respected(self, tmp_path: Path):
        first = DeploymentLockManager(tmp_path / "locks")
        second = DeploymentLockManager(tmp_path / "locks")
        assert first.acquire("lab", owner="daemon")
        assert not second.acquire("lab", owner="cli")
        first.release("lab")
        assert second.acquire("lab", owner="cli")
        second.release("lab")

    def test_release_without_acquire(self, locks: DeploymentLockManager):
        locks.release("lab")
        assert not locks.is_locked("lab")

    def test_storage_failure_does_not_leak_thread_lock(self, tmp_path: Path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory", encoding="utf-8")
        locks = DeploymentLockManager(blocker / "locks")
        with pytest.raises(StorageError):
            locks.acquire("lab", owner="a")

        blocker.unlink()
        assert locks.acquire("lab", owner="b")
        locks.release("lab")


class TestStaleLocks:
    def test_expired_lock_is_reaped(self, tmp_path: Path):
        lock_dir = tmp_path / "locks"
        lock_dir.mkdir()
        old = datetime.now(UTC) - timedelta(hours=2)
        (lock_dir / "lab.lock").write_text(
            json.dumps({"owner": "crashed", "locked_at": old.isoformat(), "ttl_seconds": 60}),
            encoding="utf-8",
        )
        locks = DeploymentLockManager(lock_dir, ttl_seconds=60)
        assert not locks.is_locked("lab")
        assert locks.acquire("lab", owner="cli")
        locks.release("lab")

    def test_fresh_unreadable_lock_is_held(self, tmp_path: Path):
        lock_dir = tmp_path / "locks"
        lock_dir.mkdir()
        (lock_dir / "lab.lock").write_text("{half", encoding="utf-8")
        locks = DeploymentLockManager(lock_dir, ttl_seconds=60)
        assert locks.is_locked("lab")
        assert not locks.acquire("lab", owner="cli")


class TestHold:
    def test_hold_releases_on_exit(self, locks: DeploymentLockManager):
        with locks.hold("lab", owner="cli"):
            assert locks.is_locked("lab")
        assert not locks.is_locked("lab")

    def test_hold_releases_on_error(self, locks: DeploymentLockManager):
        with pytest.raises(RuntimeError):
            with locks.hold("lab", owner="cli"):
                raise RuntimeError("boom")
        assert not locks.is_locked("lab")

    def test_hold_times_out(self, locks: DeploymentLockManager):
        assert locks.acquire("lab", owner="other")
        started = time.monotonic()
        with pytest.raises(LockError, match="lab"):
            with locks.hold("lab", owner="cli", timeout=0.2, poll_interval=0.05):
                pass
        assert time.monotonic() - started >= 0.2
        locks.release("lab")

    def test_hold_waits_for_release(self, locks: DeploymentLockManager, tmp_path: Path):
        other = DeploymentLockManager(tmp_path / "locks")
        assert other.acquire("lab", owner="other")
        timer = threading.Timer(0.1, other.release, args=("lab",))
        timer.start()
        try:
            with locks.hold("lab", owner="cli", timeout=2.0, poll_interval=0.02):
                assert locks.is_locked("lab")
        finally:
            timer.cancel()
