"""Per-deployment advisory locks.

Two writers -- a scheduled deployment, a rollback, a manual apply -- must
never converge the same deployment concurrently.  A lock is a file
``<locks_dir>/<deployment_id>.lock`` created with ``O_EXCL`` so that separate
processes (the daemon and an interactive CLI) exclude each other, backed by
an in-process :class:`threading.Lock` for threads of one process.

Locks carry a TTL.  A lock file older than its TTL is considered abandoned
(e.g. the holder crashed) and is reaped on the next acquisition attempt.
"""

from __future__ import annotations

import json
import logging
import os
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from pathlib import Path

from lifecycle_engine.errors import LockError, StorageError

logger = logging.getLogger(__name__)


class DeploymentLockManager:
    """Acquire and release per-deployment locks.

    Parameters
    ----------
    locks_dir:
        Directory for lock files.
    ttl_seconds:
        Age after which an existing lock file is treated as stale.
    """

    def __init__(self, locks_dir: Path, ttl_seconds: int = 3600) -> None:
        self._dir = Path(locks_dir)
        self._ttl = ttl_seconds
        self._guard = threading.Lock()
        self._thread_locks: dict[str, threading.Lock] = {}

    def _thread_lock(self, deployment_id: str) -> threading.Lock:
        with self._guard:
            return self._thread_locks.setdefault(deployment_id, threading.Lock())

    def _path(self, deployment_id: str) -> Path:
        return self._dir / f"{deployment_id}.lock"

    def _is_stale(self, path: Path) -> bool:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            locked_at = datetime.fromisoformat(data["locked_at"])
            ttl = int(data.get("ttl_seconds", self._ttl))
        except (OSError, ValueError, KeyError, TypeError):
            # Unreadable or half-written: fall back to the file's mtime.
            try:
                locked_at = datetime.fromtimestamp(path.stat().st_mtime, tz=UTC)
            except FileNotFoundError:
                return True
            ttl = self._ttl
        return locked_at + timedelta(seconds=ttl) < datetime.now(UTC)

    def _try_create(self, deployment_id: str, owner: str) -> bool:
        path = self._path(deployment_id)
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        except OSError as exc:
            raise StorageError(f"Cannot create lock file {path}: {exc}") from exc
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(
                {
                    "deployment_id": deployment_id,
                    "owner": owner,
                    "pid": os.getpid(),
                    "locked_at": datetime.now(UTC).isoformat(),
                    "ttl_seconds": self._ttl,
                },
                fh,
            )
        return True

    def acquire(self, deployment_id: str, owner: str) -> bool:
        """Try once to take the lock.  Returns ``True`` on success."""
        thread_lock = self._thread_lock(deployment_id)
        if not thread_lock.acquire(blocking=False):
            return False

        try:
            if self._try_create(deployment_id, owner):
                return True

            path = self._path(deployment_id)
            if self._is_stale(path):
                logger.warning("Reaping stale lock for deployment %s (%s)", deployment_id, path)
                path.unlink(missing_ok=True)
                if self._try_create(deployment_id, owner):
                    return True
        except BaseException:
            thread_lock.release()
            raise

        thread_lock.release()
        return False

    def release(self, deployment_id: str) -> None:
        """Release a lock previously taken with :meth:`acquire`."""
        self._path(deployment_id).unlink(missing_ok=True)
        thread_lock = self._thread_lock(deployment_id)
        if thread_lock.locked():
            thread_lock.release()

    def is_locked(self, deployment_id: str) -> bool:
        path = self._path(deployment_id)
        return path.exists() and not self._is_stale(path)

    @contextmanager
    def hold(
        self,
        deployment_id: str,
        owner: str,
        timeout: float = 0.0,
        poll_interval: float = 0.5,
    ) -> Iterator[None]:
        """Hold the deployment lock for the duration of the ``with`` block.

        Raises
        ------
        LockError
            If the lock could not be acquired within *timeout* seconds.
        """
        deadline = time.monotonic() + timeout
        while not self.acquire(deployment_id, owner):
            if time.monotonic() >= deadline:
                raise LockError(f"Deployment {deployment_id} is locked by another operation")
            time.sleep(poll_interval)
        logger.debug("Lock acquired for deployment %s by %s", deployment_id, owner)
        try:
            yield
        finally:
            self.release(deployment_id)
            logger.debug("Lock released for deployment %s by %s", deployment_id, owner)
