"""File-backed persistence for deployment snapshots.

Snapshots live under ``<root>/<deployment_id>/`` as
``deployment-snapshot-{deploymentId}-{yyyyMMdd-HHmmss}.json``.  Files are
published atomically and never rewritten; deletion happens only through the
retention helpers (:meth:`SnapshotStore.prune`, :meth:`SnapshotStore.delete`).

Identifier resolution accepts, in order of precedence:

1. a literal filesystem path to a snapshot file;
2. an exact snapshot id;
3. an exact file name (with or without the ``.json`` extension);
4. a fragment matched as a substring against file names and snapshot ids.

A fragment matching nothing raises :class:`NotFoundError`; a fragment
matching more than one snapshot raises :class:`ConflictError`.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from lifecycle_engine.errors import (
    ConflictError,
    NotFoundError,
    StorageError,
    StorageReason,
    ValidationError,
)
from lifecycle_engine.models.snapshot import Snapshot, SnapshotRef
from lifecycle_engine.state._files import read_json, write_json_atomic

logger = logging.getLogger(__name__)

SNAPSHOT_PREFIX = "deployment-snapshot-"
SNAPSHOT_EXTENSION = "json"

# Upper bound on same-second filename collisions before giving up.
_MAX_NAME_ATTEMPTS = 100


def snapshot_filename(deployment_id: str, timestamp: datetime, ext: str = SNAPSHOT_EXTENSION) -> str:
    """Return the canonical file name for a snapshot."""
    return f"{SNAPSHOT_PREFIX}{deployment_id}-{timestamp:%Y%m%d-%H%M%S}.{ext}"


class SnapshotStore:
    """Durable snapshot storage rooted at a directory.

    Parameters
    ----------
    root:
        Directory holding one sub-directory per deployment.
    """

    def __init__(self, root: Path) -> None:
        self._root = Path(root)
        self._save_lock = threading.Lock()
        # path -> (mtime_ns, ref); snapshot files are immutable so the cache
        # only needs invalidating when a file is replaced or removed.
        self._ref_cache: dict[Path, tuple[int, SnapshotRef]] = {}

    @property
    def root(self) -> Path:
        return self._root

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def save(self, snapshot: Snapshot) -> Path:
        """Persist *snapshot* and return the file path.

        Same-second captures of one deployment get a ``-2``, ``-3``, ...
        suffix rather than overwriting an earlier file.
        """
        directory = self._root / snapshot.deployment_id
        base_name = snapshot_filename(snapshot.deployment_id, snapshot.timestamp)
        stem = base_name.removesuffix(f".{SNAPSHOT_EXTENSION}")
        payload = snapshot.model_dump(mode="json", by_alias=True)

        with self._save_lock:
            for attempt in range(_MAX_NAME_ATTEMPTS):
                name = base_name if attempt == 0 else f"{stem}-{attempt + 1}.{SNAPSHOT_EXTENSION}"
                try:
                    path = write_json_atomic(directory / name, payload, overwrite=False)
                except FileExistsError:
                    continue
                logger.info(
                    "Saved snapshot %s for deployment %s to %s",
                    snapshot.snapshot_id,
                    snapshot.deployment_id,
                    path,
                )
                return path

        raise StorageError(f"Could not allocate a unique file name for snapshot {snapshot.snapshot_id} in {directory}")

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def load(self, path: Path) -> Snapshot:
        """Load the snapshot stored at *path*.

        Raises
        ------
        StorageError
            ``NOT_FOUND`` if the file is missing, ``CORRUPT`` if it does not
            hold a valid snapshot.
        """
        data = read_json(Path(path))
        try:
            return Snapshot.model_validate(data)
        except PydanticValidationError as exc:
            raise StorageError(f"Invalid snapshot file {path}: {exc}", StorageReason.CORRUPT) from exc

    def _files(self, deployment_id: str | None = None) -> list[Path]:
        if not self._root.is_dir():
            return []
        if deployment_id is not None:
            dirs = [self._root / deployment_id]
        else:
            dirs = [d for d in self._root.iterdir() if d.is_dir()]
        files: list[Path] = []
        for directory in dirs:
            if directory.is_dir():
                files.extend(directory.glob(f"{SNAPSHOT_PREFIX}*.{SNAPSHOT_EXTENSION}"))
        return sorted(files)

    def _ref(self, path: Path) -> SnapshotRef:
        stat = path.stat()
        cached = self._ref_cache.get(path)
        if cached is not None and cached[0] == stat.st_mtime_ns:
            return cached[1]
        snapshot = self.load(path)
        ref = SnapshotRef(
            snapshot_id=snapshot.snapshot_id,
            deployment_id=snapshot.deployment_id,
            file_path=path,
            size=stat.st_size,
            resource_count=snapshot.resource_count,
            timestamp=snapshot.timestamp,
            serial=snapshot.serial,
        )
        self._ref_cache[path] = (stat.st_mtime_ns, ref)
        return ref

    def _refs(self, deployment_id: str | None = None) -> list[SnapshotRef]:
        refs: list[SnapshotRef] = []
        for path in self._files(deployment_id):
            try:
                refs.append(self._ref(path))
            except (StorageError, OSError) as exc:
                logger.warning("Skipping unreadable snapshot file %s: %s", path, exc)
        return refs

    def list(self, deployment_id: str | None = None) -> list[SnapshotRef]:
        """Return stored snapshots ordered by ``(timestamp, serial)``."""
        refs = self._refs(deployment_id)
        refs.sort(key=lambda r: (r.timestamp, r.serial, r.file_path.name))
        return refs

    def latest(self, deployment_id: str) -> Snapshot | None:
        """Return the most recent snapshot of *deployment_id*, or ``None``."""
        refs = self.list(deployment_id)
        if not refs:
            return None
        return self.load(refs[-1].file_path)

    def resolve_ref(self, identifier: str) -> SnapshotRef:
        """Resolve *identifier* to exactly one stored snapshot reference.

        Raises
        ------
        ValidationError
            If *identifier* is empty.
        NotFoundError
            If nothing matches.
        ConflictError
            If the identifier is ambiguous.
        """
        identifier = identifier.strip()
        if not identifier:
            raise ValidationError("Snapshot identifier must not be empty")

        literal = Path(identifier)
        if literal.is_file():
            return self._ref(literal)

        refs = self._refs()
        for ref in refs:
            if ref.snapshot_id == identifier:
                return ref
        for ref in refs:
            if identifier in (ref.file_path.name, ref.file_path.stem):
                return ref

        matches = [r for r in refs if identifier in r.file_path.name or identifier in r.snapshot_id]
        if not matches:
            raise NotFoundError(f"No snapshot matches identifier '{identifier}'")
        if len(matches) > 1:
            names = sorted(r.file_path.name for r in matches)
            raise ConflictError(
                f"Identifier '{identifier}' matches {len(matches)} snapshots; use a longer identifier",
                candidates=names,
            )
        return matches[0]

    def resolve(self, identifier: str) -> Snapshot:
        """Resolve *identifier* and load the matching snapshot."""
        return self.load(self.resolve_ref(identifier).file_path)

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def delete(self, identifier: str) -> SnapshotRef:
        """Delete one snapshot, resolved as in :meth:`resolve`."""
        ref = self.resolve_ref(identifier)
        try:
            ref.file_path.unlink()
        except FileNotFoundError as exc:
            raise NotFoundError(f"Snapshot file disappeared: {ref.file_path}") from exc
        except OSError as exc:
            raise StorageError(f"Failed to delete {ref.file_path}: {exc}") from exc
        self._ref_cache.pop(ref.file_path, None)
        logger.info("Deleted snapshot %s (%s)", ref.snapshot_id, ref.file_path.name)
        return ref

    def prune(self, deployment_id: str, keep: int) -> list[SnapshotRef]:
        """Delete all but the *keep* newest snapshots of a deployment.

        Returns the removed references, oldest first.
        """
        if keep < 0:
            raise ValidationError(f"keep must be >= 0, got {keep}")
        refs = self.list(deployment_id)
        excess = refs[: max(len(refs) - keep, 0)]
        removed: list[SnapshotRef] = []
        for ref in excess:
            try:
                ref.file_path.unlink()
            except FileNotFoundError:
                continue
            except OSError as exc:
                raise StorageError(f"Failed to delete {ref.file_path}: {exc}") from exc
            self._ref_cache.pop(ref.file_path, None)
            removed.append(ref)
        if removed:
            logger.info("Pruned %d snapshot(s) of deployment %s (keeping %d)", len(removed), deployment_id, keep)
        return removed
