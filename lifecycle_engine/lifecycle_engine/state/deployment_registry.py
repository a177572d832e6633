"""File-backed registry of deployments.

Each deployment is one ``deployment.json`` under
``<deployments_dir>/<deployment_id>/``.  The same directory later holds the
deployment's ``automation/`` tree.
"""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from lifecycle_engine.errors import ConflictError, NotFoundError, StorageError, StorageReason
from lifecycle_engine.models.deployment import DeploymentRecord
from lifecycle_engine.state._files import read_json, write_json_atomic

logger = logging.getLogger(__name__)

DEPLOYMENT_FILE = "deployment.json"


class DeploymentRegistry:
    """Resolve deployment ids to their working directory and labels.

    Parameters
    ----------
    deployments_dir:
        Root directory holding one sub-directory per deployment.
    """

    def __init__(self, deployments_dir: Path) -> None:
        self._root = Path(deployments_dir)

    @property
    def root(self) -> Path:
        return self._root

    def deployment_dir(self, deployment_id: str) -> Path:
        return self._root / deployment_id

    def _record_path(self, deployment_id: str) -> Path:
        return self.deployment_dir(deployment_id) / DEPLOYMENT_FILE

    def exists(self, deployment_id: str) -> bool:
        return self._record_path(deployment_id).is_file()

    def register(self, record: DeploymentRecord, *, overwrite: bool = False) -> DeploymentRecord:
        """Persist *record*.

        Raises
        ------
        ConflictError
            If the deployment is already registered and *overwrite* is false.
        """
        path = self._record_path(record.deployment_id)
        if path.exists() and not overwrite:
            raise ConflictError(f"Deployment already registered: {record.deployment_id}")
        write_json_atomic(path, record.model_dump(mode="json", by_alias=True))
        logger.info("Registered deployment %s -> %s", record.deployment_id, record.working_directory)
        return record

    def get(self, deployment_id: str) -> DeploymentRecord:
        """Load a deployment record.

        Raises
        ------
        NotFoundError
            If no record exists for *deployment_id*.
        StorageError
            If the record exists but cannot be parsed.
        """
        path = self._record_path(deployment_id)
        try:
            data = read_json(path)
        except StorageError as exc:
            if exc.reason == StorageReason.NOT_FOUND:
                raise NotFoundError(f"Unknown deployment: {deployment_id}") from exc
            raise
        try:
            return DeploymentRecord.model_validate(data)
        except PydanticValidationError as exc:
            raise StorageError(f"Invalid deployment record {path}: {exc}", StorageReason.CORRUPT) from exc

    def list(self) -> list[DeploymentRecord]:
        """Return all registered deployments sorted by id.

        Unreadable records are logged and skipped.
        """
        if not self._root.is_dir():
            return []
        records: list[DeploymentRecord] = []
        for child in sorted(self._root.iterdir()):
            if not (child / DEPLOYMENT_FILE).is_file():
                continue
            try:
                records.append(self.get(child.name))
            except StorageError as exc:
                logger.warning("Skipping unreadable deployment %s: %s", child.name, exc)
        return records
