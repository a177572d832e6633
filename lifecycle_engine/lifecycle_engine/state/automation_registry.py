"""File-backed registry of automation configs.

Active configs are stored as
``<deployments_dir>/<deployment_id>/automation/<automation_id>/automation-config.json``.
Configs that were superseded by a replacing ``start`` are moved to
``<archive_dir>/<automation_id>.json`` and surface from :meth:`get` and
:meth:`list` with ``is_historical=True``.

State machine::

    (none) --create--> Active --disable--> Disabled

``Disabled`` is terminal: a disabled config is never re-activated.
"""

from __future__ import annotations

import logging
import re
import shutil
import threading
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from lifecycle_engine.errors import (
    ConflictError,
    NotFoundError,
    StorageError,
    StorageReason,
    ValidationError,
)
from lifecycle_engine.models.automation import (
    AutomationConfig,
    AutomationStatus,
    AutomationSummary,
    AutomationType,
)
from lifecycle_engine.state._files import read_json, write_json_atomic

logger = logging.getLogger(__name__)

AUTOMATION_DIR = "automation"
CONFIG_FILE = "automation-config.json"

ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


def _check_id(value: str, kind: str) -> None:
    """Raise :class:`ValidationError` unless *value* is a path-safe id."""
    if not ID_RE.match(value):
        raise ValidationError(f"Invalid {kind} id: {value!r}")


class AutomationRegistry:
    """Durable store of per-deployment automation configs.

    Parameters
    ----------
    deployments_dir:
        Root of the per-deployment directories.
    archive_dir:
        Directory for historical (superseded) configs.
    """

    def __init__(self, deployments_dir: Path, archive_dir: Path) -> None:
        self._deployments_dir = Path(deployments_dir)
        self._archive_dir = Path(archive_dir)
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def automation_dir(self, deployment_id: str, automation_id: str) -> Path:
        return self._deployments_dir / deployment_id / AUTOMATION_DIR / automation_id

    def config_path(self, deployment_id: str, automation_id: str) -> Path:
        return self.automation_dir(deployment_id, automation_id) / CONFIG_FILE

    def _archive_path(self, automation_id: str) -> Path:
        return self._archive_dir / f"{automation_id}.json"

    def _find_active_path(self, automation_id: str) -> Path | None:
        _check_id(automation_id, "automation")
        if not self._deployments_dir.is_dir():
            return None
        for deployment_dir in sorted(p for p in self._deployments_dir.iterdir() if p.is_dir()):
            candidate = deployment_dir / AUTOMATION_DIR / automation_id / CONFIG_FILE
            if candidate.is_file():
                return candidate
        return None

    def _active_paths(self, deployment_id: str | None = None) -> list[Path]:
        if deployment_id is not None:
            _check_id(deployment_id, "deployment")
        if not self._deployments_dir.is_dir():
            return []
        pattern = f"{deployment_id or '*'}/{AUTOMATION_DIR}/*/{CONFIG_FILE}"
        return sorted(self._deployments_dir.glob(pattern))

    @staticmethod
    def _load(path: Path, historical: bool = False) -> AutomationConfig:
        data = read_json(path)
        try:
            config = AutomationConfig.model_validate(data)
        except PydanticValidationError as exc:
            raise StorageError(f"Invalid automation config {path}: {exc}", StorageReason.CORRUPT) from exc
        config.is_historical = historical
        return config

    def _write(self, config: AutomationConfig, *, overwrite: bool = True) -> Path:
        path = self.config_path(config.deployment_id, config.automation_id)
        write_json_atomic(path, config.model_dump(mode="json", by_alias=True), overwrite=overwrite)
        return path

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def create(self, config: AutomationConfig) -> str:
        """Persist a new config and return its id.

        Raises
        ------
        ConflictError
            If a config with the same id already exists.
        ValidationError
            If the config is not Active.
        """
        if config.status != AutomationStatus.ACTIVE:
            raise ValidationError("New automation configs must be Active")
        with self._lock:
            if self._find_active_path(config.automation_id) or self._archive_path(config.automation_id).exists():
                raise ConflictError(f"Automation already exists: {config.automation_id}")
            try:
                path = self._write(config, overwrite=False)
            except FileExistsError as exc:
                raise ConflictError(f"Automation already exists: {config.automation_id}") from exc
        logger.info(
            "Created %s automation %s for deployment %s at %s",
            config.type.value,
            config.automation_id,
            config.deployment_id,
            path,
        )
        return config.automation_id

    def get(self, automation_id: str) -> AutomationConfig:
        """Load a config, searching active state first, then the archive.

        Raises
        ------
        NotFoundError
            If the id is unknown in both places.
        """
        path = self._find_active_path(automation_id)
        if path is not None:
            return self._load(path)
        archived = self._archive_path(automation_id)
        if archived.is_file():
            return self._load(archived, historical=True)
        raise NotFoundError(f"Automation not found: {automation_id}")

    def _iter_configs(self, deployment_id: str | None, include_historical: bool) -> Iterable[AutomationConfig]:
        for path in self._active_paths(deployment_id):
            try:
                yield self._load(path)
            except StorageError as exc:
                logger.warning("Skipping unreadable automation config %s: %s", path, exc)
        if include_historical and self._archive_dir.is_dir():
            for path in sorted(self._archive_dir.glob("*.json")):
                try:
                    config = self._load(path, historical=True)
                except StorageError as exc:
                    logger.warning("Skipping unreadable archived config %s: %s", path, exc)
                    continue
                if deployment_id is None or config.deployment_id == deployment_id:
                    yield config

    def list_configs(
        self,
        deployment_id: str | None = None,
        statuses: Iterable[AutomationStatus] | None = None,
        include_historical: bool = False,
    ) -> list[AutomationConfig]:
        """Return full configs matching the filter, newest first."""
        wanted = set(statuses) if statuses else None
        configs = [
            c
            for c in self._iter_configs(deployment_id, include_historical)
            if wanted is None or c.status in wanted
        ]
        configs.sort(key=lambda c: c.created_at, reverse=True)
        return configs

    def list(
        self,
        deployment_id: str | None = None,
        statuses: Iterable[AutomationStatus] | None = None,
        include_historical: bool = False,
    ) -> list[AutomationSummary]:
        """Return summaries matching the filter, sorted by ``created_at`` descending."""
        return [
            AutomationSummary.from_config(c)
            for c in self.list_configs(deployment_id, statuses, include_historical)
        ]

    def find_active(self, deployment_id: str, automation_type: AutomationType) -> AutomationConfig | None:
        """Return the Active config of *automation_type* for a deployment, if any."""
        for config in self.list_configs(deployment_id, statuses=[AutomationStatus.ACTIVE]):
            if config.type == automation_type:
                return config
        return None

    def list_due(self, now: datetime) -> list[AutomationConfig]:
        """Return Active, enabled configs whose ``next_run`` is at or before *now*."""
        due = [
            c
            for c in self.list_configs(statuses=[AutomationStatus.ACTIVE])
            if c.enabled and c.schedule.next_run is not None and c.schedule.next_run <= now
        ]
        due.sort(key=lambda c: c.schedule.next_run)  # type: ignore[arg-type, return-value]
        return due

    def update(
        self,
        automation_id: str,
        mutate: Callable[[AutomationConfig], None],
    ) -> AutomationConfig:
        """Re-read an active config, apply *mutate*, and write it back.

        The read-modify-write is serialised within this registry so that a
        concurrent :meth:`disable` is never overwritten by a stale copy.
        """
        with self._lock:
            path = self._find_active_path(automation_id)
            if path is None:
                raise NotFoundError(f"Automation not found: {automation_id}")
            config = self._load(path)
            mutate(config)
            config.last_modified = datetime.now(UTC)
            self._write(config)
        return config

    def disable(self, automation_id: str, remove_config_files: bool = False) -> AutomationConfig:
        """Disable an automation, optionally deleting its directory.

        Returns the config as it stands after the transition.

        Raises
        ------
        NotFoundError
            If no active-state config exists for *automation_id*.
        """
        with self._lock:
            path = self._find_active_path(automation_id)
            if path is None:
                raise NotFoundError(f"Automation not found: {automation_id}")
            config = self._load(path)
            config.status = AutomationStatus.DISABLED
            config.enabled = False
            config.last_modified = datetime.now(UTC)

            if remove_config_files:
                try:
                    shutil.rmtree(path.parent)
                except OSError as exc:
                    raise StorageError(f"Failed to remove {path.parent}: {exc}") from exc
                logger.info("Removed automation %s and its configuration", automation_id)
            else:
                self._write(config)
                logger.info("Disabled automation %s", automation_id)
        return config

    def archive(self, automation_id: str) -> AutomationConfig:
        """Move an active-state config into the historical archive."""
        with self._lock:
            path = self._find_active_path(automation_id)
            if path is None:
                raise NotFoundError(f"Automation not found: {automation_id}")
            config = self._load(path)
            write_json_atomic(self._archive_path(automation_id), config.model_dump(mode="json", by_alias=True))
            try:
                shutil.rmtree(path.parent)
            except OSError as exc:
                raise StorageError(f"Failed to remove {path.parent}: {exc}") from exc
        config.is_historical = True
        logger.info("Archived automation %s", automation_id)
        return config
