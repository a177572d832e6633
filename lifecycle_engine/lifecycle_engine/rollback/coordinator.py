"""Rollback planning and convergence.

A rollback compares the deployment's *current* live state (reference) with a
stored target snapshot (difference), then asks the provisioning tool to
converge the changed resources.  The coordinator never mutates
infrastructure itself, and a failed apply never touches the snapshot store:
the pre-rollback comparison is returned on success and attached to the
raised :class:`~lifecycle_engine.errors.RollbackError` on failure.
"""

from __future__ import annotations

import logging
from pathlib import Path

from lifecycle_engine.diff.snapshot_diff import compare_snapshots
from lifecycle_engine.errors import ProvisioningError, RollbackError, ValidationError
from lifecycle_engine.graph.resource_graph import build_dependency_graph, order_resources
from lifecycle_engine.models.diff import ComparisonResult, ResourceRef
from lifecycle_engine.models.snapshot import ResourceMode, Snapshot
from lifecycle_engine.provisioner.base import ProvisionerInterface
from lifecycle_engine.snapshot.capturer import SnapshotCapturer
from lifecycle_engine.state.deployment_registry import DeploymentRegistry
from lifecycle_engine.state.locks import DeploymentLockManager
from lifecycle_engine.state.snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)


def convergence_targets(current: Snapshot, target: Snapshot, comparison: ComparisonResult) -> list[str]:
    """Return managed resource addresses to converge, in dependency order."""
    refs: list[ResourceRef] = [
        *comparison.changes.added,
        *comparison.changes.removed,
        *(m.resource for m in comparison.changes.modified),
    ]
    keys = [r.key for r in refs if r.mode == ResourceMode.MANAGED]
    return order_resources(keys, build_dependency_graph(current, target))


class RollbackCoordinator:
    """Plan and drive rollbacks of a deployment to a stored snapshot.

    Parameters
    ----------
    registry:
        Deployment registry (working directory lookup).
    store:
        Snapshot store used to resolve targets and save pre-rollback backups.
    capturer:
        Builds the fresh "current" snapshot.
    provisioner:
        External tool that performs the apply.
    locks:
        Per-deployment lock manager; rollbacks exclude concurrent writers.
    lock_timeout:
        Seconds to wait for the deployment lock before failing.
    """

    def __init__(
        self,
        registry: DeploymentRegistry,
        store: SnapshotStore,
        capturer: SnapshotCapturer,
        provisioner: ProvisionerInterface,
        locks: DeploymentLockManager,
        lock_timeout: float = 0.0,
    ) -> None:
        self._registry = registry
        self._store = store
        self._capturer = capturer
        self._provisioner = provisioner
        self._locks = locks
        self._lock_timeout = lock_timeout

    def _prepare(self, deployment_id: str, target_snapshot_id: str) -> tuple[Snapshot, Snapshot, ComparisonResult]:
        target = self._store.resolve(target_snapshot_id)
        if target.deployment_id != deployment_id:
            raise ValidationError(
                f"Snapshot {target.snapshot_id} belongs to deployment {target.deployment_id}, not {deployment_id}"
            )
        current = self._capturer.build(deployment_id, include_secrets=target.includes_secrets)
        comparison = compare_snapshots(current, target)
        return current, target, comparison

    def plan(self, deployment_id: str, target_snapshot_id: str) -> ComparisonResult:
        """Return what a rollback would change, without applying anything."""
        _, _, comparison = self._prepare(deployment_id, target_snapshot_id)
        return comparison

    def rollback(
        self,
        deployment_id: str,
        target_snapshot_id: str,
        backup_before: bool = True,
        hold_lock: bool = True,
    ) -> ComparisonResult:
        """Converge *deployment_id* toward the target snapshot.

        Returns the pre-rollback comparison (current -> target).  Pass
        ``hold_lock=False`` only when the caller already holds the
        deployment lock.

        Raises
        ------
        NotFoundError, ConflictError
            If the target identifier does not resolve to exactly one snapshot.
        ValidationError
            If the deployment is unknown or the snapshot belongs elsewhere.
        LockError
            If another writer holds the deployment.
        RollbackError
            If the provisioning tool fails; carries the comparison.
        """
        if not hold_lock:
            return self._converge(deployment_id, target_snapshot_id, backup_before)
        with self._locks.hold(deployment_id, owner="rollback", timeout=self._lock_timeout):
            return self._converge(deployment_id, target_snapshot_id, backup_before)

    def _converge(self, deployment_id: str, target_snapshot_id: str, backup_before: bool) -> ComparisonResult:
        current, target, comparison = self._prepare(deployment_id, target_snapshot_id)

        targets = convergence_targets(current, target, comparison)
        if not targets:
            logger.info(
                "Deployment %s already matches snapshot %s; nothing to roll back",
                deployment_id,
                target.snapshot_id,
            )
            return comparison

        if backup_before:
            path = self._store.save(current)
            logger.info("Saved pre-rollback snapshot %s to %s", current.snapshot_id, path)

        working_dir = Path(self._registry.get(deployment_id).working_directory)
        logger.info(
            "Rolling back %s to %s: %d resource(s) to converge",
            deployment_id,
            target.snapshot_id,
            len(targets),
        )
        try:
            self._provisioner.apply(working_dir, targets=targets)
        except ProvisioningError as exc:
            logger.error("Rollback of %s to %s failed: %s", deployment_id, target.snapshot_id, exc)
            raise RollbackError(
                f"Rollback of {deployment_id} to {target.snapshot_id} failed: {exc}",
                comparison=comparison,
                cause=exc,
            ) from exc

        logger.info("Rollback of %s to %s complete", deployment_id, target.snapshot_id)
        return comparison
