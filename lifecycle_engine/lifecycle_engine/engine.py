"""Wire the engine's components together from :class:`Settings`.

Every consumer (CLI, daemon, tests) builds its object graph here so that
paths, retry policy, redaction keys, and lock TTLs come from one place.
"""

from __future__ import annotations

from dataclasses import dataclass

from lifecycle_engine.automation.daemon import AutomationDaemon
from lifecycle_engine.automation.manager import AutomationService
from lifecycle_engine.automation.runner import AutomationRunner
from lifecycle_engine.automation.triggers import (
    CrontabTriggerScheduler,
    NullTriggerScheduler,
    TriggerScheduler,
)
from lifecycle_engine.config import Settings, TriggerBackend
from lifecycle_engine.diff.snapshot_diff import SnapshotDiffer
from lifecycle_engine.provisioner.base import ProvisionerInterface
from lifecycle_engine.provisioner.retry import RetryConfig
from lifecycle_engine.provisioner.tofu_client import TofuClient
from lifecycle_engine.rollback.coordinator import RollbackCoordinator
from lifecycle_engine.snapshot.capturer import SnapshotCapturer
from lifecycle_engine.snapshot.redactor import Redactor
from lifecycle_engine.state.automation_registry import AutomationRegistry
from lifecycle_engine.state.deployment_registry import DeploymentRegistry
from lifecycle_engine.state.locks import DeploymentLockManager
from lifecycle_engine.state.snapshot_store import SnapshotStore
from lifecycle_engine.state.state_reader import StateReader


@dataclass
class Engine:
    """Fully wired set of engine services."""

    settings: Settings
    deployments: DeploymentRegistry
    store: SnapshotStore
    reader: StateReader
    capturer: SnapshotCapturer
    differ: SnapshotDiffer
    locks: DeploymentLockManager
    provisioner: ProvisionerInterface
    rollback: RollbackCoordinator
    automations: AutomationRegistry
    automation_service: AutomationService
    runner: AutomationRunner

    def daemon(self) -> AutomationDaemon:
        return AutomationDaemon(
            self.runner,
            self.automations,
            poll_interval=self.settings.scheduler_poll_interval,
            task_timeout=self.settings.task_timeout_seconds,
        )


def _trigger_backend(settings: Settings) -> TriggerScheduler:
    if settings.trigger_backend == TriggerBackend.CRONTAB:
        return CrontabTriggerScheduler()
    return NullTriggerScheduler()


def build_engine(
    settings: Settings,
    provisioner: ProvisionerInterface | None = None,
    triggers: TriggerScheduler | None = None,
) -> Engine:
    """Build an :class:`Engine` rooted at ``settings.state_root``.

    Parameters
    ----------
    settings:
        Loaded configuration.
    provisioner:
        Override for the provisioning tool; defaults to :class:`TofuClient`.
    triggers:
        Override for the platform trigger backend.
    """
    deployments = DeploymentRegistry(settings.deployments_dir)
    store = SnapshotStore(settings.snapshots_dir)
    reader = StateReader(deployments, state_file_name=settings.state_file_name)
    capturer = SnapshotCapturer(
        deployments,
        reader,
        store,
        redactor=Redactor(settings.sensitive_keys, sentinel=settings.redaction_sentinel),
    )
    locks = DeploymentLockManager(settings.locks_dir, ttl_seconds=settings.lock_ttl_seconds)
    provisioner = provisioner or TofuClient(
        binary=settings.provisioning_binary,
        timeout_seconds=settings.provisioning_timeout_seconds,
        retry=RetryConfig(
            max_retries=settings.max_retries,
            base_delay=settings.retry_backoff_base,
            max_delay=settings.retry_max_delay,
        ),
    )
    rollback = RollbackCoordinator(deployments, store, capturer, provisioner, locks)
    automations = AutomationRegistry(settings.deployments_dir, settings.archive_dir)

    return Engine(
        settings=settings,
        deployments=deployments,
        store=store,
        reader=reader,
        capturer=capturer,
        differ=SnapshotDiffer(store),
        locks=locks,
        provisioner=provisioner,
        rollback=rollback,
        automations=automations,
        automation_service=AutomationService(
            deployments,
            automations,
            triggers=triggers or _trigger_backend(settings),
            repository_poll_minutes=settings.repository_poll_interval_minutes,
            default_retention_count=settings.default_retention_count,
        ),
        runner=AutomationRunner(
            deployments,
            automations,
            store,
            capturer,
            reader,
            provisioner,
            rollback,
            locks,
        ),
    )
