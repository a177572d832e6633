"""Execute one automation's task pipeline.

Tasks run sequentially under the deployment lock.  The first failing task
stops the pipeline; later tasks are recorded as skipped.  Whatever happens,
the outcome is appended to the config's history and, while the config is
still Active, ``next_run`` is advanced from the finish time.

Each :class:`~lifecycle_engine.models.automation.TaskAction` maps to one
handler method.  Handlers return a short human-readable message on success
and raise :class:`~lifecycle_engine.errors.LifecycleError` on failure.
"""

from __future__ import annotations

import logging
import secrets
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from lifecycle_engine.automation.schedule import compute_next_run
from lifecycle_engine.diff.snapshot_diff import compare_snapshots, drift_percentage
from lifecycle_engine.errors import LifecycleError, NotFoundError, ValidationError
from lifecycle_engine.git.git_client import SyncResult, sync_repository
from lifecycle_engine.models.automation import (
    AlertThresholds,
    AutomationConfig,
    AutomationStatus,
    ExecutionRecord,
    ExecutionStatus,
    Task,
    TaskAction,
    TaskResult,
)
from lifecycle_engine.models.diff import ComparisonResult
from lifecycle_engine.models.snapshot import Snapshot
from lifecycle_engine.provisioner.base import ProvisionerInterface
from lifecycle_engine.rollback.coordinator import RollbackCoordinator
from lifecycle_engine.snapshot.capturer import SnapshotCapturer
from lifecycle_engine.state.automation_registry import AutomationRegistry
from lifecycle_engine.state.deployment_registry import DeploymentRegistry
from lifecycle_engine.state.locks import DeploymentLockManager
from lifecycle_engine.state.snapshot_store import SnapshotStore
from lifecycle_engine.state.state_reader import StateReader

logger = logging.getLogger(__name__)

# Number of past executions considered when computing the failure rate.
FAILURE_RATE_WINDOW = 20


def _utcnow() -> datetime:
    return datetime.now(UTC)


def is_due(config: AutomationConfig, now: datetime) -> bool:
    """True when *config* is active and its ``next_run`` has passed."""
    next_run = config.schedule.next_run
    return config.is_active and next_run is not None and next_run <= now


@dataclass
class Alert:
    """An event raised during a run, delivered by the alert-processing task."""

    event_type: str
    message: str


@dataclass
class _RunContext:
    config: AutomationConfig
    working_dir: Path
    started_monotonic: float
    alerts: list[Alert] = field(default_factory=list)
    drift: float | None = None
    comparison: ComparisonResult | None = None
    baseline: Snapshot | None = None

    @property
    def deployment_id(self) -> str:
        return self.config.deployment_id

    @property
    def thresholds(self) -> AlertThresholds:
        return self.config.features.alert_thresholds or AlertThresholds()


class AutomationRunner:
    """Run automation pipelines on demand.

    Parameters
    ----------
    deployments:
        Deployment registry (working directory lookup).
    automations:
        Registry holding configs and history.
    store:
        Snapshot store used for baselines and backup rotation.
    capturer:
        Captures backups and builds fresh snapshots for drift checks.
    reader:
        State reader used by health checks.
    provisioner:
        External provisioning tool.
    rollback:
        Coordinator used by auto-rollback.
    locks:
        Per-deployment lock manager.
    lock_timeout:
        Seconds to wait for the deployment lock.
    repository_sync:
        Callable syncing a working directory with its remote.
    clock:
        Returns the current time (timezone-aware).
    """

    def __init__(
        self,
        deployments: DeploymentRegistry,
        automations: AutomationRegistry,
        store: SnapshotStore,
        capturer: SnapshotCapturer,
        reader: StateReader,
        provisioner: ProvisionerInterface,
        rollback: RollbackCoordinator,
        locks: DeploymentLockManager,
        lock_timeout: float = 0.0,
        repository_sync: Callable[[Path], SyncResult] = sync_repository,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._deployments = deployments
        self._automations = automations
        self._store = store
        self._capturer = capturer
        self._reader = reader
        self._provisioner = provisioner
        self._rollback = rollback
        self._locks = locks
        self._lock_timeout = lock_timeout
        self._repository_sync = repository_sync
        self._clock = clock
        self._handlers: dict[TaskAction, Callable[[_RunContext], str]] = {
            TaskAction.BACKUP: self._backup,
            TaskAction.DEPLOY: self._deploy,
            TaskAction.DRIFT_CHECK: self._drift_check,
            TaskAction.DRIFT_MONITOR: self._drift_monitor,
            TaskAction.BACKUP_ROTATION: self._backup_rotation,
            TaskAction.HEALTH_CHECK: self._health_check,
            TaskAction.UPDATE_CHECK: self._update_check,
            TaskAction.REPOSITORY_SYNC: self._repository_sync_task,
            TaskAction.VALIDATE: self._validate,
            TaskAction.PERFORMANCE_MONITOR: self._performance_monitor,
            TaskAction.ALERT_PROCESSING: self._alert_processing,
        }

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def run(self, automation_id: str) -> ExecutionRecord:
        """Run the pipeline of *automation_id* once and record the outcome.

        Raises
        ------
        NotFoundError
            If the automation does not exist.
        ValidationError
            If the automation is archived or not Active.
        """
        config = self._automations.get(automation_id)
        if config.is_historical or not config.is_active:
            raise ValidationError(f"Automation {automation_id} is not active ({config.status.value})")

        started_at = self._clock()
        record = ExecutionRecord(
            execution_id=f"exec-{started_at.astimezone(UTC):%Y%m%dT%H%M%S}-{secrets.token_hex(3)}",
            started_at=started_at,
        )
        log_extra = {
            "automation_id": automation_id,
            "deployment_id": config.deployment_id,
            "execution_id": record.execution_id,
        }
        logger.info("Running %s automation %s", config.type.value, automation_id, extra=log_extra)

        try:
            with self._locks.hold(
                config.deployment_id,
                owner=f"automation:{automation_id}",
                timeout=self._lock_timeout,
            ):
                working_dir = Path(self._deployments.get(config.deployment_id).working_directory)
                ctx = _RunContext(config=config, working_dir=working_dir, started_monotonic=time.monotonic())
                record.task_results = self._run_pipeline(ctx)
        except LifecycleError as exc:
            logger.error("Automation %s could not run: %s", automation_id, exc, extra=log_extra)
            record.status = ExecutionStatus.FAILED
            record.task_results = [
                TaskResult(name=t.name, action=t.action, status=ExecutionStatus.SKIPPED, message=str(exc))
                for t in config.tasks
            ]
        else:
            failed = any(r.status == ExecutionStatus.FAILED for r in record.task_results)
            record.status = ExecutionStatus.FAILED if failed else ExecutionStatus.SUCCEEDED

        record.finished_at = self._clock()
        self._record(config, record)
        logger.info(
            "Automation %s finished: %s",
            automation_id,
            record.status.value,
            extra=log_extra,
        )
        return record

    def _run_pipeline(self, ctx: _RunContext) -> list[TaskResult]:
        results: list[TaskResult] = []
        failed_task: str | None = None
        for task in ctx.config.tasks:
            if not task.enabled:
                results.append(self._skipped(task, "disabled"))
                continue
            if failed_task is not None:
                results.append(self._skipped(task, f"not run: {failed_task} failed"))
                continue
            result = self._run_task(task, ctx)
            results.append(result)
            if result.status == ExecutionStatus.FAILED:
                failed_task = task.name
        return results

    @staticmethod
    def _skipped(task: Task, message: str) -> TaskResult:
        return TaskResult(name=task.name, action=task.action, status=ExecutionStatus.SKIPPED, message=message)

    def _run_task(self, task: Task, ctx: _RunContext) -> TaskResult:
        started_at = self._clock()
        handler = self._handlers[task.action]
        try:
            message = handler(ctx)
            status = ExecutionStatus.SUCCEEDED
        except LifecycleError as exc:
            logger.warning("Task %s of %s failed: %s", task.name, ctx.config.automation_id, exc)
            message = str(exc)
            status = ExecutionStatus.FAILED
        except Exception as exc:
            logger.error(
                "Task %s of %s raised unexpectedly: %s",
                task.name,
                ctx.config.automation_id,
                exc,
                exc_info=True,
            )
            message = f"{type(exc).__name__}: {exc}"
            status = ExecutionStatus.FAILED
        if status == ExecutionStatus.FAILED:
            ctx.alerts.append(Alert("failure", f"{task.name}: {message}"))
        return TaskResult(
            name=task.name,
            action=task.action,
            status=status,
            message=message,
            started_at=started_at,
            finished_at=self._clock(),
        )

    def _record(self, config: AutomationConfig, record: ExecutionRecord) -> None:
        finished = record.finished_at or self._clock()

        def mutate(current: AutomationConfig) -> None:
            current.history.append(record)
            current.last_run = finished
            if current.status == AutomationStatus.ACTIVE:
                # Calendar windows are 02:00 local time.
                current.schedule.next_run = compute_next_run(
                    current.schedule.kind,
                    finished.astimezone(),
                    current.schedule.interval_hours,
                )

        try:
            self._automations.update(config.automation_id, mutate)
        except NotFoundError:
            logger.warning(
                "Automation %s was removed during its run; execution %s not recorded",
                config.automation_id,
                record.execution_id,
            )

    # ------------------------------------------------------------------
    # Task handlers
    # ------------------------------------------------------------------

    def _backup(self, ctx: _RunContext) -> str:
        ref = self._capturer.capture(ctx.deployment_id)
        return f"Captured snapshot {ref.snapshot_id} ({ref.resource_count} resources)"

    def _deploy(self, ctx: _RunContext) -> str:
        result = self._provisioner.apply(ctx.working_dir)
        return f"Applied {ctx.working_dir} in {result.duration_seconds:.1f}s"

    def _validate(self, ctx: _RunContext) -> str:
        self._provisioner.validate(ctx.working_dir)
        return f"Configuration in {ctx.working_dir} is valid"

    def _detect_drift(self, ctx: _RunContext) -> str:
        baseline = self._store.latest(ctx.deployment_id)
        if baseline is None:
            ref = self._capturer.capture(ctx.deployment_id)
            ctx.drift = 0.0
            return f"No baseline snapshot; captured {ref.snapshot_id} as baseline"

        current = self._capturer.build(ctx.deployment_id, include_secrets=baseline.includes_secrets)
        comparison = compare_snapshots(baseline, current)
        total = len(set(baseline.resource_map()) | set(current.resource_map()))
        ctx.baseline = baseline
        ctx.comparison = comparison
        ctx.drift = drift_percentage(comparison, total)

        summary = comparison.summary
        message = (
            f"Drift {ctx.drift:.1f}% against {baseline.snapshot_id}: "
            f"+{summary.added} -{summary.removed} ~{summary.modified}"
        )
        if comparison.has_changes:
            ctx.alerts.append(Alert("drift", message))
        return message

    def _drift_check(self, ctx: _RunContext) -> str:
        return self._detect_drift(ctx)

    def _drift_monitor(self, ctx: _RunContext) -> str:
        message = self._detect_drift(ctx)
        if ctx.comparison is None or ctx.baseline is None or not ctx.comparison.has_changes:
            return message

        auto_rollback = ctx.config.features.auto_rollback
        over_threshold = (ctx.drift or 0.0) > ctx.thresholds.drift_percentage
        on_any_drift = "drift" in (c.lower() for c in auto_rollback.trigger_conditions)
        if not auto_rollback.enabled or not (over_threshold or on_any_drift):
            return message

        logger.warning(
            "Drift on %s triggered auto-rollback to %s",
            ctx.deployment_id,
            ctx.baseline.snapshot_id,
        )
        self._rollback.rollback(ctx.deployment_id, ctx.baseline.snapshot_id, hold_lock=False)
        ctx.alerts.append(Alert("rollback", f"Rolled back {ctx.deployment_id} to {ctx.baseline.snapshot_id}"))
        return f"{message}; rolled back to {ctx.baseline.snapshot_id}"

    def _backup_rotation(self, ctx: _RunContext) -> str:
        keep = ctx.config.features.auto_backup.retention_count
        removed = self._store.prune(ctx.deployment_id, keep)
        return f"Removed {len(removed)} snapshot(s); keeping {keep}"

    def _health_check(self, ctx: _RunContext) -> str:
        graph = self._reader.read_state(ctx.deployment_id)
        return f"State readable: serial {graph.serial}, {len(graph.resources)} resources"

    def _update_check(self, ctx: _RunContext) -> str:
        return f"Provisioning tool version {self._provisioner.version()}"

    def _repository_sync_task(self, ctx: _RunContext) -> str:
        result = self._repository_sync(ctx.working_dir)
        if result.updated:
            return f"Updated {result.branch} {result.previous_sha[:12]} -> {result.current_sha[:12]}"
        return f"{result.branch} already at {result.current_sha[:12]}"

    def _performance_monitor(self, ctx: _RunContext) -> str:
        thresholds = ctx.thresholds
        elapsed_ms = (time.monotonic() - ctx.started_monotonic) * 1000.0

        recent = ctx.config.history[-FAILURE_RATE_WINDOW:]
        failures = sum(1 for r in recent if r.status == ExecutionStatus.FAILED)
        failure_rate = 100.0 * failures / len(recent) if recent else 0.0

        if elapsed_ms > thresholds.response_time:
            ctx.alerts.append(
                Alert("performance", f"Pipeline took {elapsed_ms:.0f}ms (threshold {thresholds.response_time:.0f}ms)")
            )
        if failure_rate > thresholds.failure_rate:
            ctx.alerts.append(
                Alert("failure-rate", f"Failure rate {failure_rate:.1f}% (threshold {thresholds.failure_rate:.1f}%)")
            )
        return f"Response {elapsed_ms:.0f}ms, failure rate {failure_rate:.1f}% over {len(recent)} run(s)"

    def _alert_processing(self, ctx: _RunContext) -> str:
        notifications = ctx.config.features.notifications
        wanted = {e.lower() for e in notifications.event_types}
        delivered = [a for a in ctx.alerts if not wanted or a.event_type in wanted]
        for alert in delivered:
            logger.warning(
                "Notification [%s] for %s to %s: %s",
                alert.event_type,
                ctx.deployment_id,
                notifications.endpoint or "log",
                alert.message,
                extra={"automation_id": ctx.config.automation_id, "deployment_id": ctx.deployment_id},
            )
        return f"Processed {len(delivered)} alert(s)"
