"""Starting and stopping automations.

``start`` validates the deployment, computes the first ``next_run``, builds
the task pipeline for the automation type, persists the config, and
optionally registers a platform trigger.  ``stop`` disables the config (so
no future run fires) and unregisters the trigger best-effort.

Only one Active config may exist per deployment and automation type.
Starting a second one raises :class:`ConflictError` unless ``replace=True``,
in which case the existing config is disabled and moved to the archive
first.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from datetime import datetime

from lifecycle_engine.automation.schedule import (
    DEFAULT_REPOSITORY_POLL_MINUTES,
    apply_type_features,
    build_task_pipeline,
    compute_next_run,
    parse_automation_type,
    parse_schedule_kind,
)
from lifecycle_engine.automation.triggers import NullTriggerScheduler, TriggerScheduler
from lifecycle_engine.errors import ConflictError, LifecycleError, ValidationError
from lifecycle_engine.models.automation import (
    AutoBackupFeature,
    AutomationConfig,
    AutomationFeatures,
    AutomationStatus,
    AutomationType,
    ScheduleKind,
    ScheduleSpec,
)
from lifecycle_engine.state.automation_registry import AutomationRegistry
from lifecycle_engine.state.deployment_registry import DeploymentRegistry

logger = logging.getLogger(__name__)


def _local_now() -> datetime:
    return datetime.now().astimezone()


def new_automation_id(now: datetime) -> str:
    return f"auto-{now:%Y%m%d%H%M%S}-{secrets.token_hex(3)}"


class AutomationService:
    """Create and retire automation configs.

    Parameters
    ----------
    deployments:
        Used to check that the target deployment exists.
    automations:
        Persistence for configs.
    triggers:
        Platform trigger backend; defaults to a no-op backend.
    repository_poll_minutes:
        Poll interval recorded on ContinuousDeployment repository watches.
    default_retention_count:
        Backup retention used when :meth:`start` is called without features.
    clock:
        Returns the current (timezone-aware) time.
    """

    def __init__(
        self,
        deployments: DeploymentRegistry,
        automations: AutomationRegistry,
        triggers: TriggerScheduler | None = None,
        repository_poll_minutes: int = DEFAULT_REPOSITORY_POLL_MINUTES,
        default_retention_count: int = 10,
        clock: Callable[[], datetime] = _local_now,
    ) -> None:
        self._deployments = deployments
        self._automations = automations
        self._triggers = triggers or NullTriggerScheduler()
        self._repository_poll_minutes = repository_poll_minutes
        self._default_retention_count = default_retention_count
        self._clock = clock

    def start(
        self,
        deployment_id: str,
        automation_type: AutomationType | str,
        schedule: ScheduleKind | str = ScheduleKind.DAILY,
        features: AutomationFeatures | None = None,
        interval_hours: float | None = None,
        replace: bool = False,
    ) -> AutomationConfig:
        """Create and persist a new Active automation.

        Raises
        ------
        ValidationError
            If the deployment is unknown, or the type/schedule is malformed.
        ConflictError
            If an Active config of the same type exists and *replace* is
            false.
        """
        if not self._deployments.exists(deployment_id):
            raise ValidationError(f"Unknown deployment: {deployment_id}")

        kind = parse_schedule_kind(schedule)
        a_type = parse_automation_type(automation_type)
        if interval_hours is not None and interval_hours <= 0:
            raise ValidationError(f"interval_hours must be positive, got {interval_hours}")

        existing = self._automations.find_active(deployment_id, a_type)
        if existing is not None:
            if not replace:
                raise ConflictError(
                    f"Deployment {deployment_id} already has an active {a_type.value} automation "
                    f"({existing.automation_id}); stop it or start with replace"
                )
            self._retire(existing.automation_id)

        feature_set = apply_type_features(
            a_type,
            features or self._default_features(),
            repository_poll_minutes=self._repository_poll_minutes,
        )
        now = self._clock()
        config = AutomationConfig(
            automation_id=new_automation_id(now),
            deployment_id=deployment_id,
            type=a_type,
            schedule=ScheduleSpec(
                kind=kind,
                interval_hours=interval_hours,
                next_run=compute_next_run(kind, now, interval_hours),
            ),
            features=feature_set,
            tasks=build_task_pipeline(a_type, feature_set),
            status=AutomationStatus.ACTIVE,
            enabled=True,
            created_at=now,
            last_modified=now,
        )
        self._automations.create(config)

        try:
            self._triggers.register(config)
        except LifecycleError as exc:
            logger.warning(
                "Could not register platform trigger for %s (the daemon will still run it): %s",
                config.automation_id,
                exc,
            )

        logger.info(
            "Started %s automation %s for %s; next run %s",
            a_type.value,
            config.automation_id,
            deployment_id,
            config.schedule.next_run.isoformat() if config.schedule.next_run else "-",
        )
        return config

    def _retire(self, automation_id: str) -> None:
        self._automations.disable(automation_id, remove_config_files=False)
        self._automations.archive(automation_id)
        self._unregister(automation_id)
        logger.info("Replaced automation %s", automation_id)

    def _unregister(self, automation_id: str) -> None:
        try:
            self._triggers.unregister(automation_id)
        except LifecycleError as exc:
            logger.warning("Could not unregister platform trigger for %s: %s", automation_id, exc)

    def _default_features(self) -> AutomationFeatures:
        return AutomationFeatures(auto_backup=AutoBackupFeature(retention_count=self._default_retention_count))

    def stop(
        self,
        automation_id: str,
        remove_configuration: bool = False,
        unregister_triggers: bool = True,
    ) -> AutomationConfig:
        """Disable an automation.

        The config is disabled before triggers are touched, so a trigger that
        fires in between finds it inactive and does nothing.

        Raises
        ------
        NotFoundError
            If the automation does not exist in active state.
        """
        config = self._automations.disable(automation_id, remove_config_files=remove_configuration)
        if unregister_triggers:
            self._unregister(automation_id)
        logger.info(
            "Stopped automation %s%s",
            automation_id,
            " and removed its configuration" if remove_configuration else "",
        )
        return config
