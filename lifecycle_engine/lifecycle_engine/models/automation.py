"""Automation models for recurring per-deployment workflows.

An :class:`AutomationConfig` is created by ``start``, mutated only by
scheduler runs (``next_run``, ``history``) and by ``stop`` (status flip).
``DISABLED`` is terminal for a given config.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AutomationType(str, Enum):
    SCHEDULED = "Scheduled"
    CONTINUOUS_DEPLOYMENT = "ContinuousDeployment"
    MAINTENANCE = "Maintenance"
    MONITORING = "Monitoring"


class ScheduleKind(str, Enum):
    HOURLY = "Hourly"
    DAILY = "Daily"
    WEEKLY = "Weekly"
    MONTHLY = "Monthly"
    CUSTOM = "Custom"


class AutomationStatus(str, Enum):
    ACTIVE = "Active"
    DISABLED = "Disabled"


class TaskAction(str, Enum):
    """Handler identifier for a pipeline task."""

    BACKUP = "backup"
    DEPLOY = "deploy"
    DRIFT_CHECK = "drift-check"
    DRIFT_MONITOR = "drift-monitor"
    BACKUP_ROTATION = "backup-rotation"
    HEALTH_CHECK = "health-check"
    UPDATE_CHECK = "update-check"
    REPOSITORY_SYNC = "repository-sync"
    VALIDATE = "validate"
    PERFORMANCE_MONITOR = "performance-monitor"
    ALERT_PROCESSING = "alert-processing"


class ExecutionStatus(str, Enum):
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    SKIPPED = "Skipped"


# ---------------------------------------------------------------------------
# Schedule & features
# ---------------------------------------------------------------------------


class ScheduleSpec(_CamelModel):
    kind: ScheduleKind = ScheduleKind.DAILY
    interval_hours: float | None = Field(
        default=None,
        gt=0,
        description="Interval for Custom schedules; 24h when unset.",
    )
    next_run: datetime | None = None


class DriftDetectionFeature(_CamelModel):
    enabled: bool = False
    interval_hours: float = Field(default=24.0, gt=0)


class AutoBackupFeature(_CamelModel):
    enabled: bool = False
    retention_count: int = Field(default=10, ge=1)


class AutoRollbackFeature(_CamelModel):
    enabled: bool = False
    trigger_conditions: list[str] = Field(default_factory=list)


class NotificationsFeature(_CamelModel):
    enabled: bool = False
    endpoint: str | None = None
    event_types: list[str] = Field(default_factory=list)


class RepositoryWatchFeature(_CamelModel):
    enabled: bool = True
    poll_interval_minutes: int = Field(default=5, ge=1)


class AlertThresholds(_CamelModel):
    drift_percentage: float = Field(default=10.0, ge=0)
    failure_rate: float = Field(default=5.0, ge=0)
    response_time: float = Field(default=5000.0, ge=0, description="Milliseconds.")


class AutomationFeatures(_CamelModel):
    drift_detection: DriftDetectionFeature = Field(default_factory=DriftDetectionFeature)
    auto_backup: AutoBackupFeature = Field(default_factory=AutoBackupFeature)
    auto_rollback: AutoRollbackFeature = Field(default_factory=AutoRollbackFeature)
    notifications: NotificationsFeature = Field(default_factory=NotificationsFeature)
    repository_watch: RepositoryWatchFeature | None = None
    alert_thresholds: AlertThresholds | None = None


# ---------------------------------------------------------------------------
# Pipeline & history
# ---------------------------------------------------------------------------


class Task(_CamelModel):
    name: str = Field(..., min_length=1)
    enabled: bool = True
    action: TaskAction


class TaskResult(_CamelModel):
    name: str
    action: TaskAction
    status: ExecutionStatus
    message: str = ""
    started_at: datetime | None = None
    finished_at: datetime | None = None


class ExecutionRecord(_CamelModel):
    """One past run of an automation's pipeline."""

    execution_id: str
    started_at: datetime
    finished_at: datetime | None = None
    status: ExecutionStatus = ExecutionStatus.SUCCEEDED
    task_results: list[TaskResult] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


class AutomationConfig(_CamelModel):
    automation_id: str = Field(..., min_length=1)
    deployment_id: str = Field(..., min_length=1)
    type: AutomationType
    schedule: ScheduleSpec = Field(default_factory=ScheduleSpec)
    features: AutomationFeatures = Field(default_factory=AutomationFeatures)
    tasks: list[Task] = Field(default_factory=list)
    history: list[ExecutionRecord] = Field(default_factory=list)
    status: AutomationStatus = AutomationStatus.ACTIVE
    enabled: bool = True
    created_at: datetime
    last_modified: datetime
    last_run: datetime | None = None
    is_historical: bool = Field(
        default=False,
        exclude=True,
        description="Set when the record was loaded from the archive; never persisted.",
    )

    @property
    def is_active(self) -> bool:
        return self.status == AutomationStatus.ACTIVE and self.enabled


class AutomationSummary(_CamelModel):
    automation_id: str
    deployment_id: str
    type: AutomationType
    status: AutomationStatus
    schedule_kind: ScheduleKind
    next_run: datetime | None = None
    last_run: datetime | None = None
    created_at: datetime
    run_count: int = 0
    is_historical: bool = False

    @classmethod
    def from_config(cls, config: AutomationConfig) -> AutomationSummary:
        return cls(
            automation_id=config.automation_id,
            deployment_id=config.deployment_id,
            type=config.type,
            status=config.status,
            schedule_kind=config.schedule.kind,
            next_run=config.schedule.next_run,
            last_run=config.last_run,
            created_at=config.created_at,
            run_count=len(config.history),
            is_historical=config.is_historical,
        )
