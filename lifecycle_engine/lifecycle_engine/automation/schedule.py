"""Next-run computation and task pipeline assembly.

Both functions are pure and deterministic: the same inputs always produce
the same schedule and the same ordered pipeline.
"""

from __future__ import annotations

from datetime import datetime, time, timedelta

from lifecycle_engine.errors import ValidationError
from lifecycle_engine.models.automation import (
    AlertThresholds,
    AutomationFeatures,
    AutomationType,
    RepositoryWatchFeature,
    ScheduleKind,
    Task,
    TaskAction,
)

# Maintenance windows for calendar schedules start at 02:00 in the caller's
# timezone.
MAINTENANCE_HOUR = time(2, 0)
DEFAULT_INTERVAL_HOURS = 24.0
DEFAULT_REPOSITORY_POLL_MINUTES = 5

_SUNDAY = 6  # datetime.weekday(): Monday=0 ... Sunday=6


def parse_schedule_kind(value: str | ScheduleKind) -> ScheduleKind:
    """Parse a schedule kind case-insensitively."""
    if isinstance(value, ScheduleKind):
        return value
    for kind in ScheduleKind:
        if kind.value.lower() == str(value).strip().lower():
            return kind
    raise ValidationError(f"Unknown schedule '{value}'. Expected one of: {', '.join(k.value for k in ScheduleKind)}")


def parse_automation_type(value: str | AutomationType) -> AutomationType:
    """Parse an automation type case-insensitively."""
    if isinstance(value, AutomationType):
        return value
    for kind in AutomationType:
        if kind.value.lower() == str(value).strip().lower():
            return kind
    raise ValidationError(
        f"Unknown automation type '{value}'. Expected one of: {', '.join(t.value for t in AutomationType)}"
    )


def _at_window(day: datetime) -> datetime:
    return datetime.combine(day.date(), MAINTENANCE_HOUR, tzinfo=day.tzinfo)


def compute_next_run(
    kind: ScheduleKind | str,
    now: datetime,
    interval_hours: float | None = None,
) -> datetime:
    """Compute the next run time for a schedule.

    * ``Hourly`` -- ``now + 1h``.
    * ``Daily`` -- the calendar day after ``now`` at 02:00.
    * ``Weekly`` -- the next Sunday strictly after ``now``'s date at 02:00
      (a Sunday yields the following Sunday, seven days later).
    * ``Monthly`` -- the first day of the following month at 02:00.
    * ``Custom`` -- ``now + interval_hours`` (24h when unset).

    Calendar schedules use ``now``'s timezone.  The result is always
    strictly later than ``now``.
    """
    kind = parse_schedule_kind(kind)

    if kind == ScheduleKind.HOURLY:
        return now + timedelta(hours=1)

    if kind == ScheduleKind.DAILY:
        return _at_window(now + timedelta(days=1))

    if kind == ScheduleKind.WEEKLY:
        days_ahead = (_SUNDAY - now.weekday()) % 7 or 7
        return _at_window(now + timedelta(days=days_ahead))

    if kind == ScheduleKind.MONTHLY:
        if now.month == 12:
            first = now.replace(year=now.year + 1, month=1, day=1)
        else:
            first = now.replace(month=now.month + 1, day=1)
        return _at_window(first)

    hours = interval_hours if interval_hours is not None else DEFAULT_INTERVAL_HOURS
    if hours <= 0:
        raise ValidationError(f"interval_hours must be positive, got {hours}")
    return now + timedelta(hours=hours)


def build_task_pipeline(automation_type: AutomationType, features: AutomationFeatures) -> list[Task]:
    """Return the ordered task list for an automation type.

    Tasks that depend on an optional feature are present but disabled when
    the feature is off, so the pipeline shape is the same for every config
    of a given type.
    """
    if automation_type == AutomationType.SCHEDULED:
        return [
            Task(name="PreDeploymentBackup", enabled=features.auto_backup.enabled, action=TaskAction.BACKUP),
            Task(name="DeploymentExecution", enabled=True, action=TaskAction.DEPLOY),
            Task(name="PostDeploymentValidation", enabled=True, action=TaskAction.DRIFT_CHECK),
        ]

    if automation_type == AutomationType.CONTINUOUS_DEPLOYMENT:
        return [
            Task(name="RepositorySync", enabled=True, action=TaskAction.REPOSITORY_SYNC),
            Task(name="ConfigurationValidation", enabled=True, action=TaskAction.VALIDATE),
            Task(name="AutomaticDeployment", enabled=True, action=TaskAction.DEPLOY),
        ]

    if automation_type == AutomationType.MAINTENANCE:
        return [
            Task(name="DriftDetection", enabled=features.drift_detection.enabled, action=TaskAction.DRIFT_CHECK),
            Task(name="BackupRotation", enabled=features.auto_backup.enabled, action=TaskAction.BACKUP_ROTATION),
            Task(name="HealthCheck", enabled=True, action=TaskAction.HEALTH_CHECK),
            Task(name="UpdateCheck", enabled=True, action=TaskAction.UPDATE_CHECK),
        ]

    if automation_type == AutomationType.MONITORING:
        return [
            Task(
                name="ContinuousDriftMonitoring",
                enabled=features.drift_detection.enabled,
                action=TaskAction.DRIFT_MONITOR,
            ),
            Task(name="PerformanceMonitoring", enabled=True, action=TaskAction.PERFORMANCE_MONITOR),
            Task(name="AlertProcessing", enabled=features.notifications.enabled, action=TaskAction.ALERT_PROCESSING),
        ]

    raise ValidationError(f"Unsupported automation type: {automation_type}")


def apply_type_features(
    automation_type: AutomationType,
    features: AutomationFeatures,
    repository_poll_minutes: int = DEFAULT_REPOSITORY_POLL_MINUTES,
) -> AutomationFeatures:
    """Return a copy of *features* with the type-specific extras set.

    ContinuousDeployment gains a repository watch with a fixed poll
    interval; Monitoring gains alert thresholds (kept if already given).
    """
    update: dict[str, object] = {}
    if automation_type == AutomationType.CONTINUOUS_DEPLOYMENT:
        update["repository_watch"] = RepositoryWatchFeature(enabled=True, poll_interval_minutes=repository_poll_minutes)
    elif automation_type == AutomationType.MONITORING:
        update["alert_thresholds"] = features.alert_thresholds or AlertThresholds()
    return features.model_copy(update=update, deep=True)
