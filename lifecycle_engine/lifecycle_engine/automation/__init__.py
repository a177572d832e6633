"""Recurring per-deployment automation: scheduling, execution, daemon."""

from lifecycle_engine.automation.daemon import AutomationDaemon
from lifecycle_engine.automation.manager import AutomationService
from lifecycle_engine.automation.runner import AutomationRunner, is_due
from lifecycle_engine.automation.schedule import (
    apply_type_features,
    build_task_pipeline,
    compute_next_run,
    parse_automation_type,
    parse_schedule_kind,
)
from lifecycle_engine.automation.triggers import (
    CrontabTriggerScheduler,
    NullTriggerScheduler,
    TriggerScheduler,
)

__all__ = [
    "AutomationDaemon",
    "AutomationRunner",
    "AutomationService",
    "CrontabTriggerScheduler",
    "NullTriggerScheduler",
    "TriggerScheduler",
    "apply_type_features",
    "build_task_pipeline",
    "compute_next_run",
    "is_due",
    "parse_automation_type",
    "parse_schedule_kind",
]
