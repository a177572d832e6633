"""Domain models for the lifecycle engine."""

from lifecycle_engine.models.automation import (
    AlertThresholds,
    AutoBackupFeature,
    AutomationConfig,
    AutomationFeatures,
    AutomationStatus,
    AutomationSummary,
    AutomationType,
    AutoRollbackFeature,
    DriftDetectionFeature,
    ExecutionRecord,
    ExecutionStatus,
    NotificationsFeature,
    RepositoryWatchFeature,
    ScheduleKind,
    ScheduleSpec,
    Task,
    TaskAction,
    TaskResult,
)
from lifecycle_engine.models.deployment import DeploymentRecord
from lifecycle_engine.models.diff import (
    ChangeKind,
    ChangeSet,
    ComparisonResult,
    DiffSummary,
    FieldChange,
    ModifiedResource,
    ResourceRef,
)
from lifecycle_engine.models.snapshot import (
    Instance,
    OutputValue,
    Resource,
    ResourceGraph,
    ResourceMode,
    Snapshot,
    SnapshotMetadata,
    SnapshotRef,
)

__all__ = [
    "AlertThresholds",
    "AutoBackupFeature",
    "AutoRollbackFeature",
    "AutomationConfig",
    "AutomationFeatures",
    "AutomationStatus",
    "AutomationSummary",
    "AutomationType",
    "ChangeKind",
    "ChangeSet",
    "ComparisonResult",
    "DeploymentRecord",
    "DiffSummary",
    "DriftDetectionFeature",
    "ExecutionRecord",
    "ExecutionStatus",
    "FieldChange",
    "Instance",
    "ModifiedResource",
    "NotificationsFeature",
    "OutputValue",
    "RepositoryWatchFeature",
    "Resource",
    "ResourceGraph",
    "ResourceMode",
    "ResourceRef",
    "ScheduleKind",
    "ScheduleSpec",
    "Snapshot",
    "SnapshotMetadata",
    "SnapshotRef",
    "Task",
    "TaskAction",
    "TaskResult",
]
