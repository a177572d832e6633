"""Deterministic diff engine for deployment snapshots."""

from lifecycle_engine.diff.serializer import (
    ExportFormat,
    deserialize_comparison,
    export_comparison,
    format_comparison_text,
    serialize_comparison,
)
from lifecycle_engine.diff.snapshot_diff import (
    INSTANCE_COUNT_PROPERTY,
    SnapshotDiffer,
    compare_snapshots,
    diff_resource,
    drift_percentage,
)

__all__ = [
    "INSTANCE_COUNT_PROPERTY",
    "ExportFormat",
    "SnapshotDiffer",
    "compare_snapshots",
    "deserialize_comparison",
    "diff_resource",
    "drift_percentage",
    "export_comparison",
    "format_comparison_text",
    "serialize_comparison",
]
