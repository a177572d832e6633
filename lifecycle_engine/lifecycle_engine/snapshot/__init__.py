"""Snapshot capture and attribute redaction."""

from lifecycle_engine.snapshot.capturer import SnapshotCapturer, new_snapshot_id
from lifecycle_engine.snapshot.redactor import REDACTED, Redactor, redact

__all__ = [
    "REDACTED",
    "Redactor",
    "SnapshotCapturer",
    "new_snapshot_id",
    "redact",
]
