"""Diff models for comparing deployment snapshots.

A :class:`ComparisonResult` is derived on demand from two stored snapshots
(reference vs. difference) and is only persisted when explicitly exported.
The caller-specified reference/difference ordering is authoritative.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from lifecycle_engine.models.snapshot import Resource, ResourceMode


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChangeKind(str, Enum):
    """Classification of a resource between two snapshots."""

    ADDED = "ADDED"
    REMOVED = "REMOVED"
    MODIFIED = "MODIFIED"
    UNCHANGED = "UNCHANGED"


class ResourceRef(_CamelModel):
    """Identifies a resource without carrying its attributes."""

    key: str
    type: str
    name: str
    provider: str = ""
    mode: ResourceMode = ResourceMode.MANAGED

    @classmethod
    def from_resource(cls, resource: Resource) -> ResourceRef:
        return cls(
            key=resource.key,
            type=resource.type,
            name=resource.name,
            provider=resource.provider,
            mode=resource.mode,
        )


class FieldChange(_CamelModel):
    """A single property whose value differs between the two snapshots."""

    property: str
    old_value: Any = None
    new_value: Any = None


class ModifiedResource(_CamelModel):
    resource: ResourceRef
    field_changes: list[FieldChange] = Field(default_factory=list)


class DiffSummary(_CamelModel):
    added: int = Field(default=0, ge=0)
    removed: int = Field(default=0, ge=0)
    modified: int = Field(default=0, ge=0)
    unchanged: int = Field(default=0, ge=0)

    @property
    def total_changes(self) -> int:
        return self.added + self.removed + self.modified


class ChangeSet(_CamelModel):
    added: list[ResourceRef] = Field(default_factory=list)
    removed: list[ResourceRef] = Field(default_factory=list)
    modified: list[ModifiedResource] = Field(default_factory=list)
    unchanged: list[ResourceRef] | None = Field(
        default=None,
        description="Only populated when unchanged resources were requested.",
    )


class ComparisonResult(_CamelModel):
    """Structured diff between a reference and a difference snapshot.

    ``summary.added + summary.removed + summary.modified`` (plus
    ``summary.unchanged`` when requested) equals the size of the union of
    resource keys across both snapshots, less unchanged resources when those
    were not requested.
    """

    reference_id: str
    difference_id: str
    reference_time: datetime
    difference_time: datetime
    summary: DiffSummary = Field(default_factory=DiffSummary)
    changes: ChangeSet = Field(default_factory=ChangeSet)

    @property
    def has_changes(self) -> bool:
        return self.summary.total_changes > 0

    def changed_keys(self) -> list[str]:
        """Return every added, removed, or modified resource key."""
        keys = [r.key for r in self.changes.added]
        keys.extend(r.key for r in self.changes.removed)
        keys.extend(m.resource.key for m in self.changes.modified)
        return keys
