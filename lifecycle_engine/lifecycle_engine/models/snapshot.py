"""Snapshot models for capturing point-in-time deployment state.

A snapshot records every resource, instance, and output of a deployment as
reported by the provisioning tool's state file at capture time.  Snapshots
are immutable once built; field names serialise in camelCase so the on-disk
JSON matches the documented file format.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ResourceMode(str, Enum):
    """Whether a resource is managed by the tool or read through a data source."""

    MANAGED = "managed"
    DATA = "data"


class Instance(_CamelModel):
    """One realised copy of a resource (``count``/``for_each`` yield several)."""

    index_key: int | str | None = Field(
        default=None,
        description="Disambiguates instances of the same resource.",
    )
    schema_version: int = Field(default=0, ge=0)
    attributes: dict[str, Any] = Field(
        default_factory=dict,
        description="Provider attributes, in the order the state file lists them.",
    )
    dependencies: list[str] = Field(
        default_factory=list,
        description="Resource keys this instance depends on, sorted and unique.",
    )

    @field_validator("dependencies", mode="after")
    @classmethod
    def sort_dependencies(cls, v: list[str]) -> list[str]:
        return sorted(set(v))


class Resource(_CamelModel):
    """A declared infrastructure object and its instances."""

    type: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    provider: str = ""
    mode: ResourceMode = ResourceMode.MANAGED
    module: str | None = Field(
        default=None,
        description="Module address, e.g. 'module.network'; None for the root module.",
    )
    instances: list[Instance] = Field(default_factory=list)

    @property
    def key(self) -> str:
        """Resource key, ``type.name`` (prefixed by the module address when set)."""
        base = f"{self.type}.{self.name}"
        return f"{self.module}.{base}" if self.module else base

    @model_validator(mode="after")
    def validate_unique_index_keys(self) -> Resource:
        seen: set[str] = set()
        for instance in self.instances:
            marker = repr(instance.index_key)
            if marker in seen:
                raise ValueError(f"Duplicate instance index_key {instance.index_key!r} in resource {self.key}")
            seen.add(marker)
        return self


class OutputValue(_CamelModel):
    """A single output of the deployment."""

    value: Any = None
    type: Any = None
    sensitive: bool = False


class SnapshotMetadata(_CamelModel):
    provider: str = ""
    environment: str = ""
    tags: list[str] = Field(default_factory=list)


class ResourceGraph(_CamelModel):
    """The provisioning tool's state, adapted to engine types."""

    resources: list[Resource] = Field(default_factory=list)
    outputs: dict[str, OutputValue] = Field(default_factory=dict)
    serial: int = Field(default=0, ge=0)
    version: int = Field(default=4, description="State file format version.")
    terraform_version: str | None = None


class Snapshot(_CamelModel):
    """Immutable capture of a deployment's resource graph and outputs.

    ``(type, name)`` -- the resource key -- is unique within a snapshot, and
    ``(type, name, index_key)`` is unique across instances.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    snapshot_id: str = Field(..., min_length=1)
    deployment_id: str = Field(..., min_length=1)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    serial: int = Field(default=0, ge=0)
    version: int = 4
    resources: list[Resource] = Field(default_factory=list)
    outputs: dict[str, OutputValue] = Field(default_factory=dict)
    metadata: SnapshotMetadata = Field(default_factory=SnapshotMetadata)
    includes_secrets: bool = False

    @model_validator(mode="after")
    def validate_unique_resource_keys(self) -> Snapshot:
        seen: set[str] = set()
        for resource in self.resources:
            if resource.key in seen:
                raise ValueError(f"Duplicate resource key {resource.key!r} in snapshot {self.snapshot_id}")
            seen.add(resource.key)
        return self

    @property
    def resource_count(self) -> int:
        return len(self.resources)

    def resource_map(self) -> dict[str, Resource]:
        """Return resources keyed by resource key, preserving snapshot order."""
        return {r.key: r for r in self.resources}


class SnapshotRef(_CamelModel):
    """Lightweight pointer to a stored snapshot."""

    snapshot_id: str
    deployment_id: str
    file_path: Path
    size: int = Field(..., ge=0, description="File size in bytes.")
    resource_count: int = Field(..., ge=0)
    timestamp: datetime
    serial: int = 0
