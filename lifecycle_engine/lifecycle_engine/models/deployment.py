"""Deployment record model."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class DeploymentRecord(BaseModel):
    """Where a deployment lives and how it is labelled."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    deployment_id: str = Field(..., min_length=1, pattern=r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")
    working_directory: Path = Field(
        ...,
        description="Directory holding the provisioning tool's configuration and state file.",
    )
    provider: str = ""
    environment: str = ""
    tags: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
