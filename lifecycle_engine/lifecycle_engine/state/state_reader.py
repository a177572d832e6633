"""Adapter from the provisioning tool's state file to engine types.

Reads the canonical OpenTofu/Terraform state document (format version 4)
from a deployment's working directory and converts it into a
:class:`~lifecycle_engine.models.snapshot.ResourceGraph`.  This module never
writes the state file.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from lifecycle_engine.errors import StorageError, StorageReason
from lifecycle_engine.models.snapshot import Instance, OutputValue, Resource, ResourceGraph
from lifecycle_engine.state._files import read_json
from lifecycle_engine.state.deployment_registry import DeploymentRegistry

logger = logging.getLogger(__name__)

DEFAULT_STATE_FILE = "terraform.tfstate"


def _parse_instance(raw: dict[str, Any]) -> Instance:
    return Instance(
        index_key=raw.get("index_key"),
        schema_version=raw.get("schema_version", 0) or 0,
        attributes=dict(raw.get("attributes") or {}),
        dependencies=list(raw.get("dependencies") or []),
    )


def _parse_resource(raw: dict[str, Any]) -> Resource:
    return Resource(
        type=raw["type"],
        name=raw["name"],
        provider=raw.get("provider", ""),
        mode=raw.get("mode", "managed"),
        module=raw.get("module"),
        instances=[_parse_instance(i) for i in raw.get("instances") or []],
    )


def parse_state(document: Any, source: str = "<state>") -> ResourceGraph:
    """Convert a decoded state document into a :class:`ResourceGraph`.

    Parameters
    ----------
    document:
        The decoded JSON state.
    source:
        Label used in error messages (usually the file path).

    Raises
    ------
    StorageError
        With reason ``CORRUPT`` if the document does not have the expected
        structure.
    """
    if not isinstance(document, dict):
        raise StorageError(f"State document in {source} is not an object", StorageReason.CORRUPT)

    raw_resources = document.get("resources") or []
    raw_outputs = document.get("outputs") or {}
    if not isinstance(raw_resources, list) or not isinstance(raw_outputs, dict):
        raise StorageError(f"State document in {source} has malformed resources/outputs", StorageReason.CORRUPT)

    try:
        resources = [_parse_resource(r) for r in raw_resources]
        outputs = {name: OutputValue.model_validate(value) for name, value in raw_outputs.items()}
        graph = ResourceGraph(
            resources=resources,
            outputs=outputs,
            serial=document.get("serial", 0) or 0,
            version=document.get("version", 4),
            terraform_version=document.get("terraform_version"),
        )
    except (KeyError, TypeError, AttributeError, PydanticValidationError) as exc:
        raise StorageError(f"Unexpected state structure in {source}: {exc}", StorageReason.CORRUPT) from exc

    logger.debug("Parsed %d resources (serial %d) from %s", len(graph.resources), graph.serial, source)
    return graph


def read_state_file(path: Path) -> ResourceGraph:
    """Read and parse a state file at *path*."""
    return parse_state(read_json(path), source=str(path))


class StateReader:
    """Reads the current resource graph of a registered deployment.

    Parameters
    ----------
    registry:
        Deployment registry used to locate the working directory.
    state_file_name:
        Name of the state file inside the working directory.
    """

    def __init__(self, registry: DeploymentRegistry, state_file_name: str = DEFAULT_STATE_FILE) -> None:
        self._registry = registry
        self._state_file_name = state_file_name

    def state_path(self, deployment_id: str) -> Path:
        record = self._registry.get(deployment_id)
        return Path(record.working_directory) / self._state_file_name

    def read_state(self, deployment_id: str) -> ResourceGraph:
        """Return the deployment's current resource graph.

        Raises
        ------
        NotFoundError
            If *deployment_id* is not registered.
        StorageError
            ``NOT_FOUND`` when the working directory or state file is
            missing; ``CORRUPT`` when the state cannot be parsed.
        """
        record = self._registry.get(deployment_id)
        working_dir = Path(record.working_directory)
        if not working_dir.is_dir():
            raise StorageError(
                f"Working directory for deployment {deployment_id} does not exist: {working_dir}",
                StorageReason.NOT_FOUND,
            )
        path = working_dir / self._state_file_name
        if not path.is_file():
            raise StorageError(
                f"No state file for deployment {deployment_id}: {path}",
                StorageReason.NOT_FOUND,
            )
        return read_state_file(path)
