"""Snapshot capture: state reader + redactor + store.

Builds a :class:`~lifecycle_engine.models.snapshot.Snapshot` from a
deployment's current state, masking sensitive attributes and outputs unless
secrets are explicitly requested, and hands it to the
:class:`~lifecycle_engine.state.snapshot_store.SnapshotStore`.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from datetime import UTC, datetime

from lifecycle_engine.errors import NotFoundError, ValidationError
from lifecycle_engine.models.snapshot import (
    Instance,
    OutputValue,
    Resource,
    Snapshot,
    SnapshotMetadata,
    SnapshotRef,
)
from lifecycle_engine.snapshot.redactor import Redactor
from lifecycle_engine.state.deployment_registry import DeploymentRegistry
from lifecycle_engine.state.snapshot_store import SnapshotStore
from lifecycle_engine.state.state_reader import StateReader

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = frozenset({"json"})


def new_snapshot_id(timestamp: datetime) -> str:
    """Return a time-ordered snapshot id with a random suffix."""
    return f"{timestamp.astimezone(UTC):%Y%m%dT%H%M%S%f}-{secrets.token_hex(4)}"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SnapshotCapturer:
    """Capture deployment snapshots.

    Parameters
    ----------
    registry:
        Deployment registry providing metadata (provider, environment, tags).
    reader:
        State reader for the deployment's current resource graph.
    store:
        Destination store.
    redactor:
        Redactor applied to attributes and sensitive outputs.
    clock:
        Zero-argument callable returning the capture time (UTC).
    """

    def __init__(
        self,
        registry: DeploymentRegistry,
        reader: StateReader,
        store: SnapshotStore,
        redactor: Redactor | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._registry = registry
        self._reader = reader
        self._store = store
        self._redactor = redactor or Redactor()
        self._clock = clock

    def build(self, deployment_id: str, include_secrets: bool = False) -> Snapshot:
        """Build an in-memory snapshot without persisting it.

        Raises
        ------
        ValidationError
            If *deployment_id* is not a registered deployment.
        StorageError
            If the state file is missing or unreadable.
        """
        try:
            record = self._registry.get(deployment_id)
        except NotFoundError as exc:
            raise ValidationError(f"Unknown deployment: {deployment_id}") from exc

        graph = self._reader.read_state(deployment_id)

        resources: list[Resource] = []
        for resource in graph.resources:
            instances = [
                Instance(
                    index_key=inst.index_key,
                    schema_version=inst.schema_version,
                    attributes=(dict(inst.attributes) if include_secrets else self._redactor.redact(inst.attributes)),
                    dependencies=list(inst.dependencies),
                )
                for inst in resource.instances
            ]
            resources.append(resource.model_copy(update={"instances": instances}))

        outputs: dict[str, OutputValue] = {}
        for name, output in graph.outputs.items():
            if output.sensitive and not include_secrets:
                outputs[name] = output.model_copy(update={"value": self._redactor.sentinel})
            else:
                outputs[name] = output

        timestamp = self._clock()
        return Snapshot(
            snapshot_id=new_snapshot_id(timestamp),
            deployment_id=deployment_id,
            timestamp=timestamp,
            serial=graph.serial,
            version=graph.version,
            resources=resources,
            outputs=outputs,
            metadata=SnapshotMetadata(
                provider=record.provider,
                environment=record.environment,
                tags=list(record.tags),
            ),
            includes_secrets=include_secrets,
        )

    def capture(
        self,
        deployment_id: str,
        include_secrets: bool = False,
        format: str = "json",
    ) -> SnapshotRef:
        """Capture and persist a snapshot, returning a lightweight reference."""
        if format.lower() not in SUPPORTED_FORMATS:
            raise ValidationError(f"Unsupported snapshot format '{format}'. Supported: {sorted(SUPPORTED_FORMATS)}")

        snapshot = self.build(deployment_id, include_secrets=include_secrets)
        path = self._store.save(snapshot)
        ref = SnapshotRef(
            snapshot_id=snapshot.snapshot_id,
            deployment_id=deployment_id,
            file_path=path,
            size=path.stat().st_size,
            resource_count=snapshot.resource_count,
            timestamp=snapshot.timestamp,
            serial=snapshot.serial,
        )
        logger.info(
            "Captured snapshot %s of %s: %d resources, serial %d%s",
            ref.snapshot_id,
            deployment_id,
            ref.resource_count,
            ref.serial,
            " (secrets included)" if include_secrets else "",
        )
        return ref
