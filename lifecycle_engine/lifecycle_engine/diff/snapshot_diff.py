"""Structural diff engine for deployment snapshots.

Classifies every resource key (``type.name``) in the union of two snapshots
as added, removed, modified, or unchanged:

* keys only in the reference snapshot are **removed**;
* keys only in the difference snapshot are **added**;
* keys in both are compared field by field -- an instance-count mismatch is
  itself a field change (``InstanceCount``), and when both sides have at
  least one instance the attribute sets of the **first** instance are
  compared over the union of their keys.

Comparing only the first instance bounds the cost for large ``count`` /
``for_each`` fan-outs; pass ``all_instances=True`` to compare every instance
pairwise by position instead.

All output lists are sorted by resource key so identical inputs always
produce identical results.
"""

from __future__ import annotations

import logging
from typing import Any

from lifecycle_engine.models.diff import (
    ChangeSet,
    ComparisonResult,
    DiffSummary,
    FieldChange,
    ModifiedResource,
    ResourceRef,
)
from lifecycle_engine.models.snapshot import Instance, Resource, Snapshot
from lifecycle_engine.state.snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)

INSTANCE_COUNT_PROPERTY = "InstanceCount"


def _diff_attributes(
    old: dict[str, Any],
    new: dict[str, Any],
    prefix: str = "",
) -> list[FieldChange]:
    changes: list[FieldChange] = []
    for key in sorted(set(old) | set(new)):
        old_value = old.get(key)
        new_value = new.get(key)
        if key not in old or key not in new or old_value != new_value:
            changes.append(FieldChange(property=f"{prefix}{key}", old_value=old_value, new_value=new_value))
    return changes


def _instance_label(instance: Instance, position: int) -> str:
    return str(instance.index_key if instance.index_key is not None else position)


def diff_resource(reference: Resource, difference: Resource, all_instances: bool = False) -> list[FieldChange]:
    """Return the field-level changes between two versions of one resource."""
    changes: list[FieldChange] = []
    old_count = len(reference.instances)
    new_count = len(difference.instances)
    if old_count != new_count:
        changes.append(FieldChange(property=INSTANCE_COUNT_PROPERTY, old_value=old_count, new_value=new_count))

    if old_count == 0 or new_count == 0:
        return changes

    if not all_instances:
        changes.extend(_diff_attributes(reference.instances[0].attributes, difference.instances[0].attributes))
        return changes

    for position, (old_inst, new_inst) in enumerate(zip(reference.instances, difference.instances)):
        prefix = f"[{_instance_label(old_inst, position)}]."
        changes.extend(_diff_attributes(old_inst.attributes, new_inst.attributes, prefix=prefix))
    return changes


def compare_snapshots(
    reference: Snapshot,
    difference: Snapshot,
    include_unchanged: bool = False,
    all_instances: bool = False,
) -> ComparisonResult:
    """Compare two in-memory snapshots.

    Parameters
    ----------
    reference:
        The baseline (older, or "current" in a rollback).
    difference:
        The snapshot compared against the baseline.
    include_unchanged:
        Populate ``changes.unchanged`` and ``summary.unchanged``.
    all_instances:
        Compare every instance rather than only the first.
    """
    ref_map = reference.resource_map()
    diff_map = difference.resource_map()
    ref_keys = set(ref_map)
    diff_keys = set(diff_map)

    removed = [ResourceRef.from_resource(ref_map[k]) for k in sorted(ref_keys - diff_keys)]
    added = [ResourceRef.from_resource(diff_map[k]) for k in sorted(diff_keys - ref_keys)]

    modified: list[ModifiedResource] = []
    unchanged: list[ResourceRef] = []
    for key in sorted(ref_keys & diff_keys):
        field_changes = diff_resource(ref_map[key], diff_map[key], all_instances=all_instances)
        if field_changes:
            modified.append(
                ModifiedResource(
                    resource=ResourceRef.from_resource(diff_map[key]),
                    field_changes=field_changes,
                )
            )
        elif include_unchanged:
            unchanged.append(ResourceRef.from_resource(diff_map[key]))

    result = ComparisonResult(
        reference_id=reference.snapshot_id,
        difference_id=difference.snapshot_id,
        reference_time=reference.timestamp,
        difference_time=difference.timestamp,
        summary=DiffSummary(
            added=len(added),
            removed=len(removed),
            modified=len(modified),
            unchanged=len(unchanged),
        ),
        changes=ChangeSet(
            added=added,
            removed=removed,
            modified=modified,
            unchanged=unchanged if include_unchanged else None,
        ),
    )
    logger.debug(
        "Compared %s -> %s: +%d -%d ~%d",
        reference.snapshot_id,
        difference.snapshot_id,
        result.summary.added,
        result.summary.removed,
        result.summary.modified,
    )
    return result


def drift_percentage(result: ComparisonResult, total_resources: int) -> float:
    """Share of resources that changed, as a percentage of *total_resources*.

    *total_resources* is normally the size of the union of resource keys.
    Returns 0.0 when there are no resources.
    """
    if total_resources <= 0:
        return 0.0
    return 100.0 * result.summary.total_changes / total_resources


class SnapshotDiffer:
    """Compare stored snapshots by identifier.

    Parameters
    ----------
    store:
        Store used to resolve both identifiers.
    """

    def __init__(self, store: SnapshotStore) -> None:
        self._store = store

    def compare(
        self,
        reference_id: str,
        difference_id: str,
        include_unchanged: bool = False,
        all_instances: bool = False,
    ) -> ComparisonResult:
        """Resolve both identifiers and compare the snapshots.

        Raises
        ------
        NotFoundError
            If either identifier matches no snapshot.
        ConflictError
            If either identifier is ambiguous.
        """
        reference = self._store.resolve(reference_id)
        difference = self._store.resolve(difference_id)
        return compare_snapshots(
            reference,
            difference,
            include_unchanged=include_unchanged,
            all_instances=all_instances,
        )
