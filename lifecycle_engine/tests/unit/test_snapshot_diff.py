"""Unit tests for lifecycle_engine.diff.snapshot_diff."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from lifecycle_engine.diff.snapshot_diff import (
    INSTANCE_COUNT_PROPERTY,
    SnapshotDiffer,
    compare_snapshots,
    diff_resource,
    drift_percentage,
)
from lifecycle_engine.errors import ConflictError, NotFoundError
from lifecycle_engine.models.snapshot import Instance, Resource, ResourceMode, Snapshot
from lifecycle_engine.state.snapshot_store import SnapshotStore

T0 = datetime(2025, 3, 1, 12, 0, 0, tzinfo=UTC)


def _res(type_: str, name: str, *attrs: dict[str, Any], mode: ResourceMode = ResourceMode.MANAGED) -> Resource:
    return Resource(
        type=type_,
        name=name,
        mode=mode,
        instances=[Instance(index_key=i if len(attrs) > 1 else None, attributes=a) for i, a in enumerate(attrs)],
    )


def _snap(snapshot_id: str, *resources: Resource, offset: int = 0) -> Snapshot:
    return Snapshot(
        snapshot_id=snapshot_id,
        deployment_id="lab",
        timestamp=T0 + timedelta(minutes=offset),
        resources=list(resources),
    )


# ---------------------------------------------------------------------------
# diff_resource
# ---------------------------------------------------------------------------


class TestDiffResource:
    def test_identical(self):
        r = _res("t", "n", {"a": 1})
        assert diff_resource(r, r) == []

    def test_changed_added_and_removed_attributes(self):
        old = _res("t", "n", {"a": 1, "b": 2})
        new = _res("t", "n", {"a": 9, "c": 3})
        changes = {c.property: (c.old_value, c.new_value) for c in diff_resource(old, new)}
        assert changes == {"a": (1, 9), "b": (2, None), "c": (None, 3)}

    def test_property_order_is_sorted(self):
        old = _res("t", "n", {"z": 1, "a": 1})
        new = _res("t", "n", {"z": 2, "a": 2})
        assert [c.property for c in diff_resource(old, new)] == ["a", "z"]

    def test_instance_count_change(self):
        old = _res("t", "n", {"a": 1})
        new = _res("t", "n", {"a": 1}, {"a": 1})
        changes = diff_resource(old, new)
        assert changes[0].property == INSTANCE_COUNT_PROPERTY
        assert (changes[0].old_value, changes[0].new_value) == (1, 2)

    def test_only_first_instance_compared_by_default(self):
        old = _res("t", "n", {"a": 1}, {"a": 1})
        new = _res("t", "n", {"a": 1}, {"a": 2})
        assert diff_resource(old, new) == []

    def test_all_instances_opt_in(self):
        old = _res("t", "n", {"a": 1}, {"a": 1})
        new = _res("t", "n", {"a": 1}, {"a": 2})
        changes = diff_resource(old, new, all_instances=True)
        assert [c.property for c in changes] == ["[1].a"]

    def test_empty_instances_only_count_change(self):
        old = Resource(type="t", name="n")
        new = _res("t", "n", {"a": 1})
        changes = diff_resource(old, new)
        assert [c.property for c in changes] == [INSTANCE_COUNT_PROPERTY]

    def test_nested_values_compared_structurally(self):
        old = _res("t", "n", {"tags": {"env": "dev"}})
        new = _res("t", "n", {"tags": {"env": "prod"}})
        changes = diff_resource(old, new)
        assert changes[0].old_value == {"env": "dev"}
        assert changes[0].new_value == {"env": "prod"}


# ---------------------------------------------------------------------------
# compare_snapshots
# ---------------------------------------------------------------------------


class TestCompareSnapshots:
    def test_classification_and_summary(self):
        ref = _snap("r", _res("a", "keep", {"x": 1}), _res("b", "gone", {"x": 1}), _res("c", "mod", {"x": 1}))
        diff = _snap("d", _res("a", "keep", {"x": 1}), _res("c", "mod", {"x": 2}), _res("d", "new", {"x": 1}), offset=5)
        result = compare_snapshots(ref, diff)

        assert [r.key for r in result.changes.added] == ["d.new"]
        assert [r.key for r in result.changes.removed] == ["b.gone"]
        assert [m.resource.key for m in result.changes.modified] == ["c.mod"]
        assert result.changes.unchanged is None
        assert (result.summary.added, result.summary.removed, result.summary.modified) == (1, 1, 1)
        assert result.summary.unchanged == 0
        assert result.reference_id == "r" and result.difference_id == "d"
        assert result.reference_time == T0
        assert result.difference_time == T0 + timedelta(minutes=5)

    def test_conservation_with_unchanged(self):
        ref = _snap("r", _res("a", "1", {"x": 1}), _res("a", "2", {"x": 1}), _res("a", "3", {"x": 1}))
        diff = _snap("d", _res("a", "2", {"x": 1}), _res("a", "3", {"x": 9}), _res("a", "4", {"x": 1}))
        result = compare_snapshots(ref, diff, include_unchanged=True)
        s = result.summary
        union = {r.key for r in ref.resources} | {r.key for r in diff.resources}
        assert s.added + s.removed + s.modified + s.unchanged == len(union)
        assert [r.key for r in result.changes.unchanged] == ["a.2"]

    def test_identical_snapshots_have_no_changes(self):
        snap = _snap("s", _res("a", "1", {"x": 1}))
        result = compare_snapshots(snap, snap)
        assert not result.has_changes
        assert result.changed_keys() == []

    def test_direction_matters(self):
        old = _snap("old", _res("a", "1", {"x": 1}))
        new = _snap("new", _res("a", "1", {"x": 1}), _res("a", "2", {"x": 1}))
        assert compare_snapshots(old, new).summary.added == 1
        assert compare_snapshots(new, old).summary.removed == 1

    def test_deterministic(self):
        ref = _snap("r", _res("b", "1", {"x": 1}), _res("a", "1", {"x": 1}))
        diff = _snap("d", _res("a", "1", {"x": 2}), _res("c", "1", {"x": 1}))
        assert compare_snapshots(ref, diff) == compare_snapshots(ref, diff)

    def test_modified_ref_from_difference_side(self):
        ref = _snap("r", _res("a", "1", {"x": 1}, mode=ResourceMode.MANAGED))
        diff = _snap("d", _res("a", "1", {"x": 2}, mode=ResourceMode.DATA))
        assert compare_snapshots(ref, diff).changes.modified[0].resource.mode == ResourceMode.DATA


class TestDriftPercentage:
    def test_percentage_of_total(self):
        ref = _snap("r", _res("a", "1", {"x": 1}), _res("a", "2", {"x": 1}))
        diff = _snap("d", _res("a", "1", {"x": 2}), _res("a", "2", {"x": 1}))
        assert drift_percentage(compare_snapshots(ref, diff), 2) == pytest.approx(50.0)

    def test_zero_total(self):
        snap = _snap("s")
        assert drift_percentage(compare_snapshots(snap, snap), 0) == 0.0


# ---------------------------------------------------------------------------
# SnapshotDiffer (store-backed)
# ---------------------------------------------------------------------------


class TestSnapshotDiffer:
    def test_resolves_identifiers(self, tmp_path):
        store = SnapshotStore(tmp_path)
        store.save(_snap("20250301T1200-aaaa", _res("a", "1", {"x": 1})))
        store.save(_snap("20250301T1205-bbbb", _res("a", "1", {"x": 2}), offset=5))
        result = SnapshotDiffer(store).compare("aaaa", "bbbb")
        assert result.summary.modified == 1

    def test_missing_identifier(self, tmp_path):
        store = SnapshotStore(tmp_path)
        store.save(_snap("20250301T1200-aaaa"))
        with pytest.raises(NotFoundError):
            SnapshotDiffer(store).compare("aaaa", "zzzz")

    def test_ambiguous_identifier(self, tmp_path):
        store = SnapshotStore(tmp_path)
        store.save(_snap("20250301T1200-aaaa"))
        store.save(_snap("20250301T1205-bbbb", offset=5))
        with pytest.raises(ConflictError):
            SnapshotDiffer(store).compare("20250301", "bbbb")

    def test_secret_rotation_invisible_when_redacted(self, engine, write_state, working_dir, state_builder, resource_factories):
        first = engine.capturer.capture("lab")
        write_state(
            working_dir,
            state_builder(
                resources=[
                    resource_factories["vpc"](),
                    resource_factories["subnet"](),
                    resource_factories["database"](password="rotated"),
                    resource_factories["ami"](),
                ]
            ),
        )
        second = engine.capturer.capture("lab")
        result = engine.differ.compare(first.snapshot_id, second.snapshot_id)
        assert not result.has_changes
