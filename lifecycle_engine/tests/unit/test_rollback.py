"""Unit tests for lifecycle_engine.rollback.coordinator."""

from __future__ import annotations

import pytest

from lifecycle_engine.errors import LockError, NotFoundError, ProvisioningError, RollbackError, ValidationError
from lifecycle_engine.models.deployment import DeploymentRecord


@pytest.fixture()
def drifted(engine, working_dir, write_state, state_builder, resource_factories):
    """Capture a baseline, then replace the subnet and change the VPC CIDR."""
    baseline = engine.capturer.capture("lab")
    vpc = resource_factories["vpc"]("10.9.0.0/16")
    write_state(
        working_dir,
        state_builder(
            resources=[vpc, resource_factories["database"](), resource_factories["ami"]()],
            serial=8,
        ),
    )
    return baseline


class TestPlan:
    def test_plan_is_current_to_target(self, engine, drifted, provisioner):
        comparison = engine.rollback.plan("lab", drifted.snapshot_id)
        assert [r.key for r in comparison.changes.added] == ["aws_subnet.a"]
        assert [m.resource.key for m in comparison.changes.modified] == ["aws_vpc.main"]
        assert comparison.difference_id == drifted.snapshot_id
        assert provisioner.applied == []
        assert len(engine.store.list("lab")) == 1

    def test_plan_unknown_snapshot(self, engine):
        with pytest.raises(NotFoundError):
            engine.rollback.plan("lab", "nope")


class TestRollback:
    def test_converges_in_dependency_order(self, engine, drifted, provisioner, working_dir):
        comparison = engine.rollback.rollback("lab", drifted.snapshot_id)

        assert comparison.summary.total_changes == 2
        assert provisioner.applied == [(working_dir, ["aws_vpc.main", "aws_subnet.a"])]
        # Pre-rollback backup saved alongside the target.
        refs = engine.store.list("lab")
        assert len(refs) == 2
        assert refs[-1].serial == 8
        assert not engine.locks.is_locked("lab")

    def test_without_backup(self, engine, drifted, provisioner):
        engine.rollback.rollback("lab", drifted.snapshot_id, backup_before=False)
        assert len(engine.store.list("lab")) == 1
        assert provisioner.applied

    def test_nothing_to_do(self, engine, provisioner):
        ref = engine.capturer.capture("lab")
        comparison = engine.rollback.rollback("lab", ref.snapshot_id)
        assert not comparison.has_changes
        assert provisioner.applied == []
        assert len(engine.store.list("lab")) == 1

    def test_data_sources_are_not_targets(
        self, engine, provisioner, working_dir, write_state, state_builder, resource_factories
    ):
        ref = engine.capturer.capture("lab")
        write_state(
            working_dir,
            state_builder(
                resources=[
                    resource_factories["vpc"](),
                    resource_factories["subnet"](),
                    resource_factories["database"](),
                ]
            ),
        )
        comparison = engine.rollback.rollback("lab", ref.snapshot_id)
        assert [r.key for r in comparison.changes.added] == ["aws_ami.ubuntu"]
        assert provisioner.applied == []

    def test_failure_keeps_comparison_and_store(self, engine, drifted, provisioner):
        provisioner.fail_with = ProvisioningError("tofu apply failed", exit_code=1, stderr="Error: quota")

        with pytest.raises(RollbackError) as exc_info:
            engine.rollback.rollback("lab", drifted.snapshot_id, backup_before=False)

        err = exc_info.value
        assert err.comparison.summary.total_changes == 2
        assert err.exit_code == 1
        assert err.stderr == "Error: quota"
        assert len(engine.store.list("lab")) == 1
        assert not engine.locks.is_locked("lab")

    def test_snapshot_of_other_deployment(self, engine, working_dir, provisioner):
        engine.deployments.register(
            DeploymentRecord(deployment_id="prod", working_directory=working_dir, provider="aws")
        )
        ref = engine.capturer.capture("prod")
        with pytest.raises(ValidationError, match="belongs to deployment prod"):
            engine.rollback.rollback("lab", ref.snapshot_id)
        assert provisioner.applied == []

    def test_locked_deployment(self, engine, drifted, provisioner):
        assert engine.locks.acquire("lab", owner="other")
        try:
            with pytest.raises(LockError):
                engine.rollback.rollback("lab", drifted.snapshot_id)
        finally:
            engine.locks.release("lab")
        assert provisioner.applied == []
