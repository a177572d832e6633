"""Unit tests for lifecycle_engine.snapshot.capturer."""

from __future__ import annotations

import json
from datetime import UTC, datetime

import pytest

from lifecycle_engine.errors import StorageError, StorageReason, ValidationError
from lifecycle_engine.snapshot.capturer import SnapshotCapturer, new_snapshot_id
from lifecycle_engine.snapshot.redactor import REDACTED


class TestNewSnapshotId:
    def test_time_ordered_prefix(self):
        a = new_snapshot_id(datetime(2025, 1, 1, tzinfo=UTC))
        b = new_snapshot_id(datetime(2025, 1, 2, tzinfo=UTC))
        assert a < b
        assert a.startswith("20250101T000000000000-")

    def test_random_suffix(self):
        ts = datetime(2025, 1, 1, tzinfo=UTC)
        assert new_snapshot_id(ts) != new_snapshot_id(ts)


# ---------------------------------------------------------------------------
# capture
# ---------------------------------------------------------------------------


class TestCapture:
    def test_capture_persists_redacted_snapshot(self, engine):
        ref = engine.capturer.capture("lab")
        assert ref.deployment_id == "lab"
        assert ref.resource_count == 4
        assert ref.serial == 7
        assert ref.file_path.name.startswith("deployment-snapshot-lab-")
        assert ref.size == ref.file_path.stat().st_size

        snap = engine.store.resolve(ref.snapshot_id)
        db = snap.resource_map()["aws_db_instance.main"].instances[0].attributes
        assert db["password"] == REDACTED
        assert db["connection"] == {"host": "db.internal", "auth_token": REDACTED}
        assert db["username"] == "admin"
        assert snap.outputs["db_password"].value == REDACTED
        assert snap.outputs["vpc_id"].value == "vpc-123"
        assert snap.includes_secrets is False

    def test_secret_never_reaches_disk(self, engine):
        ref = engine.capturer.capture("lab")
        assert "hunter2" not in ref.file_path.read_text(encoding="utf-8")

    def test_include_secrets_keeps_values(self, engine):
        ref = engine.capturer.capture("lab", include_secrets=True)
        data = json.loads(ref.file_path.read_text(encoding="utf-8"))
        assert data["includesSecrets"] is True
        assert data["outputs"]["db_password"]["value"] == "hunter2"

    def test_metadata_from_registry(self, engine):
        snap = engine.store.resolve(engine.capturer.capture("lab").snapshot_id)
        assert snap.metadata.provider == "aws"
        assert snap.metadata.environment == "test"
        assert snap.metadata.tags == ["lab", "ci"]

    def test_resource_order_preserved(self, engine):
        snap = engine.capturer.build("lab")
        assert [r.key for r in snap.resources] == [
            "aws_vpc.main",
            "aws_subnet.a",
            "aws_db_instance.main",
            "aws_ami.ubuntu",
        ]

    def test_unknown_deployment_is_validation_error(self, engine):
        with pytest.raises(ValidationError):
            engine.capturer.capture("ghost")

    def test_unsupported_format(self, engine):
        with pytest.raises(ValidationError):
            engine.capturer.capture("lab", format="yaml")

    def test_missing_state_file_propagates(self, engine, working_dir):
        (working_dir / "terraform.tfstate").unlink()
        with pytest.raises(StorageError) as exc_info:
            engine.capturer.capture("lab")
        assert exc_info.value.reason == StorageReason.NOT_FOUND
        assert engine.store.list("lab") == []

    def test_build_does_not_persist(self, engine):
        engine.capturer.build("lab")
        assert engine.store.list() == []

    def test_injected_clock(self, engine):
        fixed = datetime(2025, 6, 1, 8, 30, 0, tzinfo=UTC)
        capturer = SnapshotCapturer(engine.deployments, engine.reader, engine.store, clock=lambda: fixed)
        ref = capturer.capture("lab")
        assert ref.timestamp == fixed
        assert ref.file_path.name == "deployment-snapshot-lab-20250601-083000.json"
