"""Unit tests for lifecycle_engine.state.automation_registry."""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from lifecycle_engine.errors import ConflictError, NotFoundError, ValidationError
from lifecycle_engine.models.automation import (
    AutomationConfig,
    AutomationStatus,
    AutomationType,
    ExecutionRecord,
    ScheduleKind,
    ScheduleSpec,
)
from lifecycle_engine.state.automation_registry import AutomationRegistry

T0 = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)


def _config(
    automation_id: str,
    deployment_id: str = "lab",
    automation_type: AutomationType = AutomationType.MAINTENANCE,
    created: datetime = T0,
    next_run: datetime | None = None,
) -> AutomationConfig:
    return AutomationConfig(
        automation_id=automation_id,
        deployment_id=deployment_id,
        type=automation_type,
        schedule=ScheduleSpec(kind=ScheduleKind.DAILY, next_run=next_run or created + timedelta(days=1)),
        created_at=created,
        last_modified=created,
    )


@pytest.fixture()
def registry(tmp_path: Path) -> AutomationRegistry:
    return AutomationRegistry(tmp_path / "deployments", tmp_path / "archive")


# ---------------------------------------------------------------------------
# create / get
# ---------------------------------------------------------------------------


class TestCreateAndGet:
    def test_create_writes_config_file(self, registry: AutomationRegistry, tmp_path: Path):
        registry.create(_config("a1"))
        path = tmp_path / "deployments" / "lab" / "automation" / "a1" / "automation-config.json"
        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["automationId"] == "a1"
        assert data["status"] == "Active"
        assert "isHistorical" not in data

    def test_get_round_trip(self, registry: AutomationRegistry):
        config = _config("a1")
        registry.create(config)
        assert registry.get("a1") == config

    def test_duplicate_id_conflicts(self, registry: AutomationRegistry):
        registry.create(_config("a1"))
        with pytest.raises(ConflictError):
            registry.create(_config("a1", deployment_id="other"))

    def test_create_requires_active(self, registry: AutomationRegistry):
        config = _config("a1").model_copy(update={"status": AutomationStatus.DISABLED})
        with pytest.raises(ValidationError):
            registry.create(config)

    def test_get_unknown(self, registry: AutomationRegistry):
        with pytest.raises(NotFoundError):
            registry.get("missing")

    @pytest.mark.parametrize("automation_id", ["*", "a*", "a?", "[a]1", "../lab", ""])
    def test_pattern_ids_rejected(self, registry: AutomationRegistry, automation_id: str):
        registry.create(_config("a1"))
        with pytest.raises(ValidationError):
            registry.get(automation_id)

    def test_wildcard_disable_leaves_real_config(self, registry: AutomationRegistry, tmp_path: Path):
        registry.create(_config("auto-1"))
        with pytest.raises(ValidationError):
            registry.disable("auto-*", remove_config_files=True)
        assert registry.get("auto-1").status == AutomationStatus.ACTIVE
        assert (tmp_path / "deployments" / "lab" / "automation" / "auto-1").is_dir()

    def test_pattern_deployment_filter_rejected(self, registry: AutomationRegistry):
        registry.create(_config("a1"))
        with pytest.raises(ValidationError):
            registry.list(deployment_id="*")


# ---------------------------------------------------------------------------
# list
# ---------------------------------------------------------------------------


class TestList:
    def test_newest_first(self, registry: AutomationRegistry):
        registry.create(_config("old", created=T0))
        registry.create(_config("new", created=T0 + timedelta(hours=1), automation_type=AutomationType.MONITORING))
        assert [s.automation_id for s in registry.list()] == ["new", "old"]

    def test_filter_by_deployment_and_status(self, registry: AutomationRegistry):
        registry.create(_config("a", deployment_id="lab"))
        registry.create(_config("b", deployment_id="prod"))
        registry.disable("b")
        assert [s.automation_id for s in registry.list("lab")] == ["a"]
        assert [s.automation_id for s in registry.list(statuses=[AutomationStatus.DISABLED])] == ["b"]

    def test_historical_only_when_requested(self, registry: AutomationRegistry):
        registry.create(_config("a"))
        registry.archive("a")
        assert registry.list() == []
        summaries = registry.list(include_historical=True)
        assert [s.automation_id for s in summaries] == ["a"]
        assert summaries[0].is_historical is True

    def test_find_active(self, registry: AutomationRegistry):
        registry.create(_config("m", automation_type=AutomationType.MAINTENANCE))
        registry.create(_config("s", automation_type=AutomationType.SCHEDULED))
        assert registry.find_active("lab", AutomationType.SCHEDULED).automation_id == "s"
        assert registry.find_active("lab", AutomationType.MONITORING) is None
        registry.disable("s")
        assert registry.find_active("lab", AutomationType.SCHEDULED) is None

    def test_list_due(self, registry: AutomationRegistry):
        registry.create(_config("due", next_run=T0))
        registry.create(_config("later", next_run=T0 + timedelta(days=2), automation_type=AutomationType.SCHEDULED))
        registry.create(_config("off", next_run=T0, automation_type=AutomationType.MONITORING))
        registry.disable("off")
        assert [c.automation_id for c in registry.list_due(T0 + timedelta(minutes=1))] == ["due"]


# ---------------------------------------------------------------------------
# disable / archive / update
# ---------------------------------------------------------------------------


class TestLifecycle:
    def test_disable_keeps_file(self, registry: AutomationRegistry):
        registry.create(_config("a1"))
        result = registry.disable("a1")
        assert result.status == AutomationStatus.DISABLED
        assert result.enabled is False
        stored = registry.get("a1")
        assert stored.status == AutomationStatus.DISABLED
        assert not stored.is_active

    def test_disable_with_removal(self, registry: AutomationRegistry, tmp_path: Path):
        registry.create(_config("a1"))
        result = registry.disable("a1", remove_config_files=True)
        assert result.status == AutomationStatus.DISABLED
        assert not (tmp_path / "deployments" / "lab" / "automation" / "a1").exists()
        with pytest.raises(NotFoundError):
            registry.get("a1")

    def test_disable_unknown(self, registry: AutomationRegistry):
        with pytest.raises(NotFoundError):
            registry.disable("ghost")

    def test_archive_surfaces_as_historical(self, registry: AutomationRegistry, tmp_path: Path):
        registry.create(_config("a1"))
        registry.disable("a1")
        archived = registry.archive("a1")
        assert archived.is_historical
        assert (tmp_path / "archive" / "a1.json").is_file()
        loaded = registry.get("a1")
        assert loaded.is_historical is True
        assert loaded.status == AutomationStatus.DISABLED

    def test_update_appends_history(self, registry: AutomationRegistry):
        registry.create(_config("a1"))
        record = ExecutionRecord(execution_id="e1", started_at=T0)
        updated = registry.update("a1", lambda c: c.history.append(record))
        assert [r.execution_id for r in updated.history] == ["e1"]
        assert registry.get("a1").history[0].execution_id == "e1"
        assert updated.last_modified > T0

    def test_update_after_removal(self, registry: AutomationRegistry):
        registry.create(_config("a1"))
        registry.disable("a1", remove_config_files=True)
        with pytest.raises(NotFoundError):
            registry.update("a1", lambda c: None)
