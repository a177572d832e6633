"""Shared fixtures for lifecycle engine tests.

Deployments are real directories under ``tmp_path`` holding a fake
``terraform.tfstate``; the provisioning tool is replaced by a recording
fake so no external binary is ever invoked.
"""

from __future__ import annotations

import json
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from lifecycle_engine.automation.triggers import NullTriggerScheduler
from lifecycle_engine.config import Settings, load_settings
from lifecycle_engine.engine import Engine, build_engine
from lifecycle_engine.errors import ProvisioningError
from lifecycle_engine.models.deployment import DeploymentRecord
from lifecycle_engine.provisioner.base import ProvisioningResult

# ---------------------------------------------------------------------------
# State documents
# ---------------------------------------------------------------------------


def _vpc(cidr: str = "10.0.0.0/16") -> dict[str, Any]:
    return {
        "mode": "managed",
        "type": "aws_vpc",
        "name": "main",
        "provider": 'provider["registry.terraform.io/hashicorp/aws"]',
        "instances": [
            {
                "schema_version": 1,
                "attributes": {"id": "vpc-123", "cidr_block": cidr, "tags": {"Name": "main"}},
            }
        ],
    }


def _subnet() -> dict[str, Any]:
    return {
        "mode": "managed",
        "type": "aws_subnet",
        "name": "a",
        "provider": 'provider["registry.terraform.io/hashicorp/aws"]',
        "instances": [
            {
                "schema_version": 1,
                "attributes": {"id": "subnet-1", "vpc_id": "vpc-123", "cidr_block": "10.0.1.0/24"},
                "dependencies": ["aws_vpc.main"],
            }
        ],
    }


def _database(password: str = "hunter2") -> dict[str, Any]:
    return {
        "mode": "managed",
        "type": "aws_db_instance",
        "name": "main",
        "provider": 'provider["registry.terraform.io/hashicorp/aws"]',
        "instances": [
            {
                "schema_version": 2,
                "attributes": {
                    "id": "db-1",
                    "username": "admin",
                    "password": password,
                    "connection": {"host": "db.internal", "auth_token": "tok-abc"},
                },
                "dependencies": ["aws_subnet.a"],
            }
        ],
    }


def _ami() -> dict[str, Any]:
    return {
        "mode": "data",
        "type": "aws_ami",
        "name": "ubuntu",
        "provider": 'provider["registry.terraform.io/hashicorp/aws"]',
        "instances": [{"schema_version": 0, "attributes": {"id": "ami-42"}}],
    }


def build_state(
    resources: list[dict[str, Any]] | None = None,
    outputs: dict[str, Any] | None = None,
    serial: int = 7,
) -> dict[str, Any]:
    """Return a format-4 state document."""
    return {
        "version": 4,
        "terraform_version": "1.7.0",
        "serial": serial,
        "lineage": "b0b0b0b0-0000-0000-0000-000000000000",
        "outputs": outputs
        if outputs is not None
        else {
            "vpc_id": {"value": "vpc-123", "type": "string"},
            "db_password": {"value": "hunter2", "type": "string", "sensitive": True},
        },
        "resources": resources if resources is not None else [_vpc(), _subnet(), _database(), _ami()],
    }


@pytest.fixture()
def state_document() -> dict[str, Any]:
    return build_state()


@pytest.fixture()
def state_builder() -> Callable[..., dict[str, Any]]:
    """Factory for state documents; see :func:`build_state`."""
    return build_state


@pytest.fixture()
def resource_factories() -> dict[str, Callable[..., dict[str, Any]]]:
    return {"vpc": _vpc, "subnet": _subnet, "database": _database, "ami": _ami}


@pytest.fixture()
def write_state() -> Callable[[Path, dict[str, Any]], Path]:
    def _write(working_dir: Path, document: dict[str, Any]) -> Path:
        working_dir.mkdir(parents=True, exist_ok=True)
        path = working_dir / "terraform.tfstate"
        path.write_text(json.dumps(document, indent=2), encoding="utf-8")
        return path

    return _write


# ---------------------------------------------------------------------------
# Provisioner double
# ---------------------------------------------------------------------------


class FakeProvisioner:
    """Records calls; fails when ``fail_with`` is set."""

    def __init__(self) -> None:
        self.applied: list[tuple[Path, list[str] | None]] = []
        self.validated: list[Path] = []
        self.fail_with: ProvisioningError | None = None
        self.tool_version = "1.7.0"

    def validate(self, working_dir: Path) -> ProvisioningResult:
        if self.fail_with is not None:
            raise self.fail_with
        self.validated.append(working_dir)
        return ProvisioningResult(command=["tofu", "validate"])

    def apply(self, working_dir: Path, targets: list[str] | None = None) -> ProvisioningResult:
        if self.fail_with is not None:
            raise self.fail_with
        self.applied.append((working_dir, targets))
        return ProvisioningResult(command=["tofu", "apply"], duration_seconds=0.5)

    def version(self) -> str:
        return self.tool_version


@pytest.fixture()
def provisioner() -> FakeProvisioner:
    return FakeProvisioner()


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return load_settings(state_root=tmp_path / "state", lock_ttl_seconds=60)


@pytest.fixture()
def working_dir(tmp_path: Path, write_state, state_document) -> Path:
    path = tmp_path / "deployments" / "lab"
    write_state(path, state_document)
    return path


@pytest.fixture()
def engine(settings: Settings, provisioner: FakeProvisioner, working_dir: Path) -> Engine:
    """Engine with deployment ``lab`` registered at :func:`working_dir`."""
    eng = build_engine(settings, provisioner=provisioner, triggers=NullTriggerScheduler())
    eng.deployments.register(
        DeploymentRecord(
            deployment_id="lab",
            working_directory=working_dir,
            provider="aws",
            environment="test",
            tags=["lab", "ci"],
        )
    )
    return eng


@pytest.fixture()
def eastern_tz(monkeypatch: pytest.MonkeyPatch):
    """Switch the process-local timezone to US Eastern for one test."""
    if not hasattr(time, "tzset"):
        pytest.skip("time.tzset is unavailable on this platform")
    monkeypatch.setenv("TZ", "EST5EDT,M3.2.0,M11.1.0")
    time.tzset()
    yield
    monkeypatch.undo()
    time.tzset()
