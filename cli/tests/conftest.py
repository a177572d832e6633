"""Shared fixtures for CLI tests.

Every invocation runs against a temporary ``--state-root`` with one
deployment directory holding a small state file.  The provisioning tool is
replaced by a recording fake and root logging is left untouched so that
pytest's capture keeps working.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
from typer.testing import CliRunner, Result

from cli.app import app
from lifecycle_engine.errors import ProvisioningError
from lifecycle_engine.provisioner.base import ProvisioningResult


def state_document(cidr: str = "10.0.0.0/16", password: str = "hunter2") -> dict[str, Any]:
    return {
        "version": 4,
        "terraform_version": "1.7.0",
        "serial": 3,
        "lineage": "c1c1c1c1-0000-0000-0000-000000000000",
        "outputs": {"db_password": {"value": password, "type": "string", "sensitive": True}},
        "resources": [
            {
                "mode": "managed",
                "type": "aws_vpc",
                "name": "main",
                "provider": 'provider["registry.terraform.io/hashicorp/aws"]',
                "instances": [{"schema_version": 1, "attributes": {"id": "vpc-1", "cidr_block": cidr}}],
            },
            {
                "mode": "managed",
                "type": "aws_db_instance",
                "name": "main",
                "provider": 'provider["registry.terraform.io/hashicorp/aws"]',
                "instances": [
                    {
                        "schema_version": 2,
                        "attributes": {"id": "db-1", "password": password},
                        "dependencies": ["aws_vpc.main"],
                    }
                ],
            },
        ],
    }


class RecordingProvisioner:
    def __init__(self) -> None:
        self.applied: list[tuple[Path, list[str] | None]] = []
        self.fail_with: ProvisioningError | None = None

    def validate(self, working_dir: Path) -> ProvisioningResult:
        return ProvisioningResult(command=["tofu", "validate"])

    def apply(self, working_dir: Path, targets: list[str] | None = None) -> ProvisioningResult:
        if self.fail_with is not None:
            raise self.fail_with
        self.applied.append((working_dir, targets))
        return ProvisioningResult(command=["tofu", "apply"], duration_seconds=0.1)

    def version(self) -> str:
        return "1.7.0"


@pytest.fixture(autouse=True)
def _no_logging_setup(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("lifecycle_engine.logging_config.configure_logging", lambda settings: None)


@pytest.fixture(autouse=True)
def provisioner(monkeypatch: pytest.MonkeyPatch) -> RecordingProvisioner:
    fake = RecordingProvisioner()
    monkeypatch.setattr("lifecycle_engine.engine.TofuClient", lambda **kwargs: fake)
    return fake


@pytest.fixture()
def state_root(tmp_path: Path) -> Path:
    return tmp_path / "state"


@pytest.fixture()
def write_state() -> Callable[..., Path]:
    def _write(working_dir: Path, **kwargs: Any) -> Path:
        working_dir.mkdir(parents=True, exist_ok=True)
        path = working_dir / "terraform.tfstate"
        path.write_text(json.dumps(state_document(**kwargs)), encoding="utf-8")
        return path

    return _write


@pytest.fixture()
def working_dir(tmp_path: Path, write_state) -> Path:
    path = tmp_path / "infra" / "lab"
    write_state(path)
    return path


@pytest.fixture()
def invoke(state_root: Path) -> Callable[..., Result]:
    """Run the CLI with ``--state-root`` pointing at a temporary directory."""
    runner = CliRunner()

    def _invoke(*args: str, json_mode: bool = False) -> Result:
        argv = ["--state-root", str(state_root)]
        if json_mode:
            argv.append("--json")
        return runner.invoke(app, [*argv, *args])

    return _invoke


@pytest.fixture()
def registered(invoke, working_dir: Path) -> Path:
    """Register deployment ``lab`` and return its working directory."""
    result = invoke("deployment", "register", "lab", "--working-dir", str(working_dir), "--provider", "aws")
    assert result.exit_code == 0, result.output
    return working_dir
