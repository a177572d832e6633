"""File-backed state: deployments, snapshots, automation configs, locks."""

from lifecycle_engine.state.automation_registry import AutomationRegistry
from lifecycle_engine.state.deployment_registry import DeploymentRegistry
from lifecycle_engine.state.locks import DeploymentLockManager
from lifecycle_engine.state.snapshot_store import SnapshotStore, snapshot_filename
from lifecycle_engine.state.state_reader import StateReader, parse_state, read_state_file

__all__ = [
    "AutomationRegistry",
    "DeploymentLockManager",
    "DeploymentRegistry",
    "SnapshotStore",
    "StateReader",
    "parse_state",
    "read_state_file",
    "snapshot_filename",
]
