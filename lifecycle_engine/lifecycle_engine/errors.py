"""Error taxonomy for the lifecycle engine.

Every expected failure mode (missing snapshot, ambiguous identifier, unknown
deployment, unreadable state, failed apply) is raised as one of the typed
exceptions below so that callers -- the CLI, the automation runner -- can
decide how to present it.  Programming errors are left to propagate as
ordinary Python exceptions.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from lifecycle_engine.models.diff import ComparisonResult


class LifecycleError(Exception):
    """Base class for all lifecycle engine errors."""


class NotFoundError(LifecycleError):
    """A snapshot, automation, or deployment does not exist."""


class ConflictError(LifecycleError):
    """An identifier resolves to more than one candidate, or a resource is held.

    Attributes
    ----------
    candidates:
        The competing matches, when the conflict came from identifier
        resolution.
    """

    def __init__(self, message: str, candidates: list[str] | None = None) -> None:
        super().__init__(message)
        self.candidates = candidates or []


class ValidationError(LifecycleError):
    """Malformed schedule, type, or parameters, or an unknown deployment."""


class StorageReason(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    CORRUPT = "CORRUPT"
    IO = "IO"


class StorageError(LifecycleError):
    """I/O failure reading or writing snapshot, state, or config files."""

    def __init__(self, message: str, reason: StorageReason = StorageReason.IO) -> None:
        super().__init__(message)
        self.reason = reason


class ProvisioningError(LifecycleError):
    """The external provisioning tool failed.

    Attributes
    ----------
    command:
        The command line that was run, if any.
    exit_code:
        Process exit code, ``None`` for timeouts or a missing binary.
    stderr:
        Captured standard error, stripped.
    """

    def __init__(
        self,
        message: str,
        command: list[str] | None = None,
        exit_code: int | None = None,
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.command = command or []
        self.exit_code = exit_code
        self.stderr = stderr


class RollbackError(ProvisioningError):
    """Convergence toward a rollback target failed.

    The pre-rollback comparison stays valid and is attached so that callers
    can still audit what was about to change.
    """

    def __init__(self, message: str, comparison: ComparisonResult, cause: ProvisioningError | None = None) -> None:
        super().__init__(
            message,
            command=cause.command if cause else None,
            exit_code=cause.exit_code if cause else None,
            stderr=cause.stderr if cause else "",
        )
        self.comparison = comparison


class LockError(ConflictError):
    """Another writer holds the lock for a deployment."""
