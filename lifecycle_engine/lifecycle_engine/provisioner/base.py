"""Abstract interface for the external provisioning tool.

The engine never mutates infrastructure itself.  Applies, validation, and
version checks are delegated to an object satisfying
:class:`ProvisionerInterface`, so automation and rollback stay independent
of which binary (OpenTofu, Terraform) or test double is behind it.
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, Field


class ProvisioningResult(BaseModel):
    """Outcome of one successful provisioning-tool invocation."""

    command: list[str] = Field(default_factory=list)
    stdout: str = ""
    duration_seconds: float = Field(default=0.0, ge=0.0)


class ProvisionerInterface(Protocol):
    """Structural interface for provisioning backends.

    Implementations are **not** required to subclass this protocol; they only
    need to expose methods with matching signatures.  Every method raises
    :class:`~lifecycle_engine.errors.ProvisioningError` on failure.
    """

    def validate(self, working_dir: Path) -> ProvisioningResult:
        """Check that the configuration in *working_dir* is valid."""
        ...

    def apply(self, working_dir: Path, targets: list[str] | None = None) -> ProvisioningResult:
        """Converge infrastructure to the configuration in *working_dir*.

        Parameters
        ----------
        working_dir:
            Deployment working directory.
        targets:
            Resource addresses to restrict the apply to, in the order they
            should be converged.  ``None`` applies everything.
        """
        ...

    def version(self) -> str:
        """Return the tool's version string."""
        ...
