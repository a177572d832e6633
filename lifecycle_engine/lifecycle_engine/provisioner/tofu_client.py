"""Thin client for the OpenTofu / Terraform command line.

All interaction with the binary is done through :func:`subprocess.run` with
explicit timeouts and structured error handling so that callers receive
:class:`ProvisioningError` exceptions with the command, exit code, and
stderr rather than raw subprocess failures.  State-lock contention is
treated as transient and retried with backoff.
"""

from __future__ import annotations

import json
import logging
import re
import subprocess
import time
from pathlib import Path

from lifecycle_engine.errors import ProvisioningError
from lifecycle_engine.provisioner.base import ProvisioningResult
from lifecycle_engine.provisioner.retry import RetryConfig, retry_with_backoff

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 1800  # seconds

# Resource addresses: optional module path, optional data prefix, type.name,
# optional index ([0] or ["key"]).
_ADDRESS_RE = re.compile(r'^(module\.[A-Za-z0-9_-]+(\[[^\]]+\])?\.)*(data\.)?[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+(\[[^\]]+\])?$')
_STATE_LOCK_RE = re.compile(r"error acquiring the state lock", re.IGNORECASE)


class StateLockError(ProvisioningError):
    """The state backend is locked by another run; usually transient."""


def _validate_address(address: str) -> None:
    """Reject target addresses that could smuggle extra CLI arguments."""
    if not address or not _ADDRESS_RE.match(address):
        raise ProvisioningError(f"Invalid resource address: {address!r}")


class TofuClient:
    """Run provisioning commands in a deployment's working directory.

    Parameters
    ----------
    binary:
        Executable name or path (``tofu`` or ``terraform``).
    timeout_seconds:
        Per-command timeout.
    retry:
        Backoff policy for state-lock contention.
    """

    def __init__(
        self,
        binary: str = "tofu",
        timeout_seconds: int = _DEFAULT_TIMEOUT,
        retry: RetryConfig | None = None,
    ) -> None:
        self._binary = binary
        self._timeout = timeout_seconds
        self._retry = retry or RetryConfig()

    def _run_once(self, args: list[str], cwd: Path | None) -> ProvisioningResult:
        cmd = [self._binary, *args]
        started = time.monotonic()
        try:
            proc = subprocess.run(
                cmd,
                cwd=cwd,
                capture_output=True,
                text=True,
                check=True,
                timeout=self._timeout,
            )
        except subprocess.CalledProcessError as exc:
            stderr = (exc.stderr or "").strip()
            error_cls = StateLockError if _STATE_LOCK_RE.search(stderr) else ProvisioningError
            raise error_cls(
                f"{self._binary} command failed: {' '.join(cmd)}\nExit code {exc.returncode}: {stderr}",
                command=cmd,
                exit_code=exc.returncode,
                stderr=stderr,
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise ProvisioningError(
                f"{self._binary} command timed out after {self._timeout}s: {' '.join(cmd)}",
                command=cmd,
            ) from exc
        except FileNotFoundError as exc:
            raise ProvisioningError(
                f"{self._binary} executable not found. Ensure it is installed and on PATH.",
                command=cmd,
            ) from exc

        return ProvisioningResult(
            command=cmd,
            stdout=proc.stdout,
            duration_seconds=time.monotonic() - started,
        )

    def _run(self, args: list[str], cwd: Path | None = None) -> ProvisioningResult:
        return retry_with_backoff(
            lambda: self._run_once(args, cwd),
            self._retry,
            is_transient=lambda exc: isinstance(exc, StateLockError),
            label=f"{self._binary} {args[0]}",
        )

    def validate(self, working_dir: Path) -> ProvisioningResult:
        self._run(["init", "-input=false", "-backend=false", "-no-color"], cwd=working_dir)
        result = self._run(["validate", "-no-color"], cwd=working_dir)
        logger.info("Configuration in %s is valid", working_dir)
        return result

    def apply(self, working_dir: Path, targets: list[str] | None = None) -> ProvisioningResult:
        args = ["apply", "-auto-approve", "-input=false", "-no-color"]
        for address in targets or []:
            _validate_address(address)
            args.append(f"-target={address}")
        logger.info(
            "Applying in %s (%s)",
            working_dir,
            f"{len(targets)} target(s)" if targets else "all resources",
        )
        result = self._run(args, cwd=working_dir)
        logger.info("Apply in %s finished in %.1fs", working_dir, result.duration_seconds)
        return result

    def version(self) -> str:
        result = self._run(["version", "-json"])
        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError as exc:
            raise ProvisioningError(f"Unparseable version output: {result.stdout[:200]!r}") from exc
        # OpenTofu keeps Terraform's key name for compatibility.
        version = data.get("terraform_version") or data.get("version")
        if not version:
            raise ProvisioningError("Version output did not contain a version field")
        return str(version)
