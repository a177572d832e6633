"""Thin git client for syncing a deployment's configuration repository.

Used by continuous-deployment automations: fetch the remote, compare heads,
and fast-forward the working tree when the remote moved.  All interaction
with the ``git`` binary is done through :func:`subprocess.run` with explicit
timeouts so that callers receive :class:`GitClientError` with a descriptive
message rather than raw subprocess failures.
"""

from __future__ import annotations

import logging
import re
import subprocess
from pathlib import Path

from pydantic import BaseModel

from lifecycle_engine.errors import LifecycleError

logger = logging.getLogger(__name__)

_SUBPROCESS_TIMEOUT = 60  # seconds

# Remote and branch names: no whitespace, no shell metacharacters, no
# leading dash (which git would parse as an option).
_GIT_NAME_RE = re.compile(r"^[a-zA-Z0-9_][a-zA-Z0-9_./\-]*$")


class GitClientError(LifecycleError):
    """Raised when a git operation fails or the repository is invalid."""


class SyncResult(BaseModel):
    """Outcome of :func:`sync_repository`."""

    branch: str
    previous_sha: str
    current_sha: str

    @property
    def updated(self) -> bool:
        return self.previous_sha != self.current_sha


def _validate_name(value: str, label: str) -> None:
    if not value or not _GIT_NAME_RE.match(value) or ".." in value:
        raise GitClientError(f"Invalid git {label}: {value!r}")


def _run_git(cmd: list[str], repo_path: Path) -> subprocess.CompletedProcess[str]:
    """Execute a git command and return the completed process.

    Raises
    ------
    GitClientError
        On non-zero exit, timeout, or if git cannot be started.
    """
    try:
        return subprocess.run(
            cmd,
            cwd=repo_path,
            capture_output=True,
            text=True,
            check=True,
            timeout=_SUBPROCESS_TIMEOUT,
        )
    except subprocess.CalledProcessError as exc:
        stderr = (exc.stderr or "").strip()
        raise GitClientError(f"git command failed: {' '.join(cmd)}\nExit code {exc.returncode}: {stderr}") from exc
    except subprocess.TimeoutExpired as exc:
        raise GitClientError(f"git command timed out after {_SUBPROCESS_TIMEOUT}s: {' '.join(cmd)}") from exc
    except FileNotFoundError as exc:
        raise GitClientError("git executable not found. Ensure git is installed and on PATH.") from exc


def is_repository(path: Path) -> bool:
    """Return ``True`` if *path* is inside a git work tree."""
    if not path.is_dir():
        return False
    try:
        result = _run_git(["git", "rev-parse", "--is-inside-work-tree"], path)
    except GitClientError:
        return False
    return result.stdout.strip() == "true"


def get_current_sha(repo_path: Path) -> str:
    """Return the full SHA of HEAD."""
    return _run_git(["git", "rev-parse", "HEAD"], repo_path).stdout.strip()


def get_current_branch(repo_path: Path) -> str:
    """Return the checked-out branch name.

    Raises
    ------
    GitClientError
        If HEAD is detached.
    """
    branch = _run_git(["git", "rev-parse", "--abbrev-ref", "HEAD"], repo_path).stdout.strip()
    if branch == "HEAD":
        raise GitClientError(f"Repository at {repo_path} has a detached HEAD; cannot sync")
    return branch


def sync_repository(repo_path: Path, remote: str = "origin", branch: str | None = None) -> SyncResult:
    """Fetch *remote* and fast-forward the working tree to ``remote/branch``.

    Only fast-forward updates are applied; diverged histories raise
    :class:`GitClientError` instead of creating merge commits.
    """
    if not is_repository(repo_path):
        raise GitClientError(f"Not a git repository: {repo_path}")

    branch = branch or get_current_branch(repo_path)
    _validate_name(remote, "remote")
    _validate_name(branch, "branch")

    previous = get_current_sha(repo_path)
    _run_git(["git", "fetch", "--quiet", remote, branch], repo_path)
    remote_sha = _run_git(["git", "rev-parse", f"{remote}/{branch}"], repo_path).stdout.strip()

    if remote_sha != previous:
        _run_git(["git", "merge", "--ff-only", "--quiet", f"{remote}/{branch}"], repo_path)
        logger.info("Fast-forwarded %s from %s to %s", repo_path, previous[:12], remote_sha[:12])
    else:
        logger.debug("Repository %s already at %s/%s (%s)", repo_path, remote, branch, previous[:12])

    return SyncResult(branch=branch, previous_sha=previous, current_sha=get_current_sha(repo_path))
