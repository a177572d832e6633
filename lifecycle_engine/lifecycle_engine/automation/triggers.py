"""Platform trigger registration for automations.

An automation can optionally be backed by an OS-level recurring trigger that
invokes ``lifecycle automation run <id> --if-due``.  Registration is
best-effort: callers log failures and carry on, because the in-process
daemon fires due automations regardless.

All interaction with ``crontab`` goes through :func:`subprocess.run` with an
explicit timeout; failures surface as :class:`StorageError`.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from typing import Protocol

from lifecycle_engine.errors import StorageError
from lifecycle_engine.models.automation import AutomationConfig, ScheduleKind

logger = logging.getLogger(__name__)

_SUBPROCESS_TIMEOUT = 30  # seconds
_MARKER_PREFIX = "# lifecycle-automation:"

_CRON_EXPRESSIONS: dict[ScheduleKind, str] = {
    ScheduleKind.HOURLY: "0 * * * *",
    ScheduleKind.DAILY: "0 2 * * *",
    ScheduleKind.WEEKLY: "0 2 * * 0",
    ScheduleKind.MONTHLY: "0 2 1 * *",
    # Custom intervals are polled hourly; ``--if-due`` filters early firings.
    ScheduleKind.CUSTOM: "0 * * * *",
}


class TriggerScheduler(Protocol):
    """Structural interface for OS-level trigger backends."""

    def register(self, config: AutomationConfig) -> None:
        """Install a recurring trigger for *config*."""
        ...

    def unregister(self, automation_id: str) -> None:
        """Remove the trigger for *automation_id*, if installed."""
        ...


class NullTriggerScheduler:
    """Backend that registers nothing; the daemon drives all runs."""

    def register(self, config: AutomationConfig) -> None:
        logger.debug("No trigger backend configured; automation %s runs via daemon only", config.automation_id)

    def unregister(self, automation_id: str) -> None:
        logger.debug("No trigger backend configured; nothing to unregister for %s", automation_id)


def cron_expression(kind: ScheduleKind) -> str:
    return _CRON_EXPRESSIONS[kind]


class CrontabTriggerScheduler:
    """Registers one marked crontab line per automation.

    Parameters
    ----------
    executable:
        Command used to invoke the CLI from cron (e.g. an absolute path to
        the ``lifecycle`` script).
    crontab_binary:
        The ``crontab`` executable.
    """

    def __init__(self, executable: str = "lifecycle", crontab_binary: str = "crontab") -> None:
        self._executable = executable
        self._crontab = crontab_binary

    def _run(self, args: list[str], stdin: str | None = None) -> subprocess.CompletedProcess[str]:
        cmd = [self._crontab, *args]
        try:
            return subprocess.run(
                cmd,
                input=stdin,
                capture_output=True,
                text=True,
                check=False,
                timeout=_SUBPROCESS_TIMEOUT,
            )
        except subprocess.TimeoutExpired as exc:
            raise StorageError(f"crontab timed out after {_SUBPROCESS_TIMEOUT}s: {' '.join(cmd)}") from exc
        except FileNotFoundError as exc:
            raise StorageError("crontab executable not found. Ensure cron is installed and on PATH.") from exc

    def _read(self) -> list[str]:
        result = self._run(["-l"])
        if result.returncode != 0:
            # ``crontab -l`` exits 1 with "no crontab for <user>" on an empty table.
            if "no crontab" in (result.stderr or "").lower():
                return []
            raise StorageError(f"crontab -l failed ({result.returncode}): {(result.stderr or '').strip()}")
        return result.stdout.splitlines()

    def _write(self, lines: list[str]) -> None:
        content = "\n".join(lines).rstrip("\n") + "\n" if lines else ""
        result = self._run(["-"], stdin=content)
        if result.returncode != 0:
            raise StorageError(f"crontab install failed ({result.returncode}): {(result.stderr or '').strip()}")

    @staticmethod
    def _without(lines: list[str], automation_id: str) -> list[str]:
        marker = f"{_MARKER_PREFIX}{automation_id}"
        return [line for line in lines if not line.rstrip().endswith(marker)]

    def register(self, config: AutomationConfig) -> None:
        lines = self._without(self._read(), config.automation_id)
        command = " ".join(
            shlex.quote(part) for part in [self._executable, "automation", "run", config.automation_id, "--if-due"]
        )
        lines.append(
            f"{cron_expression(config.schedule.kind)} {command} {_MARKER_PREFIX}{config.automation_id}"
        )
        self._write(lines)
        logger.info("Registered crontab trigger for automation %s", config.automation_id)

    def unregister(self, automation_id: str) -> None:
        current = self._read()
        remaining = self._without(current, automation_id)
        if len(remaining) == len(current):
            logger.debug("No crontab trigger found for automation %s", automation_id)
            return
        self._write(remaining)
        logger.info("Unregistered crontab trigger for automation %s", automation_id)
