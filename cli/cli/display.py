"""Rich output formatting for the lifecycle CLI.

All functions write to a :class:`rich.console.Console` instance (typically
bound to *stderr*) so that machine-readable output on *stdout* is never
polluted with human-readable decoration.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

if TYPE_CHECKING:
    from lifecycle_engine.models.automation import (
        AutomationConfig,
        AutomationSummary,
        ExecutionRecord,
    )
    from lifecycle_engine.models.deployment import DeploymentRecord
    from lifecycle_engine.models.diff import ComparisonResult
    from lifecycle_engine.models.snapshot import Snapshot, SnapshotRef


# ---------------------------------------------------------------------------
# Status colour mapping
# ---------------------------------------------------------------------------

_STATUS_COLOURS: dict[str, str] = {
    "Succeeded": "green",
    "Active": "green",
    "Failed": "red",
    "Skipped": "dim",
    "Disabled": "dim red",
}


def _coloured_status(status: str) -> str:
    """Return a Rich markup string with the status colour-coded."""
    colour = _STATUS_COLOURS.get(status, "white")
    return f"[{colour}]{status}[/{colour}]"


def _when(value: datetime | None) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S %z").strip() if value else "-"


def _truncate(value: object, limit: int = 48) -> str:
    text = repr(value) if not isinstance(value, str) else value
    return text if len(text) <= limit else text[: limit - 3] + "..."


# ---------------------------------------------------------------------------
# Deployments
# ---------------------------------------------------------------------------


def display_deployments(console: Console, records: list[DeploymentRecord]) -> None:
    if not records:
        console.print("[dim]No deployments registered.[/dim]")
        return

    table = Table(title="Deployments", show_lines=False, pad_edge=True, expand=False)
    table.add_column("Deployment", style="bold")
    table.add_column("Working Directory")
    table.add_column("Provider")
    table.add_column("Environment")
    table.add_column("Tags")
    for record in records:
        table.add_row(
            record.deployment_id,
            str(record.working_directory),
            record.provider or "-",
            record.environment or "-",
            ", ".join(record.tags) or "-",
        )
    console.print(table)


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------


def display_snapshot_list(console: Console, refs: list[SnapshotRef]) -> None:
    """Render stored snapshots in ``(timestamp, serial)`` order."""
    if not refs:
        console.print("[dim]No snapshots found.[/dim]")
        return

    table = Table(title="Snapshots", show_lines=False, pad_edge=True, expand=False)
    table.add_column("Snapshot ID", style="bold")
    table.add_column("Deployment")
    table.add_column("Timestamp")
    table.add_column("Serial", justify="right")
    table.add_column("Resources", justify="right")
    table.add_column("Size", justify="right")
    table.add_column("File", style="dim")
    for ref in refs:
        table.add_row(
            ref.snapshot_id,
            ref.deployment_id,
            _when(ref.timestamp),
            str(ref.serial),
            str(ref.resource_count),
            f"{ref.size:,}",
            ref.file_path.name,
        )
    console.print(table)


def display_snapshot(console: Console, snapshot: Snapshot) -> None:
    """Render one snapshot: header panel plus a resource table."""
    header_lines = [
        f"[bold]Snapshot:[/bold]    {snapshot.snapshot_id}",
        f"[bold]Deployment:[/bold]  {snapshot.deployment_id}",
        f"[bold]Timestamp:[/bold]   {_when(snapshot.timestamp)}",
        f"[bold]Serial:[/bold]      {snapshot.serial}",
        f"[bold]Provider:[/bold]    {snapshot.metadata.provider or '-'}",
        f"[bold]Environment:[/bold] {snapshot.metadata.environment or '-'}",
        f"[bold]Secrets:[/bold]     {'included' if snapshot.includes_secrets else 'redacted'}",
    ]
    console.print(Panel("\n".join(header_lines), title="Snapshot", border_style="blue"))

    if not snapshot.resources:
        console.print("[dim]No resources in this snapshot.[/dim]")
        return

    table = Table(title="Resources", show_lines=False, pad_edge=True, expand=False)
    table.add_column("Resource", style="bold")
    table.add_column("Mode")
    table.add_column("Provider", style="dim")
    table.add_column("Instances", justify="right")
    for resource in snapshot.resources:
        table.add_row(resource.key, resource.mode.value, resource.provider, str(len(resource.instances)))
    console.print(table)

    if snapshot.outputs:
        outputs = Table(title="Outputs", show_lines=False, pad_edge=True, expand=False)
        outputs.add_column("Name", style="bold")
        outputs.add_column("Value")
        outputs.add_column("Sensitive", justify="center")
        for name, output in sorted(snapshot.outputs.items()):
            outputs.add_row(name, _truncate(output.value), "yes" if output.sensitive else "")
        console.print(outputs)


# ---------------------------------------------------------------------------
# Comparison
# ---------------------------------------------------------------------------


def display_comparison(console: Console, result: ComparisonResult) -> None:
    """Render a comparison summary followed by per-resource changes.

    Parameters
    ----------
    console:
        Rich console to write to (typically stderr).
    result:
        Comparison of reference (old) against difference (new).
    """
    s = result.summary
    header_lines = [
        f"[bold]Reference:[/bold]  {result.reference_id} ({_when(result.reference_time)})",
        f"[bold]Difference:[/bold] {result.difference_id} ({_when(result.difference_time)})",
        f"[green]+{s.added} added[/green]  [red]-{s.removed} removed[/red]  "
        f"[yellow]~{s.modified} modified[/yellow]  [dim]{s.unchanged} unchanged[/dim]",
    ]
    console.print(Panel("\n".join(header_lines), title="Comparison", border_style="blue"))

    if not result.has_changes and result.changes.unchanged is None:
        console.print("[green]No changes.[/green]")
        return

    table = Table(show_lines=False, pad_edge=True, expand=False)
    table.add_column("", width=1)
    table.add_column("Resource", style="bold")
    table.add_column("Property")
    table.add_column("Old")
    table.add_column("New")

    for ref in result.changes.added:
        table.add_row("[green]+[/green]", ref.key, "", "", "")
    for ref in result.changes.removed:
        table.add_row("[red]-[/red]", ref.key, "", "", "")
    for mod in result.changes.modified:
        for idx, change in enumerate(mod.field_changes):
            table.add_row(
                "[yellow]~[/yellow]" if idx == 0 else "",
                mod.resource.key if idx == 0 else "",
                change.property,
                _truncate(change.old_value),
                _truncate(change.new_value),
            )
    for ref in result.changes.unchanged or []:
        table.add_row(" ", f"[dim]{ref.key}[/dim]", "", "", "")
    console.print(table)


# ---------------------------------------------------------------------------
# Automations
# ---------------------------------------------------------------------------


def display_automation_list(console: Console, summaries: list[AutomationSummary]) -> None:
    if not summaries:
        console.print("[dim]No automations found.[/dim]")
        return

    table = Table(title="Automations", show_lines=False, pad_edge=True, expand=False)
    table.add_column("Automation ID", style="bold")
    table.add_column("Deployment")
    table.add_column("Type")
    table.add_column("Schedule")
    table.add_column("Status")
    table.add_column("Next Run")
    table.add_column("Last Run")
    table.add_column("Runs", justify="right")
    for summary in summaries:
        status = _coloured_status(summary.status.value)
        if summary.is_historical:
            status += " [dim](archived)[/dim]"
        table.add_row(
            summary.automation_id,
            summary.deployment_id,
            summary.type.value,
            summary.schedule_kind.value,
            status,
            _when(summary.next_run),
            _when(summary.last_run),
            str(summary.run_count),
        )
    console.print(table)


def display_automation(console: Console, config: AutomationConfig) -> None:
    """Render one automation: settings, task pipeline, and recent history."""
    f = config.features
    header_lines = [
        f"[bold]Automation:[/bold] {config.automation_id}",
        f"[bold]Deployment:[/bold] {config.deployment_id}",
        f"[bold]Type:[/bold]       {config.type.value}",
        f"[bold]Status:[/bold]     {_coloured_status(config.status.value)}"
        + (" [dim](archived)[/dim]" if config.is_historical else ""),
        f"[bold]Schedule:[/bold]   {config.schedule.kind.value}"
        + (f" every {config.schedule.interval_hours:g}h" if config.schedule.interval_hours else ""),
        f"[bold]Next Run:[/bold]   {_when(config.schedule.next_run)}",
        f"[bold]Last Run:[/bold]   {_when(config.last_run)}",
        f"[bold]Features:[/bold]   drift={'on' if f.drift_detection.enabled else 'off'} "
        f"backup={'on' if f.auto_backup.enabled else 'off'}(keep {f.auto_backup.retention_count}) "
        f"rollback={'on' if f.auto_rollback.enabled else 'off'} "
        f"notify={'on' if f.notifications.enabled else 'off'}",
    ]
    console.print(Panel("\n".join(header_lines), title="Automation", border_style="blue"))

    tasks = Table(title="Tasks", show_lines=False, pad_edge=True, expand=False)
    tasks.add_column("#", style="dim", width=4, justify="right")
    tasks.add_column("Task", style="bold")
    tasks.add_column("Action")
    tasks.add_column("Enabled", justify="center")
    for idx, task in enumerate(config.tasks, start=1):
        tasks.add_row(str(idx), task.name, task.action.value, "yes" if task.enabled else "[dim]no[/dim]")
    console.print(tasks)

    if config.history:
        history = Table(title="Recent Runs", show_lines=False, pad_edge=True, expand=False)
        history.add_column("Execution", style="bold")
        history.add_column("Started")
        history.add_column("Finished")
        history.add_column("Status")
        for record in config.history[-10:]:
            history.add_row(
                record.execution_id,
                _when(record.started_at),
                _when(record.finished_at),
                _coloured_status(record.status.value),
            )
        console.print(history)


def display_execution(console: Console, record: ExecutionRecord) -> None:
    console.print(f"Execution [bold]{record.execution_id}[/bold]: {_coloured_status(record.status.value)}")
    table = Table(show_lines=False, pad_edge=True, expand=False)
    table.add_column("Task", style="bold")
    table.add_column("Action")
    table.add_column("Status")
    table.add_column("Message")
    for result in record.task_results:
        table.add_row(result.name, result.action.value, _coloured_status(result.status.value), result.message)
    console.print(table)
