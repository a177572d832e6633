"""Lifecycle CLI application -- Typer-based operator interface.

Provides commands for deployment registration, snapshot capture and
inspection, snapshot comparison, rollback, and automation management.
Human-readable output goes to *stderr* via Rich; machine-readable output
(``--json``) goes to *stdout* so that pipelines can compose cleanly.

Engine errors map to stable exit codes: validation 3, not found 4,
conflict 5, storage 6, provisioning 7.
"""

from __future__ import annotations

import asyncio
import json
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

import typer
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from rich.console import Console

from cli.display import (
    display_automation,
    display_automation_list,
    display_comparison,
    display_deployments,
    display_execution,
    display_snapshot,
    display_snapshot_list,
)
from lifecycle_engine.errors import (
    ConflictError,
    LifecycleError,
    NotFoundError,
    ProvisioningError,
    RollbackError,
    StorageError,
    ValidationError,
)

if TYPE_CHECKING:
    from lifecycle_engine.engine import Engine

# ---------------------------------------------------------------------------
# App & global state
# ---------------------------------------------------------------------------

app = typer.Typer(
    name="lifecycle",
    help="Snapshot, drift, rollback, and automation for OpenTofu/Terraform deployments.",
    no_args_is_help=True,
)
console = Console(stderr=True)

deployment_app = typer.Typer(name="deployment", help="Register and list deployments.", no_args_is_help=True)
snapshot_app = typer.Typer(name="snapshot", help="Capture and manage state snapshots.", no_args_is_help=True)
automation_app = typer.Typer(name="automation", help="Manage recurring automations.", no_args_is_help=True)
app.add_typer(deployment_app, name="deployment")
app.add_typer(snapshot_app, name="snapshot")
app.add_typer(automation_app, name="automation")

EXIT_VALIDATION = 3
EXIT_NOT_FOUND = 4
EXIT_CONFLICT = 5
EXIT_STORAGE = 6
EXIT_PROVISIONING = 7

# Mutable global options populated by the Typer callback.
_json_output: bool = False
_state_root: Path | None = None
_verbose: bool = False


# ---------------------------------------------------------------------------
# Callback -- global options
# ---------------------------------------------------------------------------


@app.callback()
def _global_options(
    json_mode: bool = typer.Option(
        False,
        "--json/--no-json",
        help="Emit structured JSON to stdout instead of human-readable output.",
    ),
    state_root: Path | None = typer.Option(
        None,
        "--state-root",
        help="Directory holding deployments, snapshots, and automation state.",
        envvar="LIFECYCLE_STATE_ROOT",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Global options applied to every command."""
    global _json_output, _state_root, _verbose  # noqa: PLW0603
    _json_output = json_mode
    _state_root = state_root
    _verbose = verbose


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _engine() -> Engine:
    """Load settings, configure logging, and wire the engine."""
    from lifecycle_engine.config import load_settings
    from lifecycle_engine.engine import build_engine
    from lifecycle_engine.logging_config import configure_logging

    overrides: dict[str, Any] = {}
    if _state_root is not None:
        overrides["state_root"] = _state_root
    if _verbose:
        overrides["debug"] = True
    try:
        settings = load_settings(**overrides)
    except PydanticValidationError as exc:
        console.print(f"[red]Invalid configuration: {exc}[/red]")
        raise typer.Exit(code=EXIT_VALIDATION) from exc
    configure_logging(settings)
    return build_engine(settings)


def exit_code_for(exc: LifecycleError) -> int:
    """Map an engine error to the CLI exit code."""
    if isinstance(exc, NotFoundError):
        return EXIT_NOT_FOUND
    if isinstance(exc, ConflictError):
        return EXIT_CONFLICT
    if isinstance(exc, ValidationError):
        return EXIT_VALIDATION
    if isinstance(exc, StorageError):
        return EXIT_STORAGE
    if isinstance(exc, ProvisioningError):
        return EXIT_PROVISIONING
    return 1


@contextmanager
def _handle_errors(action: str) -> Iterator[None]:
    """Translate engine errors raised inside the block into a clean exit."""
    try:
        yield
    except LifecycleError as exc:
        console.print(f"[red]{action} failed: {exc}[/red]")
        if isinstance(exc, ConflictError) and exc.candidates:
            for candidate in exc.candidates:
                console.print(f"  [dim]{candidate}[/dim]")
        if isinstance(exc, RollbackError):
            console.print("[yellow]Pre-rollback comparison:[/yellow]")
            display_comparison(console, exc.comparison)
        raise typer.Exit(code=exit_code_for(exc)) from exc


def _emit_json(payload: Any) -> None:
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(mode="json", by_alias=True)
    elif isinstance(payload, list):
        payload = [p.model_dump(mode="json", by_alias=True) if isinstance(p, BaseModel) else p for p in payload]
    sys.stdout.write(json.dumps(payload, indent=2, sort_keys=True, default=str) + "\n")


# ---------------------------------------------------------------------------
# deployment
# ---------------------------------------------------------------------------


@deployment_app.command("register")
def deployment_register(
    deployment_id: str = typer.Argument(..., help="Identifier for the deployment."),
    working_dir: Path = typer.Option(
        ...,
        "--working-dir",
        help="Directory holding the provisioning configuration and state file.",
        exists=True,
        file_okay=False,
        resolve_path=True,
    ),
    provider: str = typer.Option("", "--provider", help="Cloud provider label."),
    environment: str = typer.Option("", "--environment", help="Environment label."),
    tags: list[str] | None = typer.Option(None, "--tag", help="Tag; repeat for several."),
    overwrite: bool = typer.Option(False, "--overwrite", help="Replace an existing record."),
) -> None:
    """Register a deployment's working directory."""
    from lifecycle_engine.models.deployment import DeploymentRecord

    engine = _engine()
    try:
        record = DeploymentRecord(
            deployment_id=deployment_id,
            working_directory=working_dir,
            provider=provider,
            environment=environment,
            tags=tags or [],
        )
    except PydanticValidationError as exc:
        console.print(f"[red]Invalid deployment: {exc}[/red]")
        raise typer.Exit(code=EXIT_VALIDATION) from exc

    with _handle_errors("Registering deployment"):
        engine.deployments.register(record, overwrite=overwrite)

    if _json_output:
        _emit_json(record)
    else:
        console.print(f"Registered deployment [bold]{deployment_id}[/bold] at {working_dir}")


@deployment_app.command("list")
def deployment_list() -> None:
    """List registered deployments."""
    engine = _engine()
    with _handle_errors("Listing deployments"):
        records = engine.deployments.list()
    if _json_output:
        _emit_json(records)
    else:
        display_deployments(console, records)


# ---------------------------------------------------------------------------
# snapshot
# ---------------------------------------------------------------------------


@snapshot_app.command("capture")
def snapshot_capture(
    deployment_id: str = typer.Argument(..., help="Deployment to capture."),
    include_secrets: bool = typer.Option(
        False,
        "--include-secrets",
        help="Store sensitive attributes and outputs unredacted.",
    ),
    fmt: str = typer.Option("json", "--format", help="Snapshot file format."),
) -> None:
    """Capture a snapshot of a deployment's current state."""
    engine = _engine()
    with _handle_errors("Snapshot capture"):
        ref = engine.capturer.capture(deployment_id, include_secrets=include_secrets, format=fmt)

    if _json_output:
        _emit_json(ref)
    else:
        console.print(
            f"Captured [bold]{ref.snapshot_id}[/bold] "
            f"({ref.resource_count} resources, serial {ref.serial}) -> {ref.file_path}"
        )
        if include_secrets:
            console.print("[yellow]Warning: this snapshot contains unredacted secrets.[/yellow]")


@snapshot_app.command("list")
def snapshot_list(
    deployment_id: str | None = typer.Option(None, "--deployment", "-d", help="Only this deployment."),
) -> None:
    """List stored snapshots in capture order."""
    engine = _engine()
    with _handle_errors("Listing snapshots"):
        refs = engine.store.list(deployment_id)
    if _json_output:
        _emit_json(refs)
    else:
        display_snapshot_list(console, refs)


@snapshot_app.command("show")
def snapshot_show(
    identifier: str = typer.Argument(..., help="Snapshot id, file name, path, or unique fragment."),
) -> None:
    """Display one stored snapshot."""
    engine = _engine()
    with _handle_errors("Loading snapshot"):
        snapshot = engine.store.resolve(identifier)
    if _json_output:
        _emit_json(snapshot)
    else:
        display_snapshot(console, snapshot)


@snapshot_app.command("delete")
def snapshot_delete(
    identifier: str = typer.Argument(..., help="Snapshot id, file name, path, or unique fragment."),
) -> None:
    """Delete one stored snapshot."""
    engine = _engine()
    with _handle_errors("Deleting snapshot"):
        ref = engine.store.delete(identifier)
    if _json_output:
        _emit_json(ref)
    else:
        console.print(f"Deleted snapshot [bold]{ref.snapshot_id}[/bold] ({ref.file_path.name})")


@snapshot_app.command("prune")
def snapshot_prune(
    deployment_id: str = typer.Argument(..., help="Deployment whose snapshots to prune."),
    keep: int | None = typer.Option(None, "--keep", min=0, help="Snapshots to keep (default from settings)."),
) -> None:
    """Delete all but the newest snapshots of a deployment."""
    engine = _engine()
    retain = keep if keep is not None else engine.settings.default_retention_count
    with _handle_errors("Pruning snapshots"):
        removed = engine.store.prune(deployment_id, retain)
    if _json_output:
        _emit_json(removed)
    else:
        console.print(f"Removed {len(removed)} snapshot(s) of [bold]{deployment_id}[/bold]; kept up to {retain}")


# ---------------------------------------------------------------------------
# compare
# ---------------------------------------------------------------------------


@app.command()
def compare(
    reference: str = typer.Argument(..., help="Reference (older) snapshot identifier."),
    difference: str = typer.Argument(..., help="Difference (newer) snapshot identifier."),
    include_unchanged: bool = typer.Option(False, "--include-unchanged", help="List unchanged resources too."),
    all_instances: bool = typer.Option(
        False,
        "--all-instances",
        help="Compare every instance of multi-instance resources, not only the first.",
    ),
    export: Path | None = typer.Option(None, "--export", help="Write the comparison to this file."),
    fmt: str = typer.Option("json", "--format", help="Export format: json | table."),
) -> None:
    """Compare two stored snapshots."""
    from lifecycle_engine.diff.serializer import export_comparison, serialize_comparison

    engine = _engine()
    with _handle_errors("Comparison"):
        result = engine.differ.compare(
            reference,
            difference,
            include_unchanged=include_unchanged,
            all_instances=all_instances,
        )
        if export is not None:
            export_comparison(result, export, fmt)

    if _json_output:
        sys.stdout.write(serialize_comparison(result) + "\n")
    else:
        display_comparison(console, result)
        if export is not None:
            console.print(f"\nComparison written to [bold]{export}[/bold]")


# ---------------------------------------------------------------------------
# rollback
# ---------------------------------------------------------------------------


@app.command()
def rollback(
    deployment_id: str = typer.Argument(..., help="Deployment to roll back."),
    snapshot: str = typer.Argument(..., help="Target snapshot identifier."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would change without applying."),
    backup: bool = typer.Option(True, "--backup/--no-backup", help="Snapshot current state before applying."),
    lock_timeout: float = typer.Option(0.0, "--lock-timeout", min=0.0, help="Seconds to wait for the lock."),
) -> None:
    """Converge a deployment back to a stored snapshot."""
    from lifecycle_engine.diff.serializer import serialize_comparison
    from lifecycle_engine.rollback.coordinator import RollbackCoordinator

    engine = _engine()
    coordinator = engine.rollback
    if lock_timeout:
        coordinator = RollbackCoordinator(
            engine.deployments,
            engine.store,
            engine.capturer,
            engine.provisioner,
            engine.locks,
            lock_timeout=lock_timeout,
        )

    with _handle_errors("Rollback"):
        if dry_run:
            result = coordinator.plan(deployment_id, snapshot)
        else:
            result = coordinator.rollback(deployment_id, snapshot, backup_before=backup)

    if _json_output:
        sys.stdout.write(serialize_comparison(result) + "\n")
        return
    display_comparison(console, result)
    if dry_run:
        console.print("\n[dim]Dry run: nothing was applied.[/dim]")
    elif result.has_changes:
        console.print(f"\n[green]Rolled back {deployment_id} to {snapshot}.[/green]")


# ---------------------------------------------------------------------------
# automation
# ---------------------------------------------------------------------------


@automation_app.command("start")
def automation_start(
    deployment_id: str = typer.Argument(..., help="Deployment to automate."),
    automation_type: str = typer.Option(
        ...,
        "--type",
        "-t",
        help="Scheduled | ContinuousDeployment | Maintenance | Monitoring.",
    ),
    schedule: str = typer.Option("Daily", "--schedule", "-s", help="Hourly | Daily | Weekly | Monthly | Custom."),
    interval_hours: float | None = typer.Option(None, "--interval-hours", help="Interval for Custom schedules."),
    drift_detection: bool = typer.Option(False, "--drift-detection", help="Enable drift detection tasks."),
    auto_backup: bool = typer.Option(False, "--auto-backup", help="Enable backup tasks."),
    retention: int | None = typer.Option(None, "--retention", min=1, help="Backups to keep."),
    auto_rollback: bool = typer.Option(False, "--auto-rollback", help="Roll back automatically on drift."),
    rollback_on: list[str] | None = typer.Option(None, "--rollback-on", help="Auto-rollback trigger condition."),
    notify_endpoint: str | None = typer.Option(None, "--notify-endpoint", help="Notification endpoint."),
    notify_events: list[str] | None = typer.Option(None, "--notify-event", help="Event type to notify on."),
    replace: bool = typer.Option(False, "--replace", help="Replace an active automation of the same type."),
) -> None:
    """Create and activate an automation for a deployment."""
    from lifecycle_engine.models.automation import (
        AutoBackupFeature,
        AutomationFeatures,
        AutoRollbackFeature,
        DriftDetectionFeature,
        NotificationsFeature,
    )

    engine = _engine()
    features = AutomationFeatures(
        drift_detection=DriftDetectionFeature(enabled=drift_detection),
        auto_backup=AutoBackupFeature(
            enabled=auto_backup,
            retention_count=retention or engine.settings.default_retention_count,
        ),
        auto_rollback=AutoRollbackFeature(enabled=auto_rollback, trigger_conditions=rollback_on or []),
        notifications=NotificationsFeature(
            enabled=bool(notify_endpoint or notify_events),
            endpoint=notify_endpoint,
            event_types=notify_events or [],
        ),
    )

    with _handle_errors("Starting automation"):
        config = engine.automation_service.start(
            deployment_id,
            automation_type,
            schedule=schedule,
            features=features,
            interval_hours=interval_hours,
            replace=replace,
        )

    if _json_output:
        _emit_json(config)
    else:
        display_automation(console, config)


@automation_app.command("stop")
def automation_stop(
    automation_id: str = typer.Argument(..., help="Automation to stop."),
    remove_config: bool = typer.Option(False, "--remove-config", help="Delete the configuration directory."),
    unregister_triggers: bool = typer.Option(
        True,
        "--unregister-triggers/--keep-triggers",
        help="Remove the platform trigger.",
    ),
) -> None:
    """Disable an automation so it never runs again."""
    engine = _engine()
    with _handle_errors("Stopping automation"):
        config = engine.automation_service.stop(
            automation_id,
            remove_configuration=remove_config,
            unregister_triggers=unregister_triggers,
        )
    if _json_output:
        _emit_json(config)
    else:
        console.print(f"Stopped automation [bold]{automation_id}[/bold]")


@automation_app.command("list")
def automation_list(
    deployment_id: str | None = typer.Option(None, "--deployment", "-d", help="Only this deployment."),
    status: list[str] | None = typer.Option(None, "--status", help="Active | Disabled; repeat for several."),
    include_historical: bool = typer.Option(False, "--include-historical", help="Include archived configs."),
) -> None:
    """List automations, newest first."""
    from lifecycle_engine.models.automation import AutomationStatus

    engine = _engine()
    try:
        statuses = [AutomationStatus(s.capitalize()) for s in status] if status else None
    except ValueError as exc:
        console.print(f"[red]Unknown status: {exc}[/red]")
        raise typer.Exit(code=EXIT_VALIDATION) from exc

    with _handle_errors("Listing automations"):
        summaries = engine.automations.list(
            deployment_id,
            statuses=statuses,
            include_historical=include_historical,
        )
    if _json_output:
        _emit_json(summaries)
    else:
        display_automation_list(console, summaries)


@automation_app.command("show")
def automation_show(
    automation_id: str = typer.Argument(..., help="Automation to display."),
) -> None:
    """Display an automation's configuration and recent runs."""
    engine = _engine()
    with _handle_errors("Loading automation"):
        config = engine.automations.get(automation_id)
    if _json_output:
        payload = config.model_dump(mode="json", by_alias=True)
        payload["isHistorical"] = config.is_historical
        _emit_json(payload)
    else:
        display_automation(console, config)


@automation_app.command("run")
def automation_run(
    automation_id: str = typer.Argument(..., help="Automation to run."),
    if_due: bool = typer.Option(False, "--if-due", help="Only run when the next run time has passed."),
) -> None:
    """Run an automation's pipeline now."""
    from lifecycle_engine.automation.runner import is_due
    from lifecycle_engine.models.automation import ExecutionStatus

    engine = _engine()
    with _handle_errors("Automation run"):
        if if_due:
            config = engine.automations.get(automation_id)
            if not is_due(config, datetime.now(UTC)):
                if not _json_output:
                    console.print(f"[dim]Automation {automation_id} is not due; nothing to do.[/dim]")
                return
        record = engine.runner.run(automation_id)

    if _json_output:
        _emit_json(record)
    else:
        display_execution(console, record)
    if record.status == ExecutionStatus.FAILED:
        raise typer.Exit(code=1)


# ---------------------------------------------------------------------------
# daemon
# ---------------------------------------------------------------------------


@app.command()
def daemon(
    once: bool = typer.Option(False, "--once", help="Run due automations once and exit."),
) -> None:
    """Run the automation daemon in the foreground."""
    engine = _engine()
    scheduler = engine.daemon()

    if once:
        with _handle_errors("Automation poll"):
            records = asyncio.run(scheduler.run_once())
        if _json_output:
            _emit_json(records)
        else:
            console.print(f"Ran {len(records)} due automation(s)")
            for record in records:
                display_execution(console, record)
        return

    async def _serve() -> None:
        await scheduler.start()
        try:
            while scheduler.running:
                await asyncio.sleep(1.0)
        finally:
            await scheduler.stop()

    console.print(
        f"Automation daemon running (poll every {engine.settings.scheduler_poll_interval:.0f}s). "
        "Press Ctrl+C to stop."
    )
    try:
        asyncio.run(_serve())
    except KeyboardInterrupt:
        console.print("\nDaemon stopped.")
