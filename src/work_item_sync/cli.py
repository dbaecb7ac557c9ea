"""Command-line interface for work item synchronizer."""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, NoReturn, Optional

import typer
import yaml
from rich.console import Console
from rich.markup import escape
from rich.prompt import Prompt
from rich.table import Table
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from work_item_sync import __version__
from work_item_sync.config import Config
from work_item_sync.conflict import ConflictFilter, ConflictResolver
from work_item_sync.connectors import ConnectorRegistry
from work_item_sync.db import SyncRepository, create_db_engine, create_session_factory, init_db, session_scope
from work_item_sync.db.models import (
    ConflictStatus,
    ConflictType,
    ExecutionStatus,
    SyncConfiguration,
    SyncExecution,
)
from work_item_sync.errors import SyncError
from work_item_sync.mapping import MappingEngine, suggest_mappings
from work_item_sync.sync import SyncEngine, SyncScheduler
from work_item_sync.utils import StorageManager, get_logger, setup_logging

app = typer.Typer(help="Synchronize work items between issue tracking systems")
configs_app = typer.Typer(help="Manage sync configurations")
conflicts_app = typer.Typer(help="Inspect and resolve sync conflicts")
mappings_app = typer.Typer(help="Manage type, field and status mappings")
app.add_typer(configs_app, name="configs")
app.add_typer(conflicts_app, name="conflicts")
app.add_typer(mappings_app, name="mappings")

console = Console()
logger = get_logger(__name__)

CONFIG_DIR_HELP = "Configuration directory. Defaults to ~/.work-item-sync/"
SUCCESS_STATUSES = (ExecutionStatus.completed.value,)


class Runtime:
    """Database, settings and services shared by the commands."""

    def __init__(self, config: Config) -> None:
        self.config = config
        self.storage: StorageManager = self.config.storage
        self.db_engine = create_db_engine(self.config.database_url)
        init_db(self.db_engine)
        self.session_factory = create_session_factory(self.db_engine)
        self.mapping_engine = MappingEngine(
            self.session_factory, cache_ttl=self.config.mapping_cache_ttl
        )
        self.repository = SyncRepository(
            self.session_factory, on_mappings_changed=self.mapping_engine.clear_cache
        )

    def connector_registry(self) -> ConnectorRegistry:
        with session_scope(self.session_factory) as session:
            return ConnectorRegistry.from_database(session, self.storage)

    def resolver(self, registry: ConnectorRegistry | None = None) -> ConflictResolver:
        return ConflictResolver(self.session_factory, registry, self.mapping_engine)

    def sync_engine(self, registry: ConnectorRegistry) -> SyncEngine:
        return SyncEngine(
            self.session_factory,
            registry,
            self.mapping_engine,
            resolver=self.resolver(registry),
        )

    def scheduler(self, registry: ConnectorRegistry) -> SyncScheduler:
        return SyncScheduler(
            self.sync_engine(registry),
            max_concurrent=self.config.max_concurrent_syncs,
            run_timeout=self.config.run_timeout_seconds,
        )


def _open(config_dir: Optional[Path], verbose: bool = False) -> Runtime:
    config = Config(config_dir)
    setup_logging(
        log_level=logging.DEBUG if verbose else config.log_level,
        config_dir=config_dir,
    )
    return Runtime(config)


def _fail(message: str) -> NoReturn:
    console.print(f"[red]Error: {message}[/red]")
    raise typer.Exit(code=1)


def _format_value(value: Any, width: int = 40) -> str:
    if value is None:
        return "-"
    text = value if isinstance(value, str) else json.dumps(value, default=str)
    return text if len(text) <= width else text[: width - 3] + "..."


@app.command("init-db")
def init_database(
    config_dir: Optional[Path] = typer.Option(None, "--config-dir", help=CONFIG_DIR_HELP),
) -> None:
    """Create the database tables."""
    runtime = _open(config_dir)
    console.print(f"[green]✓ Database ready at {runtime.config.database_url}[/green]")


@app.command("set-token")
def set_token(
    connector: str = typer.Argument(..., help="Connector name"),
    token: Optional[str] = typer.Option(None, "--token", help="API token. Prompted when omitted."),
    config_dir: Optional[Path] = typer.Option(None, "--config-dir", help=CONFIG_DIR_HELP),
) -> None:
    """Store the API token used for a connector."""
    storage = StorageManager(config_dir)
    if not token:
        token = Prompt.ask(f"Enter the API token for {connector}", password=True)
    storage.set_token(connector, token)
    console.print(f"[green]✓ Token saved for {connector}[/green]")


@app.command()
def sync(
    config_id: int = typer.Argument(..., help="Sync configuration ID"),
    items: Optional[list[str]] = typer.Option(
        None,
        "--item",
        help="Restrict the run to these source work item IDs. Repeatable.",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Show what would be synced without writing to either system.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging."),
    config_dir: Optional[Path] = typer.Option(None, "--config-dir", help=CONFIG_DIR_HELP),
) -> None:
    """Run a sync configuration once."""
    runtime = _open(config_dir, verbose)
    logger.info(f"Work Item Synchronizer v{__version__}")

    mode_str = "[bold cyan]DRY RUN[/bold cyan]" if dry_run else "[bold green]SYNC[/bold green]"
    console.print(f"Starting {mode_str} of configuration {config_id}...")

    async def _run() -> SyncExecution | None:
        registry = runtime.connector_registry()
        try:
            return await runtime.scheduler(registry).execute_sync(
                config_id, work_item_ids=items or None, dry_run=dry_run
            )
        finally:
            await registry.aclose()

    try:
        execution = asyncio.run(_run())
    except SyncError as e:
        logger.error(f"Sync failed: {e}")
        _fail(str(e))

    table = Table(title=f"Execution {execution.id}")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="magenta")
    table.add_row("Status", execution.status)
    table.add_row("Synced", str(execution.items_synced))
    table.add_row("Failed", str(execution.items_failed))
    table.add_row("Conflicts", str(execution.conflicts_detected))
    console.print(table)

    if execution.error_message:
        console.print(f"\n[red]{execution.error_message}[/red]")
    if execution.status not in SUCCESS_STATUSES:
        raise typer.Exit(code=1)


@app.command()
def status(
    config_id: Optional[int] = typer.Option(None, "--config-id", help="Only this configuration."),
    execution_id: Optional[int] = typer.Option(
        None, "--execution", help="Show the execution log of one execution."
    ),
    limit: int = typer.Option(10, "--limit", help="Number of executions to list."),
    config_dir: Optional[Path] = typer.Option(None, "--config-dir", help=CONFIG_DIR_HELP),
) -> None:
    """Show recent sync executions."""
    runtime = _open(config_dir)

    if execution_id is not None:
        with session_scope(runtime.session_factory) as session:
            execution = session.get(SyncExecution, execution_id)
        if execution is None:
            _fail(f"Execution {execution_id} not found")
        console.print(
            f"[bold]Execution {execution.id}[/bold] ({execution.status}, trigger {execution.trigger})"
        )
        for entry in execution.execution_log or []:
            console.print(escape(f"  {entry['timestamp']} [{entry['level']}] {entry['message']}"))
        return

    query = select(SyncExecution)
    if config_id is not None:
        query = query.where(SyncExecution.sync_config_id == config_id)
    query = query.order_by(SyncExecution.id.desc()).limit(limit)
    with session_scope(runtime.session_factory) as session:
        executions = session.scalars(query).all()

    if not executions:
        console.print("[yellow]No executions yet.[/yellow]")
        return

    table = Table(title="Sync Executions")
    table.add_column("ID", style="cyan")
    table.add_column("Config")
    table.add_column("Status", style="magenta")
    table.add_column("Trigger")
    table.add_column("Started")
    table.add_column("Synced")
    table.add_column("Failed")
    table.add_column("Conflicts")
    for execution in executions:
        table.add_row(
            str(execution.id),
            str(execution.sync_config_id),
            execution.status + (" (dry run)" if execution.dry_run else ""),
            execution.trigger,
            execution.started_at.strftime("%Y-%m-%d %H:%M:%S"),
            str(execution.items_synced),
            str(execution.items_failed),
            f"{execution.conflicts_unresolved}/{execution.conflicts_detected}",
        )
    console.print(table)


@app.command()
def schedule(
    poll_interval: float = typer.Option(30.0, "--poll-interval", help="Seconds between schedule checks."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging."),
    config_dir: Optional[Path] = typer.Option(None, "--config-dir", help=CONFIG_DIR_HELP),
) -> None:
    """Run scheduled sync configurations until interrupted."""
    runtime = _open(config_dir, verbose)

    async def _serve() -> None:
        registry = runtime.connector_registry()
        scheduler = runtime.scheduler(registry)
        scheduler.poll_interval = poll_interval
        stop_event = asyncio.Event()
        try:
            await scheduler.run_scheduled(stop_event)
        finally:
            await registry.aclose()

    console.print("[cyan]Scheduler running. Press Ctrl+C to stop.[/cyan]")
    try:
        asyncio.run(_serve())
    except KeyboardInterrupt:
        console.print("\n[yellow]Scheduler stopped[/yellow]")


@configs_app.command("list")
def configs_list(
    config_dir: Optional[Path] = typer.Option(None, "--config-dir", help=CONFIG_DIR_HELP),
) -> None:
    """List sync configurations."""
    runtime = _open(config_dir)
    with session_scope(runtime.session_factory) as session:
        configs = session.scalars(select(SyncConfiguration).order_by(SyncConfiguration.id)).all()

    if not configs:
        console.print("[yellow]No sync configurations yet.[/yellow]")
        return

    table = Table(title="Sync Configurations")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Direction")
    table.add_column("Strategy")
    table.add_column("Trigger")
    table.add_column("Active")
    table.add_column("Last Sync")
    table.add_column("Next Sync")
    for config in configs:
        table.add_row(
            str(config.id),
            config.name,
            config.direction,
            config.conflict_strategy,
            config.trigger_type + (f" ({config.schedule_cron})" if config.schedule_cron else ""),
            "yes" if config.is_active else "no",
            str(config.last_sync_at or "-"),
            str(config.next_sync_at or "-"),
        )
    console.print(table)


@configs_app.command("import")
def configs_import(
    file: Path = typer.Argument(..., help="YAML file with connectors and sync_configurations."),
    config_dir: Optional[Path] = typer.Option(None, "--config-dir", help=CONFIG_DIR_HELP),
) -> None:
    """Register connectors and create sync configurations from a YAML file."""
    runtime = _open(config_dir)
    try:
        definition = runtime.storage.load_mapping_definition(file)
    except FileNotFoundError:
        _fail(f"File not found: {file}")

    try:
        connector_ids: dict[str, int] = {}
        for entry in definition.get("connectors") or []:
            existing = runtime.repository.get_connector_by_name(entry["name"])
            if existing is None:
                existing = runtime.repository.register_connector(
                    entry["name"],
                    base_url=entry.get("base_url"),
                    connector_type=entry.get("connector_type", "rest"),
                    work_item_types=entry.get("work_item_types"),
                    settings=entry.get("settings"),
                )
                console.print(f"[green]✓ Registered connector {existing.name}[/green]")
            connector_ids[existing.name] = existing.id

        for entry in definition.get("sync_configurations") or []:
            source = connector_ids.get(entry["source"]) or _connector_id(runtime, entry["source"])
            target = connector_ids.get(entry["target"]) or _connector_id(runtime, entry["target"])
            config = runtime.repository.import_sync_configuration(entry, source, target)
            console.print(f"[green]✓ Created sync configuration {config.name} (id={config.id})[/green]")
    except (SyncError, KeyError, ValueError) as e:
        logger.error(f"Import failed: {e}")
        _fail(str(e))
    except IntegrityError as e:
        logger.error(f"Import failed: {e.orig}")
        _fail(f"Import conflicts with stored data: {e.orig}")


def _connector_id(runtime: Runtime, name: str) -> int:
    connector = runtime.repository.get_connector_by_name(name)
    if connector is None:
        raise SyncError(f"Connector {name} is not registered")
    return connector.id


@configs_app.command("activate")
def configs_activate(
    config_id: int = typer.Argument(..., help="Sync configuration ID"),
    active: bool = typer.Option(True, "--active/--inactive", help="New state."),
    config_dir: Optional[Path] = typer.Option(None, "--config-dir", help=CONFIG_DIR_HELP),
) -> None:
    """Activate or deactivate a sync configuration."""
    runtime = _open(config_dir)
    try:
        runtime.repository.set_active(config_id, active)
    except SyncError as e:
        _fail(str(e))
    console.print(f"[green]✓ Configuration {config_id} {'activated' if active else 'deactivated'}[/green]")


@configs_app.command("delete")
def configs_delete(
    config_id: int = typer.Argument(..., help="Sync configuration ID"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt."),
    config_dir: Optional[Path] = typer.Option(None, "--config-dir", help=CONFIG_DIR_HELP),
) -> None:
    """Delete a sync configuration and all of its history."""
    runtime = _open(config_dir)
    if not yes:
        answer = Prompt.ask(
            f"Delete configuration {config_id} with its mappings, versions and conflicts?",
            choices=["y", "n"],
            default="n",
        )
        if answer != "y":
            console.print("[yellow]Aborted[/yellow]")
            return
    try:
        runtime.repository.delete_sync_configuration(config_id)
    except SyncError as e:
        _fail(str(e))
    console.print(f"[green]✓ Configuration {config_id} deleted[/green]")


@conflicts_app.command("list")
def conflicts_list(
    config_id: Optional[int] = typer.Option(None, "--config-id", help="Only this configuration."),
    status_filter: Optional[ConflictStatus] = typer.Option(
        ConflictStatus.unresolved, "--status", help="Conflict status."
    ),
    conflict_type: Optional[ConflictType] = typer.Option(None, "--type", help="Conflict type."),
    item: Optional[str] = typer.Option(None, "--item", help="Source or target work item ID."),
    all_statuses: bool = typer.Option(False, "--all", help="Include resolved and ignored conflicts."),
    limit: int = typer.Option(50, "--limit", help="Maximum number of conflicts."),
    config_dir: Optional[Path] = typer.Option(None, "--config-dir", help=CONFIG_DIR_HELP),
) -> None:
    """List conflicts, newest first."""
    runtime = _open(config_dir)
    conflicts = runtime.resolver().list_conflicts(
        ConflictFilter(
            sync_config_id=config_id,
            status=None if all_statuses else status_filter,
            conflict_type=conflict_type,
            work_item_id=item,
            limit=limit,
        )
    )

    if not conflicts:
        console.print("[green]No conflicts found.[/green]")
        return

    table = Table(title="Conflicts")
    table.add_column("ID", style="cyan")
    table.add_column("Config")
    table.add_column("Type")
    table.add_column("Item")
    table.add_column("Field")
    table.add_column("Source", style="green")
    table.add_column("Target", style="yellow")
    table.add_column("Base")
    table.add_column("Status", style="magenta")
    for conflict in conflicts:
        table.add_row(
            str(conflict.id),
            str(conflict.sync_config_id),
            conflict.conflict_type,
            f"{conflict.source_work_item_id} -> {conflict.target_work_item_id or '-'}",
            conflict.field_name or "-",
            _format_value(conflict.source_value),
            _format_value(conflict.target_value),
            _format_value(conflict.base_value),
            conflict.status,
        )
    console.print(table)


@conflicts_app.command("resolve")
def conflicts_resolve(
    conflict_id: int = typer.Argument(..., help="Conflict ID"),
    value: str = typer.Argument(..., help="Resolved value, parsed as YAML (e.g. 2, 'text', [a, b])."),
    rationale: Optional[str] = typer.Option(None, "--rationale", help="Why this value was chosen."),
    resolved_by: Optional[str] = typer.Option(None, "--by", help="Operator name."),
    config_dir: Optional[Path] = typer.Option(None, "--config-dir", help=CONFIG_DIR_HELP),
) -> None:
    """Resolve a conflict with a chosen value."""
    runtime = _open(config_dir)
    try:
        parsed = yaml.safe_load(value)
    except yaml.YAMLError as e:
        _fail(f"Cannot parse value: {e}")
    try:
        conflict = runtime.resolver().resolve_manually(
            conflict_id, parsed, rationale=rationale, resolved_by=resolved_by
        )
    except SyncError as e:
        _fail(str(e))
    console.print(
        f"[green]✓ Conflict {conflict.id} resolved with {_format_value(conflict.resolved_value)}[/green]"
    )
    console.print(f"Run 'work-item-sync conflicts apply {conflict.id}' to write it to the trackers.")


@conflicts_app.command("auto")
def conflicts_auto(
    conflict_ids: list[int] = typer.Argument(..., help="Conflict IDs"),
    strategy: Optional[str] = typer.Option(
        None,
        "--strategy",
        help="last-write-wins, source-priority, target-priority or merge. "
        "Defaults to the configuration's strategy.",
    ),
    config_dir: Optional[Path] = typer.Option(None, "--config-dir", help=CONFIG_DIR_HELP),
) -> None:
    """Resolve conflicts with an automatic strategy."""
    runtime = _open(config_dir)
    outcomes = runtime.resolver().resolve_many(conflict_ids, strategy)

    table = Table(title="Resolution Results")
    table.add_column("Conflict", style="cyan")
    table.add_column("Status", style="magenta")
    table.add_column("Value")
    for outcome in outcomes:
        if outcome.success:
            table.add_row(str(outcome.conflict_id), outcome.status, _format_value(outcome.resolved_value))
        else:
            table.add_row(
                str(outcome.conflict_id),
                f"[red]{outcome.status or 'failed'}[/red]",
                outcome.error or "left for manual resolution",
            )
    console.print(table)

    if not all(outcome.success for outcome in outcomes):
        raise typer.Exit(code=1)


@conflicts_app.command("ignore")
def conflicts_ignore(
    conflict_id: int = typer.Argument(..., help="Conflict ID"),
    rationale: Optional[str] = typer.Option(None, "--rationale", help="Why the conflict is ignored."),
    resolved_by: Optional[str] = typer.Option(None, "--by", help="Operator name."),
    config_dir: Optional[Path] = typer.Option(None, "--config-dir", help=CONFIG_DIR_HELP),
) -> None:
    """Mark a conflict as ignored."""
    runtime = _open(config_dir)
    try:
        runtime.resolver().ignore(conflict_id, rationale=rationale, resolved_by=resolved_by)
    except SyncError as e:
        _fail(str(e))
    console.print(f"[green]✓ Conflict {conflict_id} ignored[/green]")


@conflicts_app.command("apply")
def conflicts_apply(
    conflict_id: int = typer.Argument(..., help="Conflict ID"),
    to_target: bool = typer.Option(True, "--to-target/--no-target", help="Write to the target item."),
    to_source: bool = typer.Option(False, "--to-source/--no-source", help="Write to the source item."),
    config_dir: Optional[Path] = typer.Option(None, "--config-dir", help=CONFIG_DIR_HELP),
) -> None:
    """Write a resolved value to the external systems."""
    runtime = _open(config_dir)

    async def _apply() -> Any:
        registry = runtime.connector_registry()
        try:
            return await runtime.resolver(registry).apply_resolution(
                conflict_id, to_target=to_target, to_source=to_source
            )
        finally:
            await registry.aclose()

    try:
        resolution = asyncio.run(_apply())
    except SyncError as e:
        _fail(str(e))

    result = resolution.application_result or {}
    for side in ("target", "source"):
        if side not in result:
            continue
        if "error" in result[side]:
            console.print(f"[red]✗ {side}: {result[side]['error']}[/red]")
        else:
            console.print(f"[green]✓ {side}: updated {', '.join(result[side]['updated'])}[/green]")
    if any("error" in result[side] for side in ("target", "source") if side in result):
        raise typer.Exit(code=1)


@conflicts_app.command("history")
def conflicts_history(
    conflict_id: int = typer.Argument(..., help="Conflict ID"),
    config_dir: Optional[Path] = typer.Option(None, "--config-dir", help=CONFIG_DIR_HELP),
) -> None:
    """Show the resolution audit trail of a conflict."""
    runtime = _open(config_dir)
    try:
        history = runtime.resolver().get_resolution_history(conflict_id)
    except SyncError as e:
        _fail(str(e))

    if not history:
        console.print(f"[yellow]Conflict {conflict_id} has no resolutions yet.[/yellow]")
        return

    table = Table(title=f"Conflict {conflict_id} History")
    table.add_column("When", style="cyan")
    table.add_column("Strategy", style="magenta")
    table.add_column("Previous")
    table.add_column("Resolved")
    table.add_column("By")
    table.add_column("Applied")
    table.add_column("Rationale")
    for row in history:
        applied = [side for side, flag in (("target", row.applied_to_target), ("source", row.applied_to_source)) if flag]
        table.add_row(
            row.resolved_at.strftime("%Y-%m-%d %H:%M:%S"),
            row.strategy,
            _format_value(row.previous_value),
            _format_value(row.resolved_value),
            row.resolved_by or "-",
            ", ".join(applied) or "-",
            row.rationale or "-",
        )
    console.print(table)


@mappings_app.command("show")
def mappings_show(
    config_id: int = typer.Argument(..., help="Sync configuration ID"),
    config_dir: Optional[Path] = typer.Option(None, "--config-dir", help=CONFIG_DIR_HELP),
) -> None:
    """Show the type, field and status mappings of a configuration."""
    runtime = _open(config_dir)
    try:
        rules = runtime.mapping_engine.load_mappings(config_id)
    except SyncError as e:
        _fail(str(e))

    for rule in rules.values():
        table = Table(title=f"{rule.source_type} -> {rule.target_type}")
        table.add_column("Source", style="cyan")
        table.add_column("Target", style="magenta")
        table.add_column("Transformation")
        table.add_column("Reverse")
        for field in rule.fields:
            table.add_row(
                field.source_field or f"= {_format_value(field.constant_value)}",
                field.target_field,
                _format_value(field.transformation),
                _format_value(field.reverse_transformation),
            )
        console.print(table)
        if rule.statuses:
            console.print("  Statuses:")
            for source_status, target_status in rule.statuses.items():
                console.print(f"    {source_status} -> {target_status}")


@mappings_app.command("import")
def mappings_import(
    config_id: int = typer.Argument(..., help="Sync configuration ID"),
    file: Path = typer.Argument(..., help="YAML mapping definition with a type_mappings list."),
    config_dir: Optional[Path] = typer.Option(None, "--config-dir", help=CONFIG_DIR_HELP),
) -> None:
    """Import type mappings from a YAML definition."""
    runtime = _open(config_dir)
    try:
        definition = runtime.storage.load_mapping_definition(file)
    except FileNotFoundError:
        _fail(f"File not found: {file}")
    try:
        imported = runtime.repository.import_mapping_definition(config_id, definition)
    except (SyncError, KeyError) as e:
        _fail(str(e))
    console.print(f"[green]✓ Imported {len(imported)} type mappings into configuration {config_id}[/green]")


@mappings_app.command("validate")
def mappings_validate(
    config_id: int = typer.Argument(..., help="Sync configuration ID"),
    config_dir: Optional[Path] = typer.Option(None, "--config-dir", help=CONFIG_DIR_HELP),
) -> None:
    """Check mappings for unknown transformations and type mismatches."""
    runtime = _open(config_dir)
    try:
        report = runtime.mapping_engine.validate_mappings(config_id)
    except SyncError as e:
        _fail(str(e))

    for issue in report.issues:
        color = "red" if issue.level == "error" else "yellow"
        location = f"{issue.source_type}.{issue.field}" if issue.field else issue.source_type
        console.print(f"[{color}]{issue.level}: {location}: {issue.message}[/{color}]")

    if not report.valid:
        raise typer.Exit(code=1)
    console.print("[green]✓ Mappings are valid[/green]")


@mappings_app.command("suggest")
def mappings_suggest(
    config_id: int = typer.Argument(..., help="Sync configuration ID"),
    source_type: str = typer.Argument(..., help="Source work item type"),
    target_type: str = typer.Argument(..., help="Target work item type"),
    config_dir: Optional[Path] = typer.Option(None, "--config-dir", help=CONFIG_DIR_HELP),
) -> None:
    """Suggest field and status mappings for a type pair."""
    runtime = _open(config_dir)
    try:
        with session_scope(runtime.session_factory) as session:
            config = session.get(SyncConfiguration, config_id)
            if config is None:
                _fail(f"Sync configuration {config_id} not found")
            suggestions = suggest_mappings(
                session,
                config.source_connector_id,
                source_type,
                config.target_connector_id,
                target_type,
            )
    except SyncError as e:
        _fail(str(e))

    table = Table(title=f"Suggested mappings {source_type} -> {target_type}")
    table.add_column("Source", style="cyan")
    table.add_column("Target", style="magenta")
    table.add_column("Confidence")
    table.add_column("Note")
    for field in suggestions.fields:
        table.add_row(
            field.source_field,
            field.target_field or "-",
            f"{field.confidence:.1f}",
            "needs transformation" if field.requires_transformation else "",
        )
    for status_suggestion in suggestions.statuses:
        table.add_row(
            f"status {status_suggestion.source_status}",
            status_suggestion.target_status or "-",
            f"{status_suggestion.confidence:.1f}",
            "",
        )
    console.print(table)


@app.command()
def version() -> None:
    """Show version information."""
    console.print(f"Work Item Synchronizer v{__version__}")


def main() -> None:
    """Main entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        console.print(f"[red]Unexpected error: {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
