"""Command Line Interface for the SurrealDB backup service"""

import json
import logging
from typing import Any, cast

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .core.artifact_store import ArtifactStore, Slot
from .core.backup_engine import BackupEngine, create_store
from .core.config_manager import ConfigManager
from .core.errors import BackupError, UsageError
from .core.logging_config import setup_logging
from .core.restore_engine import RestoreEngine, RestoreMode
from .utils.health import HEALTHY, HealthReporter, human_size
from .utils.log_parser import BackupLogParser
from .utils.scheduler import BackupScheduler, CrontabManager, schedule_entries, schedule_timezone
from .web.health_server import run_health_server, start_health_server_thread

console = Console()

# Lazy-initialized components (created on first access to avoid startup cost)
_components: dict[str, Any] = {}


def _get_config() -> ConfigManager:
    if "config" not in _components:
        _components["config"] = ConfigManager(_components.get("config_path"))
    return cast("ConfigManager", _components["config"])


def _get_store() -> ArtifactStore:
    if "store" not in _components:
        _components["store"] = create_store(_get_config())
    return cast("ArtifactStore", _components["store"])


def _get_backup_engine() -> BackupEngine:
    if "backup_engine" not in _components:
        _components["backup_engine"] = BackupEngine(_get_config(), store=_get_store())
    return cast("BackupEngine", _components["backup_engine"])


def _get_restore_engine() -> RestoreEngine:
    if "restore_engine" not in _components:
        _components["restore_engine"] = RestoreEngine(_get_config(), store=_get_store())
    return cast("RestoreEngine", _components["restore_engine"])


def _get_health_reporter() -> HealthReporter:
    if "health_reporter" not in _components:
        _components["health_reporter"] = HealthReporter.from_config(_get_config(), store=_get_store())
    return cast("HealthReporter", _components["health_reporter"])


def _get_crontab() -> CrontabManager:
    if "crontab" not in _components:
        _components["crontab"] = CrontabManager()
    return cast("CrontabManager", _components["crontab"])


def _fail(ctx: click.Context, error: BackupError) -> None:
    console.print(f"[red]✗[/red] {escape(error.message)}")
    ctx.exit(error.exit_code)


def _parse_slot(ctx: click.Context, value: str) -> Slot:
    try:
        return Slot.parse(value)
    except UsageError as e:
        _fail(ctx, e)
        raise  # unreachable, ctx.exit raises


@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    envvar="SURREAL_BACKUP_CONFIG",
    help="Path to settings.yaml",
)
@click.option("--log-level", default=None, help="Override logging level (DEBUG, INFO, WARNING, ERROR)")
def cli(config_path, log_level):
    """SurrealDB rolling backup - CLI Interface"""
    if _components.get("config_path") != config_path:
        _components.clear()
    _components["config_path"] = config_path

    config = _get_config()
    setup_logging(
        config.get_storage_paths()["logs"],
        level=log_level or config.get_setting("logging.level", "INFO"),
        console=bool(config.get_setting("logging.console", True)),
    )


@cli.group()
def backup():
    """Run backups and inspect the two slots"""


@backup.command("run")
@click.argument("slot")
@click.pass_context
def backup_run(ctx, slot):
    """Back up the database into SLOT (nightly or weekly)"""
    parsed = _parse_slot(ctx, slot)
    console.print(f"[bold cyan]Running {parsed.value} backup...[/bold cyan]")

    result = _get_backup_engine().run(parsed)

    if result.ok:
        console.print(f"[green]✓[/green] {escape(result.message)}")
    else:
        console.print(f"[red]✗[/red] {escape(result.message)}")
    ctx.exit(result.exit_code)


@backup.command("status")
def backup_status():
    """Show the artifact in each slot"""
    table = Table(title="SurrealDB Backups", show_header=True, header_style="bold magenta")
    table.add_column("Slot", style="cyan", width=10)
    table.add_column("File", style="white")
    table.add_column("Size", justify="right")
    table.add_column("Modified", style="green")
    table.add_column("Checksum", style="dim")

    for slot, meta in _get_store().all_metadata().items():
        if meta.exists:
            table.add_row(
                slot.value,
                meta.path.name,
                human_size(meta.size_bytes),
                meta.modified_at.strftime("%Y-%m-%d %H:%M:%S %Z") if meta.modified_at else "-",
                (meta.checksum_sha256 or "-")[:12],
            )
        else:
            table.add_row(slot.value, meta.path.name, "-", "[yellow]No backup[/yellow]", "-")

    console.print(table)


def _confirm_restore(warning: str) -> bool:
    console.print(f"[bold yellow]{warning}[/bold yellow]\n")
    answer = click.prompt("Are you sure you want to continue? (yes/no)", default="no", show_default=False)
    return answer.strip().lower() == "yes"


@cli.command()
@click.argument("slot")
@click.option("--force", "-f", is_flag=True, help="Skip confirmation prompt")
@click.option("--verify", "-v", is_flag=True, help="Verify backup integrity only (don't restore)")
@click.pass_context
def restore(ctx, slot, force, verify):
    """Restore SurrealDB from the SLOT backup (nightly or weekly)"""
    if force and verify:
        _fail(ctx, UsageError("--force and --verify cannot be used together"))

    parsed = _parse_slot(ctx, slot)
    if verify:
        mode = RestoreMode.VERIFY
        console.print(f"[bold cyan]Verifying {parsed.value} backup...[/bold cyan]")
    else:
        mode = RestoreMode.FORCE if force else RestoreMode.INTERACTIVE
        console.print(f"[bold cyan]Restoring from {parsed.value} backup...[/bold cyan]")

    result = _get_restore_engine().restore(parsed, mode, confirm=_confirm_restore)

    if result.ok:
        console.print(f"[green]✓[/green] {escape(result.message)}")
    else:
        console.print(f"[red]✗[/red] {escape(result.message)}")
    ctx.exit(result.exit_code)


@cli.command()
@click.pass_context
def health(ctx):
    """Print the health report once (exit 1 when degraded)"""
    status = _get_health_reporter().status()
    console.print_json(json.dumps(status))
    ctx.exit(0 if status["status"] == HEALTHY else 1)


@cli.command("health-server")
@click.option("--host", default=None, help="Bind address (default from settings)")
@click.option("--port", type=int, default=None, help="Port (default 8080 or HEALTH_CHECK_PORT)")
def health_server(host, port):
    """Serve GET /health"""
    config = _get_config()
    run_health_server(
        _get_health_reporter(),
        host=host or config.get_setting("health.host", "0.0.0.0"),
        port=port or int(config.get_setting("health.port", 8080)),
    )


def _build_scheduler() -> BackupScheduler:
    config = _get_config()
    return BackupScheduler(
        _get_backup_engine(),
        schedule_entries(config),
        timezone=schedule_timezone(config),
    )


@cli.command()
def scheduler():
    """Run the nightly/weekly schedule in the foreground"""
    backup_scheduler = _build_scheduler()
    for entry in backup_scheduler.entries:
        console.print(f"[cyan]{entry.slot.value}[/cyan]: {entry.cron} ({_get_crontab().parse_cron_schedule(entry.cron)})")

    try:
        backup_scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        backup_scheduler.shutdown()


@cli.command()
@click.option("--host", default=None, help="Health server bind address")
@click.option("--port", type=int, default=None, help="Health server port")
def serve(host, port):
    """Run the health server and the scheduler together"""
    config = _get_config()
    start_health_server_thread(
        _get_health_reporter(),
        host=host or config.get_setting("health.host", "0.0.0.0"),
        port=port or int(config.get_setting("health.port", 8080)),
    )

    _get_store().clean_temp()
    backup_scheduler = _build_scheduler()
    try:
        backup_scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logging.getLogger(__name__).info("Shutting down")
        backup_scheduler.shutdown()


@cli.command()
@click.option("--list", "list_schedules", is_flag=True, help="List installed backup schedules")
@click.option("--install", is_flag=True, help="Install the nightly and weekly crontab entries")
@click.option(
    "--remove", "remove_slot", type=click.Choice(["nightly", "weekly", "all"]), help="Remove the entries for a slot"
)
def schedule(list_schedules, install, remove_slot):
    """Manage host crontab entries (for installs without 'serve')"""
    crontab = _get_crontab()

    if list_schedules:
        console.print("[bold cyan]Current Backup Schedules[/bold cyan]\n")
        schedules = crontab.list_backup_schedules()

        if not schedules:
            console.print("[yellow]No backup schedules configured[/yellow]")
            console.print("[dim]Tip: Use 'surreal-backup schedule --install' to add the default schedules[/dim]")
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Slot", style="cyan")
        table.add_column("Schedule", style="cyan")
        table.add_column("Command", style="white")
        table.add_column("When", style="green")
        table.add_column("Description", style="yellow")

        for sched in schedules:
            table.add_row(
                sched["slot"],
                sched["schedule"],
                sched["command"][:50] + "..." if len(sched["command"]) > 50 else sched["command"],
                sched["human_readable"],
                sched["comment"],
            )

        console.print(table)

    elif install:
        console.print("[bold cyan]Installing backup schedules...[/bold cyan]")
        success, msg = crontab.install_default_schedules(
            schedule_entries(_get_config()), _components.get("config_path")
        )
        if success:
            console.print(f"[green]✓[/green] {msg}")
        else:
            console.print(f"[red]✗[/red] {msg}")

    elif remove_slot:
        console.print(f"[yellow]Removing {remove_slot} backup entries[/yellow]")
        success, msg = crontab.remove_slot_entries(None if remove_slot == "all" else Slot(remove_slot))
        if success:
            console.print(f"[green]✓[/green] {msg}")
        else:
            console.print(f"[red]✗[/red] {msg}")

    else:
        console.print("[yellow]Please specify --list, --install or --remove SLOT[/yellow]")


@cli.command()
@click.option("--lines", "-n", default=20, help="Number of records to display")
@click.option("--operation", type=click.Choice(["backup", "restore", "verify", "keyvault", "health_check"]))
@click.option("--slot", help="Only records for this slot")
@click.option("--level", help="Only records at this level (info, warning, error)")
def logs(lines, operation, slot, level):
    """Show recent backup log records"""
    log_file = _get_config().get_storage_paths()["logs"] / "backup.log"
    records = BackupLogParser(log_file).read_records(lines, operation=operation, slot=slot, level=level)

    if not records:
        console.print(f"[yellow]No log records found in {log_file}[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Time", style="dim")
    table.add_column("Level")
    table.add_column("Event", style="cyan")
    table.add_column("Slot")
    table.add_column("Status")
    table.add_column("Details", style="white")

    level_styles = {"error": "red", "warning": "yellow", "info": "green"}
    for record in records:
        record_level = str(record.get("level", ""))
        style = level_styles.get(record_level, "white")
        details = record.get("error_message") or ""
        if not details and record.get("compressed_size_bytes"):
            details = f"{human_size(record['compressed_size_bytes'])} in {record.get('duration_seconds', 0)}s"
        table.add_row(
            str(record.get("timestamp", ""))[:19],
            f"[{style}]{record_level}[/{style}]",
            str(record.get("message", "")),
            str(record.get("slot") or ""),
            str(record.get("status") or ""),
            str(details)[:60],
        )

    console.print(table)


def main() -> None:
    cli(prog_name="surreal-backup")


if __name__ == "__main__":
    main()
