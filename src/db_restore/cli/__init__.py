"""CLI for backups and the restore approval workflow.

Usage:
    db-restore profiles
    db-restore profiles --use local
    db-restore backups
    db-restore backup --label "before migration 113"
    db-restore delete bk_20261001_020000_ab12cd34 --yes
    db-restore request bk_20261001_020000_ab12cd34 --by alice
    db-restore request bk_20261001_020000_ab12cd34 --tenant T1 --by alice
    db-restore validate bk_20261001_020000_ab12cd34 --tenant T1
    db-restore approve <operation-id> --by bob
    db-restore reject <operation-id> --reason "wrong backup"
    db-restore run <operation-id> --yes
    db-restore status <operation-id>
    db-restore list --status in_progress

Commands:
    profiles  - List profiles, or select one with --use
    backups   - List backups in the backup directory
    backup    - Take a manual backup of the current profile
    delete    - Delete a backup from the backup directory
    request   - Request a full or tenant-scoped restore
    approve   - Approve a pending restore request
    reject    - Reject a pending restore request
    validate  - Check a backup against the live schema (read-only)
    run       - Execute an approved restore
    status    - Show one restore operation
    list      - List restore operations
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.prompt import Confirm
from rich.table import Table

from db_restore.backup.models import RestoreOperation, RestoreStatus, TenantRestoreValidation
from db_restore.backup.reader import BackupNotFoundError, BackupStore
from db_restore.config.loader import load_db_config
from db_restore.config.models import DatabaseConfig
from db_restore.factory import (
    ProfileNotFoundError,
    RestoreServices,
    open_services,
    read_profile_lock,
    write_profile_lock,
)
from db_restore.restore.errors import RestoreError

console = Console()

STATUS_STYLES = {
    RestoreStatus.PENDING_APPROVAL: "yellow",
    RestoreStatus.APPROVED: "cyan",
    RestoreStatus.REJECTED: "dim",
    RestoreStatus.IN_PROGRESS: "bold blue",
    RestoreStatus.COMPLETED: "green",
    RestoreStatus.FAILED: "bold red",
}

# Errors reported as a one-line message instead of a traceback
EXPECTED_ERRORS = (
    RestoreError,
    BackupNotFoundError,
    ProfileNotFoundError,
    FileNotFoundError,
)


# ============================================================================
# Helpers
# ============================================================================


def _load_config(args: argparse.Namespace) -> DatabaseConfig:
    config_path = Path(args.config) if getattr(args, "config", None) else None
    return load_db_config(config_path)


async def _open(args: argparse.Namespace) -> RestoreServices:
    return await open_services(
        profile_name=getattr(args, "profile", None),
        env_prefix=getattr(args, "env_prefix", ""),
        config=_load_config(args),
    )


def _status_text(status: RestoreStatus) -> str:
    style = STATUS_STYLES.get(status, "")
    return f"[{style}]{status.value}[/{style}]" if style else status.value


def _print_operation(operation: RestoreOperation) -> None:
    table = Table(title=f"Restore {operation.id}", show_header=False)
    table.add_column("Key", style="dim")
    table.add_column("Value")

    table.add_row("Status", _status_text(operation.status))
    table.add_row("Backup", operation.backup_id)
    table.add_row("Scope", f"tenant {operation.scope_tenant_id}" if operation.is_tenant_scoped else "full database")
    if operation.requested_by:
        table.add_row("Requested by", operation.requested_by)
    if operation.approved_by:
        table.add_row("Approved by", operation.approved_by)
    if operation.rejected_reason:
        table.add_row("Rejected", operation.rejected_reason)
    if operation.safety_backup_id:
        table.add_row("Safety backup", operation.safety_backup_id)
    if operation.status == RestoreStatus.COMPLETED:
        table.add_row("Restored", f"{operation.tables_restored} tables, {operation.rows_restored} rows")
    if operation.error_message:
        table.add_row("Error", f"[red]{operation.error_message}[/red]")

    phase = operation.metadata.get("phase")
    if phase and not operation.is_terminal:
        detail = phase
        if operation.metadata.get("current_table"):
            detail += f" ({operation.metadata['current_table']})"
        table.add_row("Phase", detail)

    for label, value in (
        ("Created", operation.created_at),
        ("Started", operation.started_at),
        ("Finished", operation.completed_at),
    ):
        if value:
            table.add_row(label, value.isoformat(timespec="seconds"))

    console.print(table)


# ============================================================================
# Async command implementations
# ============================================================================


async def _async_backup(args: argparse.Namespace) -> int:
    services = await _open(args)
    try:
        console.print("Creating backup...", style="dim")
        ref = await services.writer.create(backup_type="manual", label=args.label)
        console.print(f"[bold green]v[/bold green] Backup created: [bold cyan]{ref.backup_id}[/bold cyan]")
        return 0
    finally:
        await services.close()


async def _async_request(args: argparse.Namespace) -> int:
    services = await _open(args)
    try:
        if not services.backups.exists(args.backup_id):
            raise BackupNotFoundError(f"Backup not found: {args.backup_id}")
        operation = await services.operations.create(
            args.backup_id, scope_tenant_id=args.tenant, requested_by=args.by
        )
        console.print(f"[bold green]v[/bold green] Restore requested: [bold cyan]{operation.id}[/bold cyan]")
        console.print(f"[dim]Awaiting approval:[/dim] [cyan]db-restore approve {operation.id} --by <name>[/cyan]")
        return 0
    finally:
        await services.close()


async def _async_approve(args: argparse.Namespace) -> int:
    services = await _open(args)
    try:
        operation = await services.operations.approve(args.operation_id, approved_by=args.by)
        console.print(f"[bold green]v[/bold green] Approved {operation.id}")
        return 0
    finally:
        await services.close()


async def _async_reject(args: argparse.Namespace) -> int:
    services = await _open(args)
    try:
        operation = await services.operations.reject(
            args.operation_id, reason=args.reason, rejected_by=args.by
        )
        console.print(f"[bold yellow]-[/bold yellow] Rejected {operation.id}")
        return 0
    finally:
        await services.close()


async def _async_validate(args: argparse.Namespace) -> int:
    services = await _open(args)
    try:
        validation = await services.orchestrator.preview(args.backup_id, scope_tenant_id=args.tenant)
    finally:
        await services.close()

    console.print()
    console.print(validation.format_report())

    if isinstance(validation, TenantRestoreValidation) and validation.tenant_row_counts:
        console.print()
        counts = Table(title=f"Rows for tenant {args.tenant}", show_header=True, header_style="bold")
        counts.add_column("Table", style="dim")
        counts.add_column("Rows", justify="right")
        for table_name in validation.tenant_tables:
            counts.add_row(table_name, str(validation.tenant_row_counts[table_name]))
        counts.add_row("[bold]Total[/bold]", f"[bold]{validation.tenant_row_count}[/bold]")
        console.print(counts)

    return 0 if validation.compatible else 1


async def _async_run(args: argparse.Namespace) -> int:
    services = await _open(args)
    try:
        operation = await services.operations.require(args.operation_id)
        _print_operation(operation)

        if not args.yes:
            console.print()
            if operation.is_tenant_scoped:
                console.print(
                    f"[yellow]All rows for tenant {operation.scope_tenant_id} will be replaced.[/yellow]"
                )
            else:
                console.print("[bold yellow]Every non-system table will be replaced.[/bold yellow]")
            if not Confirm.ask("Continue?", default=False, console=console):
                console.print("Cancelled.")
                return 0

        console.print("Restoring...", style="dim")
        result = await services.orchestrator.execute(args.operation_id)
    finally:
        await services.close()

    console.print()
    console.print(
        f"[bold green]v[/bold green] Restore complete: "
        f"{result.tables_restored} tables, {result.rows_restored} rows"
    )
    console.print(f"  Safety backup: [cyan]{result.safety_backup_id}[/cyan]")
    for warning in result.warnings:
        console.print(f"  [yellow]! {warning}[/yellow]")
    return 0


async def _async_status(args: argparse.Namespace) -> int:
    services = await _open(args)
    try:
        operation = await services.operations.require(args.operation_id)
    finally:
        await services.close()

    _print_operation(operation)
    return 1 if operation.status == RestoreStatus.FAILED else 0


async def _async_list(args: argparse.Namespace) -> int:
    status = RestoreStatus(args.status) if args.status else None
    services = await _open(args)
    try:
        operations = await services.operations.list_operations(status)
    finally:
        await services.close()

    if not operations:
        console.print("[dim]No restore operations.[/dim]")
        return 0

    table = Table(title="Restore Operations", show_header=True, header_style="bold")
    table.add_column("ID", style="dim")
    table.add_column("Status")
    table.add_column("Backup")
    table.add_column("Scope")
    table.add_column("Requested by")

    for operation in operations:
        table.add_row(
            operation.id,
            _status_text(operation.status),
            operation.backup_id,
            operation.scope_tenant_id or "full",
            operation.requested_by or "",
        )

    console.print(table)
    return 0


def _run_async(coro_fn, args: argparse.Namespace) -> int:
    try:
        return asyncio.run(coro_fn(args))
    except EXPECTED_ERRORS as e:
        console.print(f"[bold red]x[/bold red] {e}")
        return 1


# ============================================================================
# Sync command wrappers (cmd_profiles, cmd_backups read local files only)
# ============================================================================


def cmd_profiles(args: argparse.Namespace) -> int:
    """List available profiles from db.toml, or select one with ``--use``.

    Reads only local TOML config -- no database calls.

    Returns:
        0 on success, 1 if db.toml or the profile is not found.
    """
    try:
        config = _load_config(args)
    except FileNotFoundError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    if args.use:
        if args.use not in config.profiles:
            available = ", ".join(config.profiles.keys())
            console.print(f"[red]Error: Profile '{args.use}' not found. Available: {available}[/red]")
            return 1
        write_profile_lock(args.use)
        console.print(f"[bold green]v[/bold green] Using profile: [bold cyan]{args.use}[/bold cyan]")
        return 0

    current = read_profile_lock()

    table = Table(title="Database Profiles", show_header=True, header_style="bold")
    table.add_column("", width=2)
    table.add_column("Profile")
    table.add_column("Provider")
    table.add_column("Description")

    for name, profile in config.profiles.items():
        marker = "[bold green]*[/bold green]" if name == current else " "
        name_style = "bold cyan" if name == current else ""
        table.add_row(
            marker,
            f"[{name_style}]{name}[/{name_style}]" if name_style else name,
            profile.provider,
            profile.description or "",
        )

    console.print(table)

    if current:
        console.print("\n[bold green]*[/bold green] = current profile")

    return 0


def cmd_backups(args: argparse.Namespace) -> int:
    """List backups in the configured backup directory, newest first."""
    try:
        config = _load_config(args)
    except FileNotFoundError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    manifests = BackupStore(config.backups.directory).list_backups()
    if not manifests:
        console.print(f"[dim]No backups in {config.backups.directory}[/dim]")
        return 0

    table = Table(title="Backups", show_header=True, header_style="bold")
    table.add_column("ID")
    table.add_column("Created")
    table.add_column("Type")
    table.add_column("Schema", justify="right")
    table.add_column("Rows", justify="right")
    table.add_column("Label")

    for manifest in manifests:
        table.add_row(
            manifest.backup_id,
            manifest.created_at.isoformat(timespec="seconds"),
            manifest.backup_type,
            manifest.schema_version,
            str(sum(manifest.table_counts.values())),
            manifest.label or "",
        )

    console.print(table)
    return 0


def cmd_delete(args: argparse.Namespace) -> int:
    """Delete one backup from the configured backup directory.

    Returns:
        0 on success or when cancelled, 1 if the backup does not exist.
    """
    try:
        config = _load_config(args)
    except FileNotFoundError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    store = BackupStore(config.backups.directory)
    if not args.yes:
        if not Confirm.ask(f"Delete backup {args.backup_id}?", default=False, console=console):
            console.print("Cancelled.")
            return 0

    try:
        store.delete(args.backup_id)
    except BackupNotFoundError as e:
        console.print(f"[bold red]x[/bold red] {e}")
        return 1

    console.print(f"[bold green]v[/bold green] Deleted backup [cyan]{args.backup_id}[/cyan]")
    return 0


def cmd_backup(args: argparse.Namespace) -> int:
    return _run_async(_async_backup, args)


def cmd_request(args: argparse.Namespace) -> int:
    return _run_async(_async_request, args)


def cmd_approve(args: argparse.Namespace) -> int:
    return _run_async(_async_approve, args)


def cmd_reject(args: argparse.Namespace) -> int:
    return _run_async(_async_reject, args)


def cmd_validate(args: argparse.Namespace) -> int:
    """Check a backup against the live schema.

    Returns:
        0 if compatible, 1 otherwise.
    """
    return _run_async(_async_validate, args)


def cmd_run(args: argparse.Namespace) -> int:
    """Execute an approved restore.

    Returns:
        0 on success, 1 on failure (the operation is marked ``failed``).
    """
    return _run_async(_async_run, args)


def cmd_status(args: argparse.Namespace) -> int:
    return _run_async(_async_status, args)


def cmd_list(args: argparse.Namespace) -> int:
    return _run_async(_async_list, args)


# ============================================================================
# Main entry point
# ============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="db-restore",
        description="Disaster-recovery backups and restores for PostgreSQL",
    )

    parser.add_argument(
        "--config",
        default=None,
        help="Path to db.toml (default: $DB_RESTORE_CONFIG or ./db.toml)",
    )
    parser.add_argument(
        "--profile",
        default=None,
        help="Profile to use instead of DB_PROFILE / .db-profile",
    )
    parser.add_argument(
        "--env-prefix",
        default="",
        help=(
            "Prefix for environment variable lookup "
            "(e.g., --env-prefix APP_ reads APP_DB_PROFILE)"
        ),
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Show restore progress logging",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    p_profiles = subparsers.add_parser("profiles", help="List available profiles")
    p_profiles.add_argument("--use", default=None, help="Select this profile for later commands")
    p_profiles.set_defaults(func=cmd_profiles)

    p_backups = subparsers.add_parser("backups", help="List backups")
    p_backups.set_defaults(func=cmd_backups)

    p_backup = subparsers.add_parser("backup", help="Take a manual backup")
    p_backup.add_argument("--label", default=None, help="Label stored in the manifest")
    p_backup.set_defaults(func=cmd_backup)

    p_delete = subparsers.add_parser("delete", help="Delete a backup")
    p_delete.add_argument("backup_id")
    p_delete.add_argument("--yes", "-y", action="store_true", help="Skip the confirmation prompt")
    p_delete.set_defaults(func=cmd_delete)

    p_request = subparsers.add_parser("request", help="Request a restore")
    p_request.add_argument("backup_id", help="Backup to restore from")
    p_request.add_argument("--tenant", default=None, help="Restore only this tenant's rows")
    p_request.add_argument("--by", default=None, help="Who is requesting")
    p_request.set_defaults(func=cmd_request)

    p_approve = subparsers.add_parser("approve", help="Approve a pending restore")
    p_approve.add_argument("operation_id")
    p_approve.add_argument("--by", required=True, help="Who is approving")
    p_approve.set_defaults(func=cmd_approve)

    p_reject = subparsers.add_parser("reject", help="Reject a pending restore")
    p_reject.add_argument("operation_id")
    p_reject.add_argument("--reason", required=True, help="Why the restore was rejected")
    p_reject.add_argument("--by", default=None, help="Who is rejecting")
    p_reject.set_defaults(func=cmd_reject)

    p_validate = subparsers.add_parser("validate", help="Check a backup against the live schema")
    p_validate.add_argument("backup_id")
    p_validate.add_argument("--tenant", default=None, help="Validate a tenant-scoped restore")
    p_validate.set_defaults(func=cmd_validate)

    p_run = subparsers.add_parser("run", help="Execute an approved restore")
    p_run.add_argument("operation_id")
    p_run.add_argument("--yes", "-y", action="store_true", help="Skip the confirmation prompt")
    p_run.set_defaults(func=cmd_run)

    p_status = subparsers.add_parser("status", help="Show a restore operation")
    p_status.add_argument("operation_id")
    p_status.set_defaults(func=cmd_status)

    p_list = subparsers.add_parser("list", help="List restore operations")
    p_list.add_argument(
        "--status",
        default=None,
        choices=[s.value for s in RestoreStatus],
        help="Only operations in this status",
    )
    p_list.set_defaults(func=cmd_list)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(
            level=logging.INFO,
            format="%(message)s",
            handlers=[RichHandler(console=console, show_path=False)],
        )

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
