"""CLI for snapshot export, inspection and restore.

Usage:
    DB_PROFILE=local isp-backup connect
    isp-backup status
    isp-backup profiles
    isp-backup export
    isp-backup inspect backups/full_backup_2025-01-01_06-00-00.csv
    isp-backup restore backups/full_backup_2025-01-01_06-00-00.csv --clean --yes
    isp-backup restore-backup <backup-id> --clean --yes
    isp-backup backups
    isp-backup download-url <backup-id>
    isp-backup delete <backup-id> --yes

Commands:
    connect       - Check the store is reachable and lock in the profile
    status        - Show the active profile and where it came from
    profiles      - List available profiles
    export        - Write a full snapshot to the blob store
    inspect       - Parse and validate a snapshot file
    restore       - Restore a snapshot file into the store
    restore-backup - Restore a stored backup by its log ID
    backups       - List recorded backups, newest first
    download-url  - Print a time-limited download URL for a backup
    delete        - Delete a backup file and its log entry
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from isp_backup.adapters import DatabaseClient
from isp_backup.config import BackupSettings, DatabaseProfile, load_db_config
from isp_backup.factory import (
    ProfileNotFoundError,
    connect,
    get_active_profile,
    get_active_profile_name,
    get_adapter,
    get_blob_store,
    get_hasher,
    read_profile_lock,
    restore_options,
)
from isp_backup.snapshot.ordering import RESTORE_ORDER
from isp_backup.snapshot.parser import validate_snapshot
from isp_backup.snapshot.service import (
    delete_backup,
    get_backup,
    get_download_url,
    list_backups,
    restore_backup,
    restore_from_text,
    run_backup,
)

console = Console()

_SETUP_ERRORS = (ProfileNotFoundError, KeyError, FileNotFoundError, ValueError)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


def _error(message: object) -> int:
    console.print(f"[bold red]x[/bold red] {message}")
    return 1


def _confirm(prompt: str) -> bool:
    response = console.input(f"{prompt} [y/N] ")
    return response.strip().lower() in ("y", "yes")


async def _open(
    env_prefix: str,
) -> tuple[str, DatabaseClient, BackupSettings, DatabaseProfile]:
    """Resolve the active profile and open its adapter."""
    profile_name, profile = get_active_profile(env_prefix)
    settings = load_db_config().backup
    adapter = await get_adapter(profile_name=profile_name)
    return profile_name, adapter, settings, profile


def _report_table(details: dict[str, dict]) -> Table:
    table = Table(title="Restore Results", show_header=True, header_style="bold")
    table.add_column("Table")
    table.add_column("Restored", justify="right")
    table.add_column("Skipped", justify="right")
    table.add_column("Errors", justify="right")

    for name, outcome in details.items():
        errors = len(outcome["errors"])
        table.add_row(
            name,
            str(outcome["success"]),
            str(outcome["skipped"]),
            f"[red]{errors}[/red]" if errors else "0",
        )
    return table


# ============================================================================
# Async command implementations
# ============================================================================


def _print_restore(response: dict) -> int:
    if not response["success"]:
        return _error(f"Restore failed: {response['error']}")

    console.print(_report_table(response["details"]))
    for name, outcome in response["details"].items():
        for message in outcome["errors"]:
            console.print(f"  [red]{name}[/red]: {message}")

    style = "yellow" if response["total_errors"] else "green"
    console.print(
        f"\n[bold {style}]v[/bold {style}] {response['total_restored']} restored, "
        f"{response['total_errors']} errors"
    )
    return 0


async def _async_connect(args: argparse.Namespace) -> int:
    previous = read_profile_lock()
    console.print("Connecting to store...", style="dim")

    try:
        profile_name = await connect(env_prefix=args.env_prefix)
    except _SETUP_ERRORS as e:
        return _error(e)
    except Exception as e:
        return _error(f"Failed to connect: {e}")

    console.print(f"[bold green]v[/bold green] Connected: [bold cyan]{profile_name}[/bold cyan]")
    if previous and previous != profile_name:
        console.print(f"[dim](was {previous})[/dim]")
    return 0


async def _async_export(args: argparse.Namespace) -> int:
    try:
        _, adapter, settings, profile = await _open(args.env_prefix)
        blob_store = get_blob_store(settings, profile)
    except _SETUP_ERRORS as e:
        return _error(e)

    try:
        console.print("Exporting snapshot...", style="dim")
        result = await run_backup(adapter, blob_store)
    finally:
        await adapter.close()

    if not result["success"]:
        return _error(f"Backup failed: {result['error']}")

    table = Table(title="Exported Sections", show_header=True, header_style="bold")
    table.add_column("Section")
    table.add_column("Records", justify="right")
    for name, count in result["tables"].items():
        table.add_row(name, str(count))
    console.print(table)

    console.print(
        f"\n[bold green]v[/bold green] {result['file_name']}: "
        f"{result['record_count']} records, {result['file_size_bytes']} bytes"
    )
    return 0


async def _async_restore(args: argparse.Namespace) -> int:
    """Restore a snapshot file.

    Returns:
        0 when the restore ran (row errors are reported, not fatal),
        1 when it was refused or failed.
    """
    path = Path(args.snapshot_file)
    try:
        text = path.read_text(encoding="utf-8")
    except (FileNotFoundError, UnicodeDecodeError) as e:
        return _error(e)

    if args.clean and not args.yes:
        console.print(f"[yellow]This will DELETE all business data before restoring {path.name}.[/yellow]")
        if not _confirm("Continue?"):
            console.print("Cancelled.")
            return 0

    try:
        profile_name, adapter, settings, _ = await _open(args.env_prefix)
    except _SETUP_ERRORS as e:
        return _error(e)

    try:
        console.print(
            f"Restoring into [bold cyan]{profile_name}[/bold cyan]...", style="dim"
        )
        response = await restore_from_text(
            adapter,
            text,
            args.clean,
            get_hasher(),
            restore_options(settings, skips_as_errors=args.skips_as_errors),
            store_key=profile_name,
        )
    finally:
        await adapter.close()

    return _print_restore(response)


async def _async_restore_backup(args: argparse.Namespace) -> int:
    if args.clean and not args.yes:
        console.print(f"[yellow]This will DELETE all business data before restoring backup {args.backup_id}.[/yellow]")
        if not _confirm("Continue?"):
            console.print("Cancelled.")
            return 0

    try:
        profile_name, adapter, settings, profile = await _open(args.env_prefix)
        blob_store = get_blob_store(settings, profile)
    except _SETUP_ERRORS as e:
        return _error(e)

    try:
        console.print(
            f"Restoring into [bold cyan]{profile_name}[/bold cyan]...", style="dim"
        )
        response = await restore_backup(
            adapter,
            blob_store,
            args.backup_id,
            args.clean,
            get_hasher(),
            restore_options(settings, skips_as_errors=args.skips_as_errors),
            store_key=profile_name,
        )
    finally:
        await adapter.close()

    return _print_restore(response)


async def _async_backups(args: argparse.Namespace) -> int:
    try:
        _, adapter, _, _ = await _open(args.env_prefix)
    except _SETUP_ERRORS as e:
        return _error(e)

    try:
        logs = await list_backups(adapter)
    finally:
        await adapter.close()

    if not logs:
        console.print("[yellow]No backups recorded.[/yellow]")
        return 0

    table = Table(title="Backups", show_header=True, header_style="bold")
    table.add_column("ID", style="dim")
    table.add_column("File")
    table.add_column("Records", justify="right")
    table.add_column("Size", justify="right")
    table.add_column("Status")
    table.add_column("Created")

    for log in logs:
        status = (
            "[green]success[/green]" if log.status == "success"
            else f"[red]{log.status}[/red]"
        )
        table.add_row(
            log.id,
            log.file_name,
            "" if log.record_count is None else str(log.record_count),
            "" if log.file_size_bytes is None else str(log.file_size_bytes),
            status,
            log.created_at or "",
        )
    console.print(table)
    return 0


async def _async_download_url(args: argparse.Namespace) -> int:
    try:
        _, adapter, settings, profile = await _open(args.env_prefix)
        blob_store = get_blob_store(settings, profile)
    except _SETUP_ERRORS as e:
        return _error(e)

    try:
        log = await get_backup(adapter, args.backup_id)
        url = await get_download_url(blob_store, log, settings.signed_url_ttl)
    except (LookupError, ValueError, FileNotFoundError) as e:
        return _error(e)
    finally:
        await adapter.close()

    console.print(url, soft_wrap=True)
    return 0


async def _async_delete(args: argparse.Namespace) -> int:
    try:
        _, adapter, settings, profile = await _open(args.env_prefix)
        blob_store = get_blob_store(settings, profile)
    except _SETUP_ERRORS as e:
        return _error(e)

    try:
        log = await get_backup(adapter, args.backup_id)
        if not args.yes and not _confirm(f"Delete backup {log.file_name}?"):
            console.print("Cancelled.")
            return 0
        await delete_backup(adapter, blob_store, args.backup_id)
    except LookupError as e:
        return _error(e)
    finally:
        await adapter.close()

    console.print(f"[bold green]v[/bold green] Deleted {log.file_name}")
    return 0


# ============================================================================
# Sync command wrappers (status, profiles, inspect read local files only)
# ============================================================================


def cmd_connect(args: argparse.Namespace) -> int:
    """Check the store is reachable and lock in the profile."""
    return asyncio.run(_async_connect(args))


def _profile_source(env_prefix: str) -> tuple[str | None, str]:
    try:
        name = get_active_profile_name(env_prefix)
    except ProfileNotFoundError:
        return None, ""
    if name == read_profile_lock() and not os.environ.get(f"{env_prefix}DB_PROFILE"):
        return name, ".db-profile"
    return name, f"{env_prefix}DB_PROFILE"


def cmd_status(args: argparse.Namespace) -> int:
    """Show which profile commands will use.  Never contacts the store."""
    name, source = _profile_source(args.env_prefix)
    if name is None:
        console.print("[yellow]No active profile.[/yellow]")
        console.print("[dim]Run:[/dim] [cyan]DB_PROFILE=<name> isp-backup connect[/cyan]")
        return 0

    summary = Table(title="Active Profile", show_header=False)
    summary.add_column("Key", style="dim")
    summary.add_column("Value")
    summary.add_row("Profile", f"[bold cyan]{name}[/bold cyan]")
    summary.add_row("Selected by", source)

    try:
        config = load_db_config()
    except FileNotFoundError:
        summary.add_row("db.toml", "[yellow]missing[/yellow]")
    else:
        profile = config.profiles.get(name)
        if profile is None:
            summary.add_row("db.toml", "[yellow]no such profile[/yellow]")
        else:
            summary.add_row("Provider", profile.provider)
            if profile.description:
                summary.add_row("Description", profile.description)
        summary.add_row("Backup storage", config.backup.storage)

    console.print(summary)
    return 0


def cmd_profiles(args: argparse.Namespace) -> int:
    """List the profiles in db.toml, marking the active one.

    Returns:
        0 on success, 1 if db.toml is missing.
    """
    try:
        config = load_db_config()
    except FileNotFoundError as e:
        return _error(e)

    active, _ = _profile_source(args.env_prefix)

    listing = Table(title="Profiles", header_style="bold")
    listing.add_column("", width=2)
    listing.add_column("Profile")
    listing.add_column("Provider")
    listing.add_column("Description")
    for name, profile in config.profiles.items():
        is_active = name == active
        listing.add_row(
            "[bold green]*[/bold green]" if is_active else "",
            f"[bold cyan]{name}[/bold cyan]" if is_active else name,
            profile.provider,
            profile.description or "",
        )

    console.print(listing)
    return 0


def cmd_inspect(args: argparse.Namespace) -> int:
    """Parse and validate a snapshot file without touching any store.

    Returns:
        0 if the snapshot is restorable, 1 otherwise.
    """
    path = Path(args.snapshot_file)
    try:
        text = path.read_text(encoding="utf-8")
    except (FileNotFoundError, UnicodeDecodeError) as e:
        return _error(e)

    restorable = set(RESTORE_ORDER)
    result = validate_snapshot(text, known_tables=restorable)

    console.print(f"Inspecting: [bold]{path.name}[/bold]")

    if result["tables"]:
        table = Table(title="Sections", show_header=True, header_style="bold")
        table.add_column("Section")
        table.add_column("Rows", justify="right")
        table.add_column("Restored")
        for name, count in result["tables"].items():
            table.add_row(
                name,
                str(count),
                "[green]yes[/green]" if name in restorable else "[dim]no[/dim]",
            )
        console.print(table)

    for error in result["errors"]:
        console.print(f"  [red]- {error}[/red]")
    for warning in result["warnings"]:
        console.print(f"  [yellow]- {warning}[/yellow]")

    if not result["valid"]:
        return _error("Snapshot is invalid")

    console.print("[bold green]v[/bold green] Snapshot is valid")
    return 0


def cmd_export(args: argparse.Namespace) -> int:
    """Write a full snapshot to the blob store."""
    return asyncio.run(_async_export(args))


def cmd_restore(args: argparse.Namespace) -> int:
    """Restore a snapshot file into the store."""
    return asyncio.run(_async_restore(args))


def cmd_restore_backup(args: argparse.Namespace) -> int:
    """Restore a stored backup by its log ID."""
    return asyncio.run(_async_restore_backup(args))


def cmd_backups(args: argparse.Namespace) -> int:
    """List recorded backups."""
    return asyncio.run(_async_backups(args))


def cmd_download_url(args: argparse.Namespace) -> int:
    """Print a download URL for a backup."""
    return asyncio.run(_async_download_url(args))


def cmd_delete(args: argparse.Namespace) -> int:
    """Delete a backup."""
    return asyncio.run(_async_delete(args))


# ============================================================================
# Main entry point
# ============================================================================


def main() -> int:
    """Main CLI entry point.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    parser = argparse.ArgumentParser(
        prog="isp-backup",
        description="ISP snapshot export and restore",
    )

    parser.add_argument(
        "--env-prefix",
        default="",
        help=(
            "Prefix for environment variable lookup "
            "(e.g., --env-prefix ISP_ reads ISP_DB_PROFILE)"
        ),
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    p_connect = subparsers.add_parser(
        "connect",
        help="Check the store is reachable and lock in the profile",
    )
    p_connect.set_defaults(func=cmd_connect)

    p_status = subparsers.add_parser("status", help="Show the active profile")
    p_status.set_defaults(func=cmd_status)

    p_profiles = subparsers.add_parser("profiles", help="List available profiles")
    p_profiles.set_defaults(func=cmd_profiles)

    p_export = subparsers.add_parser("export", help="Write a full snapshot")
    p_export.set_defaults(func=cmd_export)

    p_inspect = subparsers.add_parser("inspect", help="Parse and validate a snapshot file")
    p_inspect.add_argument("snapshot_file", help="Path to snapshot CSV file")
    p_inspect.set_defaults(func=cmd_inspect)

    p_restore = subparsers.add_parser("restore", help="Restore a snapshot file")
    p_restore.add_argument("snapshot_file", help="Path to snapshot CSV file")
    p_restore.add_argument(
        "--clean",
        action="store_true",
        help="Delete all business data before restoring",
    )
    p_restore.add_argument(
        "--yes",
        "-y",
        action="store_true",
        help="Skip confirmation prompt",
    )
    p_restore.add_argument(
        "--skips-as-errors",
        action="store_true",
        help="Report rows skipped for missing keys or references as errors",
    )
    p_restore.set_defaults(func=cmd_restore)

    p_restore_backup = subparsers.add_parser(
        "restore-backup", help="Restore a stored backup by its log ID"
    )
    p_restore_backup.add_argument("backup_id", help="Backup log ID")
    p_restore_backup.add_argument(
        "--clean",
        action="store_true",
        help="Delete all business data before restoring",
    )
    p_restore_backup.add_argument(
        "--yes",
        "-y",
        action="store_true",
        help="Skip confirmation prompt",
    )
    p_restore_backup.add_argument(
        "--skips-as-errors",
        action="store_true",
        help="Report rows skipped for missing keys or references as errors",
    )
    p_restore_backup.set_defaults(func=cmd_restore_backup)

    p_backups = subparsers.add_parser("backups", help="List recorded backups")
    p_backups.set_defaults(func=cmd_backups)

    p_url = subparsers.add_parser("download-url", help="Print a download URL for a backup")
    p_url.add_argument("backup_id", help="Backup log ID")
    p_url.set_defaults(func=cmd_download_url)

    p_delete = subparsers.add_parser("delete", help="Delete a backup file and its log entry")
    p_delete.add_argument("backup_id", help="Backup log ID")
    p_delete.add_argument(
        "--yes",
        "-y",
        action="store_true",
        help="Skip confirmation prompt",
    )
    p_delete.set_defaults(func=cmd_delete)

    args = parser.parse_args()
    _configure_logging(args.verbose)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
