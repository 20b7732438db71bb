"""Snapshot export and restore.

Usage:
    from isp_backup.snapshot import parse_snapshot, restore_snapshot, export_snapshot
"""

from isp_backup.snapshot.exporter import export_snapshot, render_snapshot
from isp_backup.snapshot.models import (
    BackupLog,
    ExportResult,
    RenderedSnapshot,
    RestoreOptions,
    RestoreReport,
    RestoreRequest,
    Section,
    TableOutcome,
)
from isp_backup.snapshot.ordering import DELETION_ORDER, RESTORE_ORDER
from isp_backup.snapshot.parser import (
    SnapshotFormatError,
    parse_sections,
    parse_snapshot,
    parse_snapshot_strict,
    validate_snapshot,
)
from isp_backup.snapshot.resolver import NaturalKeyResolver
from isp_backup.snapshot.restorer import CredentialSeedError, restore_snapshot
from isp_backup.snapshot.service import (
    RestoreGuard,
    RestoreInProgressError,
    delete_backup,
    get_backup,
    get_download_url,
    handle_restore_request,
    list_backups,
    restore_backup,
    restore_from_text,
    run_backup,
)

__all__ = [
    # Parsing
    "parse_snapshot",
    "parse_snapshot_strict",
    "parse_sections",
    "validate_snapshot",
    "SnapshotFormatError",
    # Export
    "render_snapshot",
    "export_snapshot",
    # Restore
    "restore_snapshot",
    "NaturalKeyResolver",
    "CredentialSeedError",
    "DELETION_ORDER",
    "RESTORE_ORDER",
    # Service
    "handle_restore_request",
    "restore_from_text",
    "restore_backup",
    "RestoreGuard",
    "RestoreInProgressError",
    "run_backup",
    "list_backups",
    "get_backup",
    "get_download_url",
    "delete_backup",
    # Models
    "Section",
    "TableOutcome",
    "RestoreReport",
    "RestoreOptions",
    "RestoreRequest",
    "RenderedSnapshot",
    "ExportResult",
    "BackupLog",
]
