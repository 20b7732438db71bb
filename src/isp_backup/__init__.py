"""isp-backup: relational snapshot export and restore for ISP billing data.

Exports every business table into one sectioned CSV snapshot and restores
such a snapshot in dependency order, resolving natural keys (user IDs,
invoice numbers, names) into the target store's surrogate ids.

Usage:
    from isp_backup import get_adapter, parse_snapshot_strict, restore_snapshot
    from isp_backup import export_snapshot, LocalBlobStore
    from isp_backup import handle_restore_request, PasslibCredentialHasher
"""

__version__ = "0.1.0"

# Adapters
from isp_backup.adapters.base import DatabaseClient
from isp_backup.adapters.postgres import AsyncPostgresAdapter

# Config
from isp_backup.config.loader import load_db_config
from isp_backup.config.models import BackupSettings, DatabaseConfig, DatabaseProfile

# Collaborators
from isp_backup.credentials import CredentialHasher, PasslibCredentialHasher
from isp_backup.storage import BlobStore, LocalBlobStore

# Factory
from isp_backup.factory import (
    ProfileNotFoundError,
    get_adapter,
    get_blob_store,
    resolve_url,
)

# Snapshot
from isp_backup.snapshot import (
    NaturalKeyResolver,
    RestoreOptions,
    RestoreReport,
    SnapshotFormatError,
    TableOutcome,
    export_snapshot,
    handle_restore_request,
    parse_snapshot,
    parse_snapshot_strict,
    render_snapshot,
    restore_from_text,
    restore_snapshot,
    validate_snapshot,
)

__all__ = [
    # Adapters
    "DatabaseClient",
    "AsyncPostgresAdapter",
    # Config
    "load_db_config",
    "BackupSettings",
    "DatabaseProfile",
    "DatabaseConfig",
    # Collaborators
    "CredentialHasher",
    "PasslibCredentialHasher",
    "BlobStore",
    "LocalBlobStore",
    # Factory
    "get_adapter",
    "get_blob_store",
    "ProfileNotFoundError",
    "resolve_url",
    # Snapshot
    "parse_snapshot",
    "parse_snapshot_strict",
    "validate_snapshot",
    "SnapshotFormatError",
    "render_snapshot",
    "export_snapshot",
    "restore_snapshot",
    "restore_from_text",
    "handle_restore_request",
    "NaturalKeyResolver",
    "RestoreOptions",
    "RestoreReport",
    "TableOutcome",
]

# Optional: AsyncSupabaseAdapter (only available with supabase extra)
try:
    from isp_backup.adapters.supabase import AsyncSupabaseAdapter

    __all__.append("AsyncSupabaseAdapter")
except ImportError:
    # supabase extra not installed -- AsyncSupabaseAdapter unavailable
    pass
