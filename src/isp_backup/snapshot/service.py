"""Restore entrypoint and backup management.

Everything a caller (CLI, HTTP handler) needs sits here and returns plain
dicts: ``{"success": True, ...}`` or ``{"success": False, "error": ...}``.
Tracebacks never reach the caller; unrecoverable failures are logged.

Usage:
    from isp_backup.snapshot.service import handle_restore_request, run_backup

    response = await handle_restore_request(
        adapter, {"tables": tables, "clean_existing": False}, hasher
    )
    response["total_restored"]
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator

from pydantic import ValidationError

from isp_backup.adapters.base import DatabaseClient
from isp_backup.credentials import CredentialHasher
from isp_backup.snapshot.exporter import BACKUP_LOG_TABLE, export_snapshot
from isp_backup.snapshot.models import BackupLog, RestoreOptions, RestoreRequest
from isp_backup.snapshot.parser import NO_SECTIONS_MESSAGE, parse_snapshot
from isp_backup.snapshot.restorer import restore_snapshot
from isp_backup.storage.base import BlobStore

logger = logging.getLogger(__name__)

TABLES_REQUIRED_MESSAGE = "tables object required"
IN_PROGRESS_MESSAGE = "A restore is already in progress"


class RestoreInProgressError(RuntimeError):
    """Raised when a restore is requested while another one is running."""

    def __init__(self, key: str = "default") -> None:
        super().__init__(IN_PROGRESS_MESSAGE)
        self.key = key


class RestoreGuard:
    """Single-flight lock around whole restore runs, one per store key.

    A second restore for a key that is already restoring is rejected at
    once rather than queued.

    Example:
        guard = RestoreGuard()
        async with guard.hold("prod"):
            await restore_snapshot(...)
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def is_running(self, key: str = "default") -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, key: str = "default") -> AsyncIterator[None]:
        """Hold the lock for ``key``.

        Raises:
            RestoreInProgressError: If ``key`` is already held.
        """
        lock = self._locks.setdefault(key, asyncio.Lock())
        if lock.locked():
            raise RestoreInProgressError(key)
        async with lock:
            yield


default_guard = RestoreGuard()


def _failure(message: str) -> dict[str, Any]:
    return {"success": False, "error": message}


async def handle_restore_request(
    adapter: DatabaseClient,
    payload: Any,
    hasher: CredentialHasher,
    options: RestoreOptions | None = None,
    guard: RestoreGuard | None = None,
    store_key: str = "default",
) -> dict[str, Any]:
    """Validate a restore request and run it.

    Args:
        adapter: Target store.
        payload: ``{"tables": {name: [row, ...]}, "clean_existing": bool}``.
        hasher: Credential hasher for restored accounts.
        options: Restore defaults and skip policy.
        guard: Single-flight guard (process-wide ``default_guard`` when
            omitted).
        store_key: Identifies the target store for the guard.

    Returns:
        ``RestoreReport.to_response()`` on success, otherwise
        ``{"success": False, "error": message}``.
    """
    try:
        request = RestoreRequest.model_validate(payload)
    except ValidationError:
        return _failure(TABLES_REQUIRED_MESSAGE)

    if not request.tables:
        return _failure(NO_SECTIONS_MESSAGE)

    guard = guard or default_guard
    try:
        async with guard.hold(store_key):
            report = await restore_snapshot(
                adapter, request.tables, request.clean_existing, hasher, options
            )
    except RestoreInProgressError as exc:
        logger.warning("Restore rejected for %s: %s", store_key, exc)
        return _failure(str(exc))
    except Exception as exc:
        logger.exception("Restore failed")
        return _failure(str(exc) or exc.__class__.__name__)

    return report.to_response()


async def restore_from_text(
    adapter: DatabaseClient,
    text: str,
    clean_existing: bool,
    hasher: CredentialHasher,
    options: RestoreOptions | None = None,
    guard: RestoreGuard | None = None,
    store_key: str = "default",
) -> dict[str, Any]:
    """Parse snapshot text and restore it.

    Text without any section is refused before anything touches the
    store.
    """
    tables = parse_snapshot(text)
    if not tables:
        return _failure(NO_SECTIONS_MESSAGE)

    return await handle_restore_request(
        adapter,
        {"tables": tables, "clean_existing": clean_existing},
        hasher,
        options,
        guard=guard,
        store_key=store_key,
    )


async def restore_backup(
    adapter: DatabaseClient,
    blob_store: BlobStore,
    backup_id: str,
    clean_existing: bool,
    hasher: CredentialHasher,
    options: RestoreOptions | None = None,
    guard: RestoreGuard | None = None,
    store_key: str = "default",
) -> dict[str, Any]:
    """Restore a snapshot that ``run_backup`` stored earlier.

    The log entry must exist and record a successful export; its file is
    read from ``blob_store`` and restored like any other snapshot text.
    """
    try:
        log = await get_backup(adapter, backup_id)
        if log.status != "success":
            raise ValueError(f"Backup {log.file_name} has status {log.status!r}; nothing to restore")
        data = await blob_store.read(log.file_path)
    except (LookupError, ValueError) as exc:
        return _failure(str(exc))
    except Exception as exc:
        logger.exception("Could not load backup %s", backup_id)
        return _failure(str(exc) or exc.__class__.__name__)

    logger.info("Restoring stored backup %s", log.file_name)
    return await restore_from_text(
        adapter,
        data.decode("utf-8"),
        clean_existing,
        hasher,
        options,
        guard=guard,
        store_key=store_key,
    )


# ----------------------------------------------------------------------
# Backup management
# ----------------------------------------------------------------------


async def run_backup(
    adapter: DatabaseClient,
    blob_store: BlobStore,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Export a snapshot and report it as a response dict."""
    try:
        result = await export_snapshot(adapter, blob_store, now)
    except Exception as exc:
        logger.exception("Backup failed")
        return _failure(str(exc) or exc.__class__.__name__)

    return {
        "success": True,
        "file_name": result.file_name,
        "record_count": result.record_count,
        "file_size_bytes": result.file_size_bytes,
        "tables": result.tables,
    }


async def list_backups(adapter: DatabaseClient) -> list[BackupLog]:
    """Return every backup log entry, newest first."""
    rows = await adapter.select(BACKUP_LOG_TABLE, "*")
    logs = [BackupLog.model_validate(row) for row in rows]
    return sorted(logs, key=lambda log: log.created_at or "", reverse=True)


async def get_backup(adapter: DatabaseClient, backup_id: str) -> BackupLog:
    """Fetch one backup log entry.

    Raises:
        LookupError: If no entry has that id.
    """
    rows = await adapter.select(BACKUP_LOG_TABLE, "*", filters={"id": backup_id})
    if not rows:
        raise LookupError(f"Backup not found: {backup_id}")
    return BackupLog.model_validate(rows[0])


async def get_download_url(blob_store: BlobStore, log: BackupLog, ttl: int = 3600) -> str:
    """Return a time-limited URL for a stored snapshot.

    Raises:
        ValueError: If the backup did not succeed (there is no file).
    """
    if log.status != "success":
        raise ValueError(f"Backup {log.file_name} has status {log.status!r}; no file to download")
    return await blob_store.signed_url(log.file_path, ttl)


async def delete_backup(
    adapter: DatabaseClient,
    blob_store: BlobStore,
    backup_id: str,
) -> BackupLog:
    """Delete a backup's file and then its log entry.

    Returns:
        The deleted log entry.

    Raises:
        LookupError: If no entry has that id.
    """
    log = await get_backup(adapter, backup_id)
    if log.status == "success":
        await blob_store.delete(log.file_path)
    await adapter.delete(BACKUP_LOG_TABLE, {"id": backup_id})
    logger.info("Deleted backup %s", log.file_name)
    return log
