"""Adapter, blob store and hasher factory.

Profile selection works like this:
1. ``<PREFIX>DB_PROFILE`` env var (initial connect, CI/CD)
2. ``.db-profile`` lock file in the working directory (written by
   ``connect`` after a successful connection check)

Usage:
    from isp_backup.factory import get_adapter, get_blob_store, load_db_config

    adapter = await get_adapter()
    store = get_blob_store(load_db_config().backup)
"""

import logging
import os
from pathlib import Path
from urllib.parse import quote

from isp_backup.adapters import AsyncPostgresAdapter, DatabaseClient
from isp_backup.config import BackupSettings, DatabaseProfile, load_db_config
from isp_backup.credentials import CredentialHasher, PasslibCredentialHasher
from isp_backup.snapshot.exporter import BACKUP_LOG_TABLE
from isp_backup.snapshot.models import RestoreOptions
from isp_backup.storage import BlobStore, LocalBlobStore

logger = logging.getLogger(__name__)

# Profile lock file path
_PROFILE_LOCK_FILE = Path.cwd() / ".db-profile"


# ============================================================================
# Profile selection
# ============================================================================


class ProfileNotFoundError(Exception):
    """Raised when no database profile is configured."""

    pass


def read_profile_lock() -> str | None:
    """Profile name recorded by the last successful ``connect``, if any."""
    if _PROFILE_LOCK_FILE.exists():
        return _PROFILE_LOCK_FILE.read_text().strip()
    return None


def write_profile_lock(profile_name: str) -> None:
    """Record ``profile_name`` as the active profile.

    ``connect`` calls this only once the store has answered.
    """
    _PROFILE_LOCK_FILE.write_text(profile_name)


def clear_profile_lock() -> None:
    """Forget the active profile."""
    if _PROFILE_LOCK_FILE.exists():
        _PROFILE_LOCK_FILE.unlink()


def get_active_profile_name(env_prefix: str = "") -> str:
    """Name of the profile commands should use.

    Args:
        env_prefix: Prefix for the env var (``"ISP_"`` reads
            ``ISP_DB_PROFILE``).

    Raises:
        ProfileNotFoundError: If no profile is configured
    """
    env_profile = os.environ.get(f"{env_prefix}DB_PROFILE")
    if env_profile:
        return env_profile

    lock_profile = read_profile_lock()
    if lock_profile:
        return lock_profile

    raise ProfileNotFoundError(
        "No database profile configured.\n"
        f"Run: {env_prefix}DB_PROFILE=<name> isp-backup connect\n"
        "Profiles are listed by: isp-backup profiles"
    )


def get_active_profile(env_prefix: str = "") -> tuple[str, DatabaseProfile]:
    """Active profile name and its ``db.toml`` entry.

    Raises:
        ProfileNotFoundError: If no profile is configured
        KeyError: If db.toml has no such profile
    """
    profile_name = get_active_profile_name(env_prefix)
    return profile_name, _load_profile(profile_name)


def _load_profile(profile_name: str) -> DatabaseProfile:
    config = load_db_config()
    if profile_name not in config.profiles:
        raise KeyError(
            f"Profile '{profile_name}' not found in db.toml.\n"
            f"Available profiles: {', '.join(config.profiles.keys())}"
        )
    return config.profiles[profile_name]


def resolve_url(profile: DatabaseProfile) -> str:
    """Profile URL with the password placeholder filled in.

    ``[YOUR-PASSWORD]`` in the URL is replaced by the URL-encoded
    ``db_password``.
    """
    url = profile.url
    if profile.db_password and "[YOUR-PASSWORD]" in url:
        url = url.replace("[YOUR-PASSWORD]", quote(profile.db_password, safe=""))
    return url


# ============================================================================
# Factories
# ============================================================================


def _adapter_for_profile(profile: DatabaseProfile) -> DatabaseClient:
    if profile.provider == "supabase":
        from isp_backup.adapters.supabase import AsyncSupabaseAdapter

        if not profile.db_password:
            raise ValueError("Supabase profiles need db_password set to the service-role key")
        return AsyncSupabaseAdapter(url=profile.url, key=profile.db_password)

    return AsyncPostgresAdapter(database_url=resolve_url(profile))


async def get_adapter(
    profile_name: str | None = None,
    database_url: str | None = None,
    env_prefix: str = "",
) -> DatabaseClient:
    """Create a new adapter.  Adapters are not cached.

    Args:
        profile_name: Profile from db.toml.  Defaults to the active profile.
        database_url: Direct PostgreSQL URL; overrides any profile.
        env_prefix: Prefix for the ``DB_PROFILE`` env var.

    Raises:
        ProfileNotFoundError: If no configuration is available
        KeyError: If the profile is not in db.toml
    """
    if database_url:
        return AsyncPostgresAdapter(database_url=database_url)

    if profile_name is None:
        profile_name = get_active_profile_name(env_prefix)

    return _adapter_for_profile(_load_profile(profile_name))


async def connect(profile_name: str | None = None, env_prefix: str = "") -> str:
    """Check that a profile's store is reachable, then lock it in.

    The check reads the ``backup_logs`` table, so it also proves the
    schema the exporter logs into is present.

    Returns:
        The connected profile name.

    Raises:
        ProfileNotFoundError: If no profile is configured
        Exception: Whatever the store raised; the lock file is untouched.
    """
    if profile_name is None:
        profile_name = get_active_profile_name(env_prefix)

    adapter = await get_adapter(profile_name=profile_name)
    try:
        await adapter.select(BACKUP_LOG_TABLE, "id")
    finally:
        await adapter.close()

    write_profile_lock(profile_name)
    logger.info("Connected to profile %s", profile_name)
    return profile_name


def get_blob_store(
    settings: BackupSettings,
    profile: DatabaseProfile | None = None,
) -> BlobStore:
    """Create the blob store named by ``[backup] storage``.

    Raises:
        ValueError: If Supabase storage is configured without a Supabase
            profile to take the project URL and key from.
    """
    if settings.storage == "supabase":
        if profile is None or profile.provider != "supabase" or not profile.db_password:
            raise ValueError("Supabase storage needs an active supabase profile with a key")

        from isp_backup.storage.supabase import SupabaseBlobStore

        return SupabaseBlobStore(
            url=profile.url,
            key=profile.db_password,
            bucket=settings.bucket,
        )

    return LocalBlobStore(settings.local_dir)


def get_hasher() -> CredentialHasher:
    """Credential hasher for restored accounts."""
    return PasslibCredentialHasher()


def restore_options(settings: BackupSettings, skips_as_errors: bool = False) -> RestoreOptions:
    """Build ``RestoreOptions`` from the ``[backup]`` settings."""
    return RestoreOptions(
        default_password=settings.default_password,
        pppoe_password=settings.pppoe_password,
        country_code=settings.country_code,
        placeholder_phone=settings.placeholder_phone,
        skips_as_errors=skips_as_errors,
    )
