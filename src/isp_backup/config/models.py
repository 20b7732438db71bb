"""Pydantic models for ``db.toml`` configuration."""

from typing import Literal

from pydantic import BaseModel, Field


class DatabaseProfile(BaseModel):
    """Database connection profile from db.toml.

    For ``provider = "supabase"`` the ``url`` is the project URL and
    ``db_password`` holds the service-role key.
    """

    url: str
    description: str = ""
    db_password: str | None = None  # For [YOUR-PASSWORD] placeholder substitution
    provider: Literal["postgres", "supabase"] = "postgres"


class BackupSettings(BaseModel):
    """The ``[backup]`` table of db.toml."""

    storage: Literal["local", "supabase"] = "local"
    local_dir: str = "backups"
    bucket: str = "customer-backups"
    signed_url_ttl: int = Field(default=3600, gt=0)

    # Replacement credentials; snapshots never carry the originals
    default_password: str = "123456"
    pppoe_password: str = "12345678"

    country_code: str = "880"
    placeholder_phone: str = "8801000000000"


class DatabaseConfig(BaseModel):
    """Complete configuration from db.toml."""

    profiles: dict[str, DatabaseProfile]
    backup: BackupSettings = Field(default_factory=BackupSettings)
