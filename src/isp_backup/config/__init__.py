"""Configuration management: profiles, backup settings, TOML loading.

Usage:
    >>> from isp_backup.config import load_db_config, BackupSettings
"""

from isp_backup.config.loader import load_db_config
from isp_backup.config.models import BackupSettings, DatabaseConfig, DatabaseProfile

__all__ = ["load_db_config", "BackupSettings", "DatabaseConfig", "DatabaseProfile"]
