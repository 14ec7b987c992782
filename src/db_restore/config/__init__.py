"""Configuration management: profiles, TOML loading, and restore settings.

Usage:
    >>> from db_restore.config import load_db_config, DatabaseProfile, DatabaseConfig
"""

from db_restore.config.loader import load_db_config
from db_restore.config.models import (
    BackupSettings,
    DatabaseConfig,
    DatabaseProfile,
    RestoreSettings,
)

__all__ = [
    "load_db_config",
    "DatabaseConfig",
    "DatabaseProfile",
    "RestoreSettings",
    "BackupSettings",
]
