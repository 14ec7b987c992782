"""TOML configuration loader for db-restore.

Usage:
    from db_restore.config.loader import load_db_config

    config = load_db_config()                      # ./db.toml
    config = load_db_config(Path("ops/db.toml"))
"""

import os
import tomllib
from pathlib import Path

from db_restore.config.models import (
    BackupSettings,
    DatabaseConfig,
    DatabaseProfile,
    RestoreSettings,
)

CONFIG_ENV_VAR = "DB_RESTORE_CONFIG"


def load_db_config(config_path: Path | None = None) -> DatabaseConfig:
    """Load database configuration from TOML file.

    Args:
        config_path: Path to db.toml.  Defaults to ``$DB_RESTORE_CONFIG``
            when set, otherwise ``db.toml`` in the current working directory.

    Returns:
        DatabaseConfig with all profiles and restore/backup settings.

    Raises:
        FileNotFoundError: If config file doesn't exist.
        pydantic.ValidationError: If a section has invalid values.
    """
    if config_path is None:
        env_path = os.environ.get(CONFIG_ENV_VAR)
        config_path = Path(env_path) if env_path else Path.cwd() / "db.toml"

    if not config_path.exists():
        raise FileNotFoundError(
            f"Database config not found: {config_path}\n"
            f"Create db.toml with at least one [profiles.<name>] section."
        )

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    profiles = {}
    for name, profile_data in data.get("profiles", {}).items():
        profiles[name] = DatabaseProfile(**profile_data)

    return DatabaseConfig(
        profiles=profiles,
        restore=RestoreSettings(**data.get("restore", {})),
        backups=BackupSettings(**data.get("backups", {})),
    )
