"""Profile resolution and restore-engine wiring.

Profiles live in db.toml.  The active profile is chosen by, in order:
an explicit name, the ``{env_prefix}DB_PROFILE`` env var, or the
``.db-profile`` lock file in the working directory.

Usage:
    from db_restore.factory import get_adapter, build_services

    adapter = await get_adapter(profile_name="local")
    services = build_services(adapter, resolve_url(profile), config)
    result = await services.orchestrator.execute(operation_id)
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import quote

from db_restore.adapters.postgres import AsyncPostgresAdapter
from db_restore.backup.reader import BackupStore
from db_restore.backup.writer import BackupWriter
from db_restore.config.loader import load_db_config
from db_restore.config.models import DatabaseConfig, DatabaseProfile
from db_restore.restore.operations import RestoreOperationStore
from db_restore.restore.orchestrator import RestoreOrchestrator
from db_restore.restore.progress import ProgressReporter
from db_restore.schema.dependencies import DependencyResolver
from db_restore.schema.models import excluded_tables

logger = logging.getLogger(__name__)

# Profile lock file path (relative to the working directory)
_PROFILE_LOCK_FILE = Path.cwd() / ".db-profile"

# Columns of the operations table stored as jsonb
OPERATION_JSONB_COLUMNS = ["metadata"]


# ============================================================================
# Profile Lock File Operations
# ============================================================================


class ProfileNotFoundError(Exception):
    """Raised when no database profile is configured."""

    pass


def read_profile_lock() -> str | None:
    """Read profile name from lock file.

    Returns:
        Profile name if lock file exists, None otherwise
    """
    if _PROFILE_LOCK_FILE.exists():
        return _PROFILE_LOCK_FILE.read_text().strip()
    return None


def write_profile_lock(profile_name: str) -> None:
    """Write profile name to lock file."""
    _PROFILE_LOCK_FILE.write_text(profile_name)


def get_active_profile_name(env_prefix: str = "") -> str:
    """Get active profile name from env var or lock file.

    Priority:
    1. ``{env_prefix}DB_PROFILE`` env var
    2. .db-profile file
    3. Raise ProfileNotFoundError

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
        f"Set {env_prefix}DB_PROFILE=<name> or run: db-restore profiles --use <name>"
    )


def get_active_profile(
    profile_name: str | None = None,
    env_prefix: str = "",
    config: DatabaseConfig | None = None,
) -> tuple[str, DatabaseProfile]:
    """Get active profile name and configuration.

    Raises:
        ProfileNotFoundError: If no profile is configured or the name is
            not in db.toml
    """
    if profile_name is None:
        profile_name = get_active_profile_name(env_prefix=env_prefix)
    if config is None:
        config = load_db_config()

    if profile_name not in config.profiles:
        raise ProfileNotFoundError(
            f"Profile '{profile_name}' not found in db.toml.\n"
            f"Available profiles: {', '.join(config.profiles.keys())}"
        )

    return profile_name, config.profiles[profile_name]


def resolve_url(profile: DatabaseProfile) -> str:
    """Resolve profile URL with password substitution.

    Example:
        >>> resolve_url(DatabaseProfile(url="postgresql://u:[YOUR-PASSWORD]@h/db", db_password="p@ss"))
        'postgresql://u:p%40ss@h/db'
    """
    url = profile.url
    if profile.db_password and "[YOUR-PASSWORD]" in url:
        url = url.replace("[YOUR-PASSWORD]", quote(profile.db_password, safe=""))
    return url


# ============================================================================
# Adapter and Service Factory
# ============================================================================


async def get_adapter(
    profile_name: str | None = None,
    env_prefix: str = "",
    database_url: str | None = None,
    jsonb_columns: list[str] | None = None,
    config: DatabaseConfig | None = None,
) -> AsyncPostgresAdapter:
    """Create a new adapter; nothing is cached between calls.

    Args:
        profile_name: Profile from db.toml.  Ignored when ``database_url``
            is given.
        env_prefix: Prefix for the ``DB_PROFILE`` env var.
        database_url: Connect directly to this URL.
        jsonb_columns: Columns that receive JSONB serialization.
        config: Already-loaded config; loaded from db.toml when omitted.

    Raises:
        ProfileNotFoundError: If no profile can be resolved.
    """
    if database_url is None:
        _, profile = get_active_profile(profile_name, env_prefix, config)
        database_url = resolve_url(profile)

    return AsyncPostgresAdapter(database_url=database_url, jsonb_columns=jsonb_columns)


@dataclass
class RestoreServices:
    """Everything a restore command needs, built over one adapter."""

    adapter: AsyncPostgresAdapter
    backups: BackupStore
    resolver: DependencyResolver
    writer: BackupWriter
    operations: RestoreOperationStore
    orchestrator: RestoreOrchestrator

    async def close(self) -> None:
        await self.adapter.close()


def build_services(
    adapter: AsyncPostgresAdapter,
    database_url: str,
    config: DatabaseConfig,
) -> RestoreServices:
    """Wire the restore engine from config."""
    settings = config.restore
    backups = BackupStore(config.backups.directory)
    resolver = DependencyResolver(
        database_url,
        schema_name=settings.schema_name,
        migrations_table=settings.migrations_table,
    )
    writer = BackupWriter(
        adapter,
        backups,
        resolver,
        schema_name=settings.schema_name,
        excluded=excluded_tables(settings.system_table_names()),
    )
    operations = RestoreOperationStore(adapter, settings.operations_table)
    orchestrator = RestoreOrchestrator(
        adapter,
        backups,
        resolver,
        writer,
        operations,
        reporter=ProgressReporter(adapter, settings.operations_table),
        settings=settings,
    )
    return RestoreServices(
        adapter=adapter,
        backups=backups,
        resolver=resolver,
        writer=writer,
        operations=operations,
        orchestrator=orchestrator,
    )


async def open_services(
    profile_name: str | None = None,
    env_prefix: str = "",
    config: DatabaseConfig | None = None,
) -> RestoreServices:
    """Resolve the active profile and build the restore engine over it.

    Raises:
        ProfileNotFoundError: If no profile can be resolved.
    """
    if config is None:
        config = load_db_config()
    name, profile = get_active_profile(profile_name, env_prefix, config)
    database_url = resolve_url(profile)
    adapter = await get_adapter(database_url=database_url, jsonb_columns=OPERATION_JSONB_COLUMNS)
    logger.debug(f"Using profile {name}")
    return build_services(adapter, database_url, config)
