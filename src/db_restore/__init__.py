"""db-restore: disaster-recovery backups and restores for multi-tenant PostgreSQL.

Restores a whole database or a single tenant's rows from a backup archive,
inside one transaction, behind an approval workflow and a pre-restore
safety backup.

Usage:
    from db_restore import open_services, RestoreStatus

    services = await open_services(profile_name="local")
    op = await services.operations.create("bk_20261001_020000_ab12cd34")
    await services.operations.approve(op.id, approved_by="bob")
    result = await services.orchestrator.execute(op.id)
"""

__version__ = "0.1.0"

# Adapters
from db_restore.adapters.base import DatabaseClient, TransactionClient
from db_restore.adapters.postgres import AsyncPostgresAdapter

# Config
from db_restore.config.loader import load_db_config
from db_restore.config.models import DatabaseConfig, DatabaseProfile, RestoreSettings

# Factory
from db_restore.factory import (
    ProfileNotFoundError,
    RestoreServices,
    build_services,
    get_adapter,
    open_services,
    resolve_url,
)

# Backups
from db_restore.backup.models import (
    BackupManifest,
    RestoreOperation,
    RestoreResult,
    RestoreStatus,
    RestoreValidation,
)
from db_restore.backup.reader import BackupNotFoundError, BackupStore
from db_restore.backup.writer import BackupWriter

# Restore
from db_restore.restore.errors import RestoreError
from db_restore.restore.operations import RestoreOperationStore
from db_restore.restore.orchestrator import RestoreOrchestrator

__all__ = [
    # Adapters
    "DatabaseClient",
    "TransactionClient",
    "AsyncPostgresAdapter",
    # Config
    "load_db_config",
    "DatabaseConfig",
    "DatabaseProfile",
    "RestoreSettings",
    # Factory
    "get_adapter",
    "open_services",
    "build_services",
    "RestoreServices",
    "ProfileNotFoundError",
    "resolve_url",
    # Backups
    "BackupManifest",
    "BackupNotFoundError",
    "BackupStore",
    "BackupWriter",
    "RestoreOperation",
    "RestoreResult",
    "RestoreStatus",
    "RestoreValidation",
    # Restore
    "RestoreError",
    "RestoreOperationStore",
    "RestoreOrchestrator",
]
