"""Backup archives: models, streaming reader, and writer.

Usage:
    from db_restore.backup import BackupStore, BackupWriter, BackupManifest
"""

from db_restore.backup.models import (
    BackupManifest,
    BackupPayload,
    BackupRef,
    RestoreOperation,
    RestorePhase,
    RestoreProgress,
    RestoreResult,
    RestoreStatus,
    RestoreValidation,
    TenantRestoreValidation,
)
from db_restore.backup.reader import BackupNotFoundError, BackupReader, BackupStore
from db_restore.backup.writer import BackupCreator, BackupWriter

__all__ = [
    "BackupManifest",
    "BackupPayload",
    "BackupRef",
    "RestoreOperation",
    "RestorePhase",
    "RestoreProgress",
    "RestoreResult",
    "RestoreStatus",
    "RestoreValidation",
    "TenantRestoreValidation",
    "BackupNotFoundError",
    "BackupReader",
    "BackupStore",
    "BackupCreator",
    "BackupWriter",
]
