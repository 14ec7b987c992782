"""Restore engine: validation, batched writes, orchestration, approval workflow.

Usage:
    from db_restore.restore import RestoreOrchestrator, RestoreOperationStore
    from db_restore.restore import validate_restore, validate_tenant_restore
"""

from db_restore.restore.batch import build_insert, insert_rows, serialize_value
from db_restore.restore.errors import (
    InvalidOperationStateError,
    PrivilegeEscalationError,
    RestoreError,
    RestoreLockError,
    RestoreOperationNotFoundError,
    RestorePreconditionError,
    RestoreValidationError,
)
from db_restore.restore.operations import RestoreOperationStore
from db_restore.restore.orchestrator import RestoreOrchestrator
from db_restore.restore.privileges import PrivilegeStrategy, default_strategies, escalate_privileges
from db_restore.restore.progress import ProgressReporter
from db_restore.restore.validator import (
    validate_payload,
    validate_restore,
    validate_tenant_restore,
)

__all__ = [
    "build_insert",
    "insert_rows",
    "serialize_value",
    "RestoreError",
    "RestorePreconditionError",
    "RestoreOperationNotFoundError",
    "InvalidOperationStateError",
    "RestoreValidationError",
    "PrivilegeEscalationError",
    "RestoreLockError",
    "RestoreOperationStore",
    "RestoreOrchestrator",
    "PrivilegeStrategy",
    "default_strategies",
    "escalate_privileges",
    "ProgressReporter",
    "validate_payload",
    "validate_restore",
    "validate_tenant_restore",
]
