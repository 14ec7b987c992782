"""Models for backup manifests, restore operations, validation, and progress.

Usage:
    from db_restore.backup.models import (
        BackupManifest,
        RestoreOperation,
        RestoreStatus,
        RestoreValidation,
        RestoreProgress,
        RestorePhase,
    )

    manifest = BackupManifest(
        backup_id="bk_2026_10_01",
        format_version=1,
        schema_version="112",
        created_at=datetime.now(timezone.utc),
    )
"""

from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field

from db_restore.schema.models import UNKNOWN_SCHEMA_VERSION

BackupType = Literal["manual", "scheduled", "pre_restore"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Backup Models
# ============================================================================


class BackupManifest(BaseModel):
    """Metadata describing a backup, independent of its row data."""

    model_config = ConfigDict(frozen=True)

    backup_id: str
    format_version: int
    schema_version: str = UNKNOWN_SCHEMA_VERSION
    created_at: datetime
    backup_type: BackupType = "manual"
    label: str | None = None
    table_counts: dict[str, int] = Field(default_factory=dict)


class BackupPayload(BaseModel):
    """Fully materialized backup: manifest plus every table's rows."""

    manifest: BackupManifest
    tables: dict[str, list[dict[str, Any]]] = Field(default_factory=dict)


class BackupRef(BaseModel):
    """Handle returned by a backup creator."""

    backup_id: str
    path: str | None = None


# ============================================================================
# Restore Operation Models
# ============================================================================


class RestoreStatus(StrEnum):
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset(
    {RestoreStatus.COMPLETED, RestoreStatus.FAILED, RestoreStatus.REJECTED}
)


class RestorePhase(StrEnum):
    SAFETY_BACKUP = "safety_backup"
    LOADING = "loading"
    VALIDATING = "validating"
    TRUNCATING = "truncating"
    INSERTING = "inserting"
    SEQUENCES = "sequences"
    COMPLETE = "complete"


class RestoreProgress(BaseModel):
    """Snapshot of where a running restore is.

    Written to the operation's ``metadata`` for polling clients; never read
    back into control flow.
    """

    phase: RestorePhase
    current_table: str | None = None
    table_index: int | None = None
    total_tables: int | None = None
    rows_inserted: int | None = None
    message: str | None = None
    timestamp: datetime = Field(default_factory=utc_now)


class RestoreOperation(BaseModel):
    """A restore request and its audit trail.

    ``scope_tenant_id`` of ``None`` means a full-database restore.
    """

    id: str
    backup_id: str
    scope_tenant_id: str | None = None
    status: RestoreStatus = RestoreStatus.PENDING_APPROVAL
    safety_backup_id: str | None = None
    tables_restored: int = 0
    rows_restored: int = 0
    error_message: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    requested_by: str | None = None
    approved_by: str | None = None
    approved_at: datetime | None = None
    rejected_reason: str | None = None
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_tenant_scoped(self) -> bool:
        return self.scope_tenant_id is not None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


# ============================================================================
# Validation Models
# ============================================================================


class RestoreValidation(BaseModel):
    """Outcome of comparing a backup against the live schema.

    Example:
        >>> RestoreValidation(warnings=["x"]).compatible
        True
        >>> RestoreValidation(errors=["schema mismatch"]).compatible
        False
    """

    warnings: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def compatible(self) -> bool:
        return len(self.errors) == 0

    def format_report(self) -> str:
        """Format validation result as human-readable report."""
        lines = ["Backup compatible" if self.compatible else "Backup incompatible:"]

        if self.errors:
            lines.append(f"\n  Errors ({len(self.errors)}):")
            for error in self.errors:
                lines.append(f"    - {error}")

        if self.warnings:
            lines.append(f"\n  Warnings ({len(self.warnings)}):")
            for warning in self.warnings:
                lines.append(f"    - {warning}")

        return "\n".join(lines)


class TenantRestoreValidation(RestoreValidation):
    """Validation for a tenant-scoped restore."""

    tenant_tables: list[str] = Field(default_factory=list)
    tenant_row_count: int = 0
    tenant_row_counts: dict[str, int] = Field(default_factory=dict)


class RestoreResult(BaseModel):
    """Summary returned by a successful restore."""

    operation_id: str
    status: RestoreStatus
    safety_backup_id: str | None = None
    tables_restored: int = 0
    rows_restored: int = 0
    warnings: list[str] = Field(default_factory=list)
