"""Backup-versus-live-schema compatibility checks.

Pure logic over table-name sets and version strings; the only I/O is
``validate_tenant_restore`` pulling rows through a backup reader.

Differences that a restore can absorb (extra or missing tables) are
warnings.  A format version this engine cannot read, or a schema version
that differs from the live one, is an error: restoring across migrations
risks missing columns, type drift, and FK violations, so it must block.

Usage:
    from db_restore.restore.validator import validate_restore

    result = validate_restore(
        reader.manifest(),
        reader.table_names(),
        live_tables=["orders", "order_lines"],
        live_schema_version="112",
    )
    if not result.compatible:
        print(result.format_report())
"""

from typing import Literal

from db_restore.backup.models import (
    BackupManifest,
    BackupPayload,
    RestoreValidation,
    TenantRestoreValidation,
)
from db_restore.backup.reader import BackupReader
from db_restore.schema.models import SYSTEM_TABLES, UNKNOWN_SCHEMA_VERSION

SUPPORTED_FORMAT_VERSIONS = frozenset({1})

TENANT_COLUMN = "tenant_id"


def validate_restore(
    manifest: BackupManifest,
    backup_tables: list[str],
    live_tables: list[str],
    live_schema_version: str,
    *,
    scope: Literal["full", "tenant"] = "full",
    excluded_tables: frozenset[str] = SYSTEM_TABLES,
) -> RestoreValidation:
    """Validate a backup's manifest and table list against the live schema.

    Performs set operations to find:
    - Backup-only tables: warning, they will be skipped
    - Live-only tables: warning, a full restore truncates them to empty
    - Unsupported ``format_version``: error
    - Known, differing schema versions: error

    Args:
        manifest: Manifest of the backup to restore.
        backup_tables: Table names present in the backup.
        live_tables: Table names in the live schema.
        live_schema_version: Live migration index or ``"unknown"``.
        scope: ``"full"`` or ``"tenant"``; live-only tables are reported
            only for full restores.
        excluded_tables: Tables ignored on both sides.

    Returns:
        ``RestoreValidation``; ``compatible`` is ``False`` iff any error.

    Examples:
        >>> from datetime import datetime, timezone
        >>> m = BackupManifest(backup_id="b", format_version=1,
        ...                    schema_version="7", created_at=datetime.now(timezone.utc))
        >>> validate_restore(m, ["orders"], ["orders"], "8").compatible
        False
        >>> validate_restore(m, ["orders"], ["orders"], "unknown").compatible
        True
    """
    warnings: list[str] = []
    errors: list[str] = []

    backup_set = set(backup_tables) - excluded_tables
    live_set = set(live_tables) - excluded_tables

    for table in sorted(backup_set - live_set):
        warnings.append(f"Table '{table}' exists in backup but not in live schema; it will be skipped")

    if scope == "full":
        for table in sorted(live_set - backup_set):
            warnings.append(f"Table '{table}' exists in live schema but not in backup; it will be truncated to empty")

    if manifest.format_version not in SUPPORTED_FORMAT_VERSIONS:
        supported = ", ".join(str(v) for v in sorted(SUPPORTED_FORMAT_VERSIONS))
        errors.append(
            f"Unsupported backup format version {manifest.format_version} (supported: {supported})"
        )

    backup_version = manifest.schema_version
    if (
        backup_version != UNKNOWN_SCHEMA_VERSION
        and live_schema_version != UNKNOWN_SCHEMA_VERSION
        and backup_version != live_schema_version
    ):
        errors.append(
            f"Schema version mismatch: backup was taken at migration {backup_version}, "
            f"live database is at migration {live_schema_version}"
        )

    return RestoreValidation(warnings=warnings, errors=errors)


def validate_payload(
    payload: BackupPayload,
    live_tables: list[str],
    live_schema_version: str,
    *,
    excluded_tables: frozenset[str] = SYSTEM_TABLES,
) -> RestoreValidation:
    """Validate a fully materialized backup for a full restore."""
    return validate_restore(
        payload.manifest,
        list(payload.tables),
        live_tables,
        live_schema_version,
        excluded_tables=excluded_tables,
    )


def count_tenant_rows(rows: list[dict], tenant_id: str) -> int | None:
    """Rows belonging to ``tenant_id``, or ``None`` if rows carry no tenant column."""
    if not rows or not any(TENANT_COLUMN in row for row in rows):
        return None
    return sum(1 for row in rows if row.get(TENANT_COLUMN) == tenant_id)


def validate_tenant_restore(
    source: BackupReader | BackupPayload,
    tenant_id: str,
    live_tables: list[str],
    live_schema_version: str,
    *,
    excluded_tables: frozenset[str] = SYSTEM_TABLES,
) -> TenantRestoreValidation:
    """Validate a backup for restoring one tenant's rows.

    Scans each backup table that also exists live, counting rows whose
    ``tenant_id`` matches.  A reader is walked one table at a time.

    Returns:
        ``TenantRestoreValidation`` with the base checks plus the tables
        holding tenant rows and the row counts.  No rows for the tenant
        anywhere is a warning, not an error.
    """
    if isinstance(source, BackupPayload):
        manifest = source.manifest
        backup_tables = list(source.tables)

        def load(table: str) -> list[dict] | None:
            return source.tables.get(table)
    else:
        manifest = source.manifest()
        backup_tables = source.table_names()
        load = source.rows

    base = validate_restore(
        manifest,
        backup_tables,
        live_tables,
        live_schema_version,
        scope="tenant",
        excluded_tables=excluded_tables,
    )

    live_set = set(live_tables) - excluded_tables
    tenant_tables: list[str] = []
    row_counts: dict[str, int] = {}

    for table in sorted(set(backup_tables) & live_set):
        rows = load(table)
        if not rows:
            continue
        count = count_tenant_rows(rows, tenant_id)
        if count:
            tenant_tables.append(table)
            row_counts[table] = count

    warnings = list(base.warnings)
    total = sum(row_counts.values())
    if total == 0:
        warnings.append(f"Backup contains no rows for tenant '{tenant_id}'")

    return TenantRestoreValidation(
        warnings=warnings,
        errors=list(base.errors),
        tenant_tables=tenant_tables,
        tenant_row_count=total,
        tenant_row_counts=row_counts,
    )
