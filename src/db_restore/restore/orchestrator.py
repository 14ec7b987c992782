"""Restore orchestration: the approved -> in_progress -> completed|failed state machine.

A restore runs in this order:

1. ``approved -> in_progress`` via a conditional update
2. Safety backup, outside the restore transaction, its id persisted at once
3. Open the backup reader
4. Validate the manifest and table list against the live schema
5. Scope: backup tables that also exist live, minus system tables
6. Dependency order from the live FK graph
7. One transaction: timeouts, advisory lock, RLS bypass, deferred
   constraints, truncate or tenant delete, batched inserts, sequence reset
8. ``in_progress -> completed``

Anything that fails after step 1 marks the operation ``failed`` with the
error message and re-raises.  The transaction rolls back as a whole, so
the database is either unchanged or fully restored; the safety backup is
there either way.

Usage:
    from db_restore.restore.orchestrator import RestoreOrchestrator

    orchestrator = RestoreOrchestrator(
        adapter, store, resolver, writer, operations, ProgressReporter(adapter)
    )
    result = await orchestrator.execute(operation_id)
"""

import asyncio
import logging
from typing import Any

from db_restore.adapters.base import DatabaseClient, TransactionClient
from db_restore.backup.models import (
    RestoreOperation,
    RestorePhase,
    RestoreProgress,
    RestoreResult,
    RestoreStatus,
    RestoreValidation,
    utc_now,
)
from db_restore.backup.reader import BackupReader, BackupStore
from db_restore.backup.writer import BackupCreator
from db_restore.config.models import RestoreSettings
from db_restore.restore.batch import insert_rows
from db_restore.restore.errors import (
    InvalidOperationStateError,
    RestoreLockError,
    RestorePreconditionError,
    RestoreValidationError,
)
from db_restore.restore.operations import RestoreOperationStore
from db_restore.restore.privileges import (
    PrivilegeStrategy,
    default_strategies,
    escalate_privileges,
)
from db_restore.restore.progress import ProgressReporter
from db_restore.restore.validator import TENANT_COLUMN, validate_restore, validate_tenant_restore
from db_restore.schema.dependencies import DependencyResolver
from db_restore.schema.identifiers import quote_ident, quote_qualified
from db_restore.schema.models import excluded_tables

logger = logging.getLogger(__name__)

TRUNCATE_PROGRESS_INTERVAL = 10

DATABASE_LOCK_KEY = "db-restore:database"

TENANT_TABLES_QUERY = """
    SELECT DISTINCT table_name
    FROM information_schema.columns
    WHERE table_schema = :schema AND column_name = :column
"""

OWNED_SEQUENCES_QUERY = """
    SELECT
        seq.relname AS sequence_name,
        tbl.relname AS table_name,
        att.attname AS column_name
    FROM pg_class seq
    JOIN pg_depend dep
        ON dep.objid = seq.oid
        AND dep.classid = 'pg_class'::regclass
        AND dep.refclassid = 'pg_class'::regclass
    JOIN pg_class tbl ON tbl.oid = dep.refobjid
    JOIN pg_namespace ns ON ns.oid = tbl.relnamespace
    JOIN pg_attribute att ON att.attrelid = tbl.oid AND att.attnum = dep.refobjsubid
    WHERE seq.relkind = 'S'
        AND dep.deptype IN ('a', 'i')
        AND ns.nspname = :schema
    ORDER BY tbl.relname, att.attname
"""


def tenant_lock_key(tenant_id: str) -> str:
    return f"db-restore:tenant:{tenant_id}"


class RestoreOrchestrator:
    """Runs approved restore operations end to end.

    Args:
        adapter: Client used for the restore transaction.
        store: Where source backups are read from.
        resolver: Live schema: table list, version, FK order.
        creator: Takes the pre-restore safety backup.
        operations: Persisted operation records.
        reporter: Progress publisher; defaults to one over ``adapter``.
        settings: ``[restore]`` settings.
        strategies: RLS bypass strategies; defaults to the configured roles
            followed by ``row_security = off``.
    """

    def __init__(
        self,
        adapter: DatabaseClient,
        store: BackupStore,
        resolver: DependencyResolver,
        creator: BackupCreator,
        operations: RestoreOperationStore,
        reporter: ProgressReporter | None = None,
        settings: RestoreSettings | None = None,
        strategies: list[PrivilegeStrategy] | None = None,
    ) -> None:
        self._adapter = adapter
        self._store = store
        self._resolver = resolver
        self._creator = creator
        self._operations = operations
        self._settings = settings or RestoreSettings()
        self._reporter = reporter or ProgressReporter(adapter, self._settings.operations_table)
        self._strategies = strategies or default_strategies(
            self._settings.superuser_role, self._settings.admin_role
        )
        self._excluded = excluded_tables(self._settings.system_table_names())

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def execute(self, operation_id: str) -> RestoreResult:
        """Run the operation as a full or tenant-scoped restore, per its scope."""
        operation = await self._operations.require(operation_id)
        if operation.is_tenant_scoped:
            return await self.execute_tenant_restore(operation_id)
        return await self.execute_full_restore(operation_id)

    async def execute_full_restore(self, operation_id: str) -> RestoreResult:
        """Replace every non-system table with the backup's contents.

        Raises:
            RestorePreconditionError: If the operation is tenant-scoped or not
                ``approved``.  The record is left untouched.
            RestoreError: Any later failure, after marking the operation
                ``failed``.
        """
        operation = await self._operations.require(operation_id)
        if operation.is_tenant_scoped:
            raise RestorePreconditionError(
                f"Restore operation {operation_id} is scoped to tenant "
                f"{operation.scope_tenant_id}; use a tenant restore"
            )
        return await self._run(operation)

    async def execute_tenant_restore(self, operation_id: str) -> RestoreResult:
        """Replace one tenant's rows, leaving other tenants and platform tables alone.

        Raises:
            RestorePreconditionError: If the operation is not tenant-scoped or
                not ``approved``.  The record is left untouched.
            RestoreError: Any later failure, after marking the operation
                ``failed``.
        """
        operation = await self._operations.require(operation_id)
        if not operation.is_tenant_scoped:
            raise RestorePreconditionError(
                f"Restore operation {operation_id} is not tenant-scoped; use a full restore"
            )
        return await self._run(operation)

    async def preview(self, backup_id: str, scope_tenant_id: str | None = None) -> RestoreValidation:
        """Validate a backup against the live schema without changing anything."""
        with self._store.open(backup_id) as reader:
            live_tables, live_version = await self._live_schema()
            if scope_tenant_id is not None:
                return validate_tenant_restore(
                    reader,
                    scope_tenant_id,
                    live_tables,
                    live_version,
                    excluded_tables=self._excluded,
                )
            return validate_restore(
                reader.manifest(),
                reader.table_names(),
                live_tables,
                live_version,
                excluded_tables=self._excluded,
            )

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    async def _run(self, operation: RestoreOperation) -> RestoreResult:
        if operation.status != RestoreStatus.APPROVED:
            raise InvalidOperationStateError(
                operation.id, operation.status, RestoreStatus.APPROVED, action="execute"
            )

        operation = await self._operations.transition(
            operation.id,
            RestoreStatus.APPROVED,
            RestoreStatus.IN_PROGRESS,
            action="execute",
            started_at=utc_now(),
        )
        tenant_id = operation.scope_tenant_id
        scope = f"tenant {tenant_id}" if tenant_id else "full database"
        logger.info(f"Starting restore {operation.id} from {operation.backup_id} ({scope})")

        reader: BackupReader | None = None
        try:
            await self._report(operation.id, RestorePhase.SAFETY_BACKUP, message="Creating safety backup")
            safety = await self._creator.create(
                backup_type="pre_restore", label=f"Before restore {operation.id}"
            )
            await self._operations.transition(
                operation.id,
                RestoreStatus.IN_PROGRESS,
                RestoreStatus.IN_PROGRESS,
                safety_backup_id=safety.backup_id,
            )
            logger.info(f"Safety backup {safety.backup_id} recorded for restore {operation.id}")

            await self._report(operation.id, RestorePhase.LOADING, message=f"Opening {operation.backup_id}")
            reader = self._store.open(operation.backup_id)

            await self._report(operation.id, RestorePhase.VALIDATING)
            live_tables, live_version = await self._live_schema()
            validation = validate_restore(
                reader.manifest(),
                reader.table_names(),
                live_tables,
                live_version,
                scope="tenant" if tenant_id else "full",
                excluded_tables=self._excluded,
            )
            for warning in validation.warnings:
                logger.warning(f"Restore {operation.id}: {warning}")
            if not validation.compatible:
                raise RestoreValidationError(validation)

            live_set = set(live_tables) - self._excluded
            candidates = set(reader.table_names()) & live_set
            ordered_live = await self._resolver.order(sorted(live_set))
            ordered = [t for t in ordered_live if t in candidates]

            async with self._adapter.transaction() as tx:
                await self._prepare_transaction(tx, tenant_id)
                if tenant_id:
                    tables_restored, rows_restored = await self._restore_tenant(
                        tx, operation.id, reader, ordered, tenant_id
                    )
                else:
                    tables_restored, rows_restored = await self._restore_full(
                        tx, operation.id, reader, ordered, ordered_live
                    )

            progress = RestoreProgress(
                phase=RestorePhase.COMPLETE,
                total_tables=len(ordered),
                rows_inserted=rows_restored,
                message="Restore complete",
            )
            await self._operations.transition(
                operation.id,
                RestoreStatus.IN_PROGRESS,
                RestoreStatus.COMPLETED,
                tables_restored=tables_restored,
                rows_restored=rows_restored,
                completed_at=utc_now(),
                metadata=progress.model_dump(mode="json"),
            )
            logger.info(
                f"Restore {operation.id} completed: {tables_restored} tables, {rows_restored} rows"
            )
            return RestoreResult(
                operation_id=operation.id,
                status=RestoreStatus.COMPLETED,
                safety_backup_id=safety.backup_id,
                tables_restored=tables_restored,
                rows_restored=rows_restored,
                warnings=validation.warnings,
            )
        except Exception as e:
            await self._mark_failed(operation.id, e)
            raise
        finally:
            if reader is not None:
                reader.release()

    async def _mark_failed(self, operation_id: str, error: Exception) -> None:
        logger.error(f"Restore {operation_id} failed: {error}")
        try:
            await self._operations.transition(
                operation_id,
                RestoreStatus.IN_PROGRESS,
                RestoreStatus.FAILED,
                error_message=str(error),
                completed_at=utc_now(),
            )
        except Exception:
            logger.exception(f"Could not mark restore {operation_id} as failed")

    # ------------------------------------------------------------------
    # Transactional phase
    # ------------------------------------------------------------------

    async def _prepare_transaction(self, tx: TransactionClient, tenant_id: str | None) -> None:
        settings = self._settings
        await tx.execute(
            "SELECT set_config('statement_timeout', :value, true)",
            {"value": settings.statement_timeout},
        )
        await tx.execute(
            "SELECT set_config('idle_in_transaction_session_timeout', :value, true)",
            {"value": settings.idle_in_transaction_session_timeout},
        )

        if settings.advisory_lock:
            await self._acquire_locks(tx, tenant_id)

        await escalate_privileges(tx, self._strategies)
        await tx.execute("SET CONSTRAINTS ALL DEFERRED")

    async def _acquire_locks(self, tx: TransactionClient, tenant_id: str | None) -> None:
        if tenant_id is None:
            acquired = await tx.fetch_scalar(
                "SELECT pg_try_advisory_xact_lock(hashtext(:key))", {"key": DATABASE_LOCK_KEY}
            )
            if not acquired:
                raise RestoreLockError("Another restore is running against this database")
            return

        acquired = await tx.fetch_scalar(
            "SELECT pg_try_advisory_xact_lock_shared(hashtext(:key))", {"key": DATABASE_LOCK_KEY}
        )
        if not acquired:
            raise RestoreLockError("A full-database restore is running")
        acquired = await tx.fetch_scalar(
            "SELECT pg_try_advisory_xact_lock(hashtext(:key))", {"key": tenant_lock_key(tenant_id)}
        )
        if not acquired:
            raise RestoreLockError(f"Another restore is running for tenant {tenant_id}")

    async def _restore_full(
        self,
        tx: TransactionClient,
        operation_id: str,
        reader: BackupReader,
        ordered: list[str],
        ordered_live: list[str],
    ) -> tuple[int, int]:
        schema = self._settings.schema_name

        # Every live table, so live-only tables end up empty
        to_truncate = list(reversed(ordered_live))
        total = len(to_truncate)
        for index, table in enumerate(to_truncate):
            if index % TRUNCATE_PROGRESS_INTERVAL == 0:
                await self._report(
                    operation_id,
                    RestorePhase.TRUNCATING,
                    current_table=table,
                    table_index=index,
                    total_tables=total,
                )
            await tx.execute(f"TRUNCATE TABLE {quote_qualified(table, schema)} CASCADE")
        logger.info(f"Truncated {total} tables")

        tables_restored, rows_restored = await self._insert_tables(
            tx, operation_id, reader, ordered, tenant_id=None
        )

        await self._report(operation_id, RestorePhase.SEQUENCES, rows_inserted=rows_restored)
        await self._reset_sequences(tx, set(ordered_live))
        return tables_restored, rows_restored

    async def _restore_tenant(
        self,
        tx: TransactionClient,
        operation_id: str,
        reader: BackupReader,
        ordered: list[str],
        tenant_id: str,
    ) -> tuple[int, int]:
        schema = self._settings.schema_name

        rows = await tx.fetch_all(TENANT_TABLES_QUERY, {"schema": schema, "column": TENANT_COLUMN})
        with_tenant_column = {row["table_name"] for row in rows}
        tenant_tables = [t for t in ordered if t in with_tenant_column]
        skipped = len(ordered) - len(tenant_tables)
        if skipped:
            logger.info(f"Leaving {skipped} tables without a {TENANT_COLUMN} column untouched")

        to_delete = list(reversed(tenant_tables))
        for index, table in enumerate(to_delete):
            await self._report(
                operation_id,
                RestorePhase.TRUNCATING,
                current_table=table,
                table_index=index,
                total_tables=len(to_delete),
            )
            await tx.execute(
                f"DELETE FROM {quote_qualified(table, schema)} "
                f"WHERE {quote_ident(TENANT_COLUMN)} = :tenant_id",
                {"tenant_id": tenant_id},
            )
        logger.info(f"Deleted tenant {tenant_id} rows from {len(to_delete)} tables")

        # Shared sequences already sit above every tenant's rows
        return await self._insert_tables(tx, operation_id, reader, tenant_tables, tenant_id=tenant_id)

    async def _insert_tables(
        self,
        tx: TransactionClient,
        operation_id: str,
        reader: BackupReader,
        tables: list[str],
        tenant_id: str | None,
    ) -> tuple[int, int]:
        settings = self._settings
        tables_restored = 0
        rows_restored = 0

        for index, table in enumerate(tables):
            rows = reader.rows(table)
            if tenant_id is not None and rows:
                rows = [row for row in rows if row.get(TENANT_COLUMN) == tenant_id]
            if not rows:
                logger.debug(f"Skipping {table}: no rows to restore")
                continue

            await self._report(
                operation_id,
                RestorePhase.INSERTING,
                current_table=table,
                table_index=index,
                total_tables=len(tables),
                rows_inserted=rows_restored,
            )
            columns = list(rows[0].keys())
            inserted = await insert_rows(
                tx, table, columns, rows, settings.batch_size, settings.schema_name
            )
            tables_restored += 1
            rows_restored += inserted
            logger.info(f"Restored {inserted} rows into {table}")

        return tables_restored, rows_restored

    async def _reset_sequences(self, tx: TransactionClient, tables: set[str]) -> None:
        schema = self._settings.schema_name
        owned = await tx.fetch_all(OWNED_SEQUENCES_QUERY, {"schema": schema})

        reset = 0
        for row in owned:
            table = row["table_name"]
            if table not in tables:
                continue
            column = quote_ident(row["column_name"])
            qualified = quote_qualified(table, schema)
            await tx.execute(
                f"SELECT setval(CAST(:sequence AS regclass), "
                f"COALESCE((SELECT MAX({column}) FROM {qualified}), 1), "
                f"(SELECT MAX({column}) FROM {qualified}) IS NOT NULL)",
                {"sequence": quote_qualified(row["sequence_name"], schema)},
            )
            reset += 1
        logger.info(f"Reset {reset} sequences")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _live_schema(self) -> tuple[list[str], str]:
        live_tables, live_version = await asyncio.gather(
            self._resolver.live_tables(), self._resolver.schema_version()
        )
        return live_tables, live_version

    async def _report(self, operation_id: str, phase: RestorePhase, **fields: Any) -> None:
        await self._reporter.report(operation_id, RestoreProgress(phase=phase, **fields))
