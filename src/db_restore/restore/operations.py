"""Persisted restore operations and their approval workflow.

Every status change goes through a conditional update that names the
status it expects to replace, so two callers racing on the same operation
cannot both win.

Usage:
    from db_restore.restore.operations import RestoreOperationStore

    store = RestoreOperationStore(adapter)
    op = await store.create("bk_20261001_020000_ab12cd34", requested_by="alice")
    op = await store.approve(op.id, approved_by="bob")
"""

import logging
import uuid
from typing import Any

from db_restore.adapters.base import DatabaseClient
from db_restore.backup.models import RestoreOperation, RestoreStatus, utc_now
from db_restore.restore.errors import InvalidOperationStateError, RestoreOperationNotFoundError

logger = logging.getLogger(__name__)

OPERATION_COLUMNS = (
    "id, backup_id, scope_tenant_id, status, safety_backup_id, tables_restored, "
    "rows_restored, error_message, metadata, requested_by, approved_by, approved_at, "
    "rejected_reason, created_at, started_at, completed_at"
)


def _to_operation(row: dict[str, Any]) -> RestoreOperation:
    data = dict(row)
    if data.get("metadata") is None:
        data["metadata"] = {}
    for counter in ("tables_restored", "rows_restored"):
        if data.get(counter) is None:
            data[counter] = 0
    return RestoreOperation(**data)


def _to_row(fields: dict[str, Any]) -> dict[str, Any]:
    return {k: (v.value if isinstance(v, RestoreStatus) else v) for k, v in fields.items()}


class RestoreOperationStore:
    """CRUD and state transitions for ``platform_restore_operations``."""

    def __init__(self, adapter: DatabaseClient, table: str = "platform_restore_operations") -> None:
        self._adapter = adapter
        self._table = table

    @property
    def table(self) -> str:
        return self._table

    async def get(self, operation_id: str) -> RestoreOperation | None:
        rows = await self._adapter.select(self._table, OPERATION_COLUMNS, filters={"id": operation_id})
        if not rows:
            return None
        return _to_operation(rows[0])

    async def require(self, operation_id: str) -> RestoreOperation:
        """Like ``get`` but raises ``RestoreOperationNotFoundError``."""
        operation = await self.get(operation_id)
        if operation is None:
            raise RestoreOperationNotFoundError(operation_id)
        return operation

    async def create(
        self,
        backup_id: str,
        scope_tenant_id: str | None = None,
        requested_by: str | None = None,
    ) -> RestoreOperation:
        """Record a new restore request awaiting approval."""
        row = await self._adapter.insert(
            self._table,
            {
                "id": str(uuid.uuid4()),
                "backup_id": backup_id,
                "scope_tenant_id": scope_tenant_id,
                "status": RestoreStatus.PENDING_APPROVAL.value,
                "requested_by": requested_by,
                "metadata": {},
                "created_at": utc_now(),
            },
        )
        operation = _to_operation(row)
        scope = f"tenant {scope_tenant_id}" if scope_tenant_id else "full database"
        logger.info(f"Restore {operation.id} requested from {backup_id} ({scope})")
        return operation

    async def approve(self, operation_id: str, approved_by: str) -> RestoreOperation:
        return await self.transition(
            operation_id,
            RestoreStatus.PENDING_APPROVAL,
            RestoreStatus.APPROVED,
            action="approve",
            approved_by=approved_by,
            approved_at=utc_now(),
        )

    async def reject(
        self,
        operation_id: str,
        reason: str,
        rejected_by: str | None = None,
    ) -> RestoreOperation:
        fields: dict[str, Any] = {"rejected_reason": reason, "completed_at": utc_now()}
        if rejected_by is not None:
            fields["approved_by"] = rejected_by
        return await self.transition(
            operation_id,
            RestoreStatus.PENDING_APPROVAL,
            RestoreStatus.REJECTED,
            action="reject",
            **fields,
        )

    async def transition(
        self,
        operation_id: str,
        expected: RestoreStatus,
        new: RestoreStatus,
        action: str = "continue",
        **fields: Any,
    ) -> RestoreOperation:
        """Move ``expected`` to ``new`` atomically, writing ``fields`` alongside.

        Raises:
            RestoreOperationNotFoundError: If the operation does not exist.
            InvalidOperationStateError: If the operation is not in ``expected``,
                including when another caller got there first.
        """
        data = _to_row({"status": new, **fields})
        try:
            row = await self._adapter.update(
                self._table,
                data=data,
                filters={"id": operation_id, "status": expected.value},
            )
        except ValueError:
            current = await self.get(operation_id)
            if current is None:
                raise RestoreOperationNotFoundError(operation_id) from None
            raise InvalidOperationStateError(operation_id, current.status, expected, action) from None

        logger.debug(f"Restore {operation_id}: {expected} -> {new}")
        return _to_operation(row)

    async def update(self, operation_id: str, **fields: Any) -> RestoreOperation:
        """Write ``fields`` without checking status.

        Raises:
            RestoreOperationNotFoundError: If the operation does not exist.
        """
        try:
            row = await self._adapter.update(
                self._table, data=_to_row(fields), filters={"id": operation_id}
            )
        except ValueError:
            raise RestoreOperationNotFoundError(operation_id) from None
        return _to_operation(row)

    async def list_operations(self, status: RestoreStatus | None = None) -> list[RestoreOperation]:
        """Operations, newest first, optionally filtered by status."""
        filters = {"status": status.value} if status is not None else None
        rows = await self._adapter.select(
            self._table, OPERATION_COLUMNS, filters=filters, order_by="created_at DESC"
        )
        return [_to_operation(row) for row in rows]
