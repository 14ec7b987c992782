"""Best-effort restore progress publishing.

Progress is written to the operation's ``metadata`` column over its own
pooled connection, outside the restore transaction, so polling clients see
it while the restore is still running.  A failed write is logged and
dropped; it never reaches the restore.
"""

import logging

from db_restore.adapters.base import DatabaseClient
from db_restore.backup.models import RestoreProgress

logger = logging.getLogger(__name__)


class ProgressReporter:
    """Writes ``RestoreProgress`` snapshots to the operations table."""

    def __init__(self, adapter: DatabaseClient, table: str = "platform_restore_operations") -> None:
        self._adapter = adapter
        self._table = table

    async def report(self, operation_id: str, progress: RestoreProgress) -> None:
        """Publish ``progress``; never raises."""
        try:
            await self._adapter.update(
                self._table,
                data={"metadata": progress.model_dump(mode="json")},
                filters={"id": operation_id},
            )
        except Exception as e:
            logger.warning(
                f"Failed to report progress for restore {operation_id} "
                f"(phase={progress.phase}): {e}"
            )
