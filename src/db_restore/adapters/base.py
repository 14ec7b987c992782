"""Database client protocol definitions.

Defines the ``DatabaseClient`` Protocol used for out-of-transaction work
(operation records, progress, backup dumps) and the ``TransactionClient``
Protocol used for everything inside the restore transaction.

Example:
    async with client.transaction() as tx:
        await tx.execute("SET CONSTRAINTS ALL DEFERRED")
        await tx.execute("TRUNCATE TABLE orders CASCADE")
"""

from contextlib import AbstractAsyncContextManager
from typing import Any, Protocol


class TransactionClient(Protocol):
    """Statement interface bound to a single open transaction.

    Every call runs on the same connection.  Nothing is durable until the
    enclosing ``DatabaseClient.transaction()`` block exits cleanly; an
    exception anywhere rolls the whole block back.
    """

    async def execute(self, sql: str, params: dict | None = None) -> None:
        """Execute a statement, discarding any result rows."""
        ...

    async def fetch_all(self, sql: str, params: dict | None = None) -> list[dict]:
        """Execute a query and return every row as a dict."""
        ...

    async def fetch_scalar(self, sql: str, params: dict | None = None) -> Any:
        """Execute a query and return the first column of the first row."""
        ...

    def savepoint(self) -> AbstractAsyncContextManager[None]:
        """Open a SAVEPOINT; an exception inside rolls back to it only."""
        ...


class DatabaseClient(Protocol):
    """Pooled access for operation records, progress, and backup dumps.

    Each CRUD call commits on its own; only ``transaction()`` groups
    statements.
    """

    async def select(
        self,
        table: str,
        columns: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
    ) -> list[dict]:
        """Rows matching every ``filters`` equality, as JSON-compatible dicts.

        ``columns`` and ``order_by`` are SQL fragments, e.g. ``"id, status"``
        and ``"created_at DESC"``.
        """
        ...

    async def insert(self, table: str, data: dict) -> dict:
        """Insert one row and return it as stored; constraint errors propagate."""
        ...

    async def update(self, table: str, data: dict, filters: dict[str, Any]) -> dict:
        """Update matching rows and return the first.

        Raises:
            ValueError: If nothing matched; used as a compare-and-set miss.
        """
        ...

    async def execute(self, sql: str, params: dict | None = None) -> None:
        """Run one statement outside any restore transaction."""
        ...

    def transaction(self) -> AbstractAsyncContextManager[TransactionClient]:
        """Open one transaction on one connection for the block's duration.

        Example:
            async with client.transaction() as tx:
                await tx.execute("SET CONSTRAINTS ALL DEFERRED")
        """
        ...

    async def close(self) -> None:
        """Dispose of pooled connections."""
        ...
