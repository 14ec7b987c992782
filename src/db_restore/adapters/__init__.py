"""Database adapters package.

Provides the ``DatabaseClient`` and ``TransactionClient`` Protocols and the
async PostgreSQL implementation.

Usage:
    from db_restore.adapters import DatabaseClient, AsyncPostgresAdapter
"""

from db_restore.adapters.base import DatabaseClient, TransactionClient
from db_restore.adapters.postgres import AsyncPostgresAdapter, AsyncPostgresTransaction

__all__ = [
    "DatabaseClient",
    "TransactionClient",
    "AsyncPostgresAdapter",
    "AsyncPostgresTransaction",
]
