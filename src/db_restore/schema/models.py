"""Models and constants describing the live database schema.

- ``SYSTEM_TABLES``: tables no restore ever reads, truncates, or writes
"""

UNKNOWN_SCHEMA_VERSION = "unknown"


# Never touched by restore: migration bookkeeping, the backup catalog,
# restore operations themselves, backup settings, distributed locks.
SYSTEM_TABLES: frozenset[str] = frozenset(
    {
        "__drizzle_migrations",
        "drizzle_migrations",
        "schema_migrations",
        "platform_backups",
        "platform_backup_settings",
        "platform_restore_operations",
        "distributed_locks",
    }
)


def excluded_tables(extra: list[str] | None = None) -> frozenset[str]:
    """System tables plus any configured extras."""
    return SYSTEM_TABLES | frozenset(extra or [])

