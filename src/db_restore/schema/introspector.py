"""PostgreSQL schema introspection via information_schema and pg_catalog.

This module queries the live database for what a restore needs to know:
- Base table names
- Foreign-key edges between tables (for dependency ordering)
- The migration index (schema version) from the migration bookkeeping table

Uses psycopg (v3) ``AsyncConnection`` for PostgreSQL connections.

Usage:
    async with SchemaIntrospector(database_url) as introspector:
        tables = await introspector.get_table_names()
        version = await introspector.get_schema_version()
"""

from psycopg import AsyncConnection

from db_restore.schema.models import UNKNOWN_SCHEMA_VERSION
from db_restore.schema.identifiers import quote_qualified


class SchemaIntrospector:
    """Introspects a PostgreSQL database schema.

    Works with any PostgreSQL database (RDS, Supabase, local).

    Usage:
        async with SchemaIntrospector(database_url) as introspector:
            tables = await introspector.get_table_names()
            edges = await introspector.get_foreign_keys()
    """

    # Extension-owned tables, never part of application data
    EXCLUDED_TABLES = {
        "pg_stat_statements",
        "spatial_ref_sys",
    }

    def __init__(
        self,
        database_url: str,
        schema_name: str = "public",
        migrations_table: str = "drizzle.__drizzle_migrations",
    ):
        """Initialize with database connection URL.

        Args:
            database_url: PostgreSQL connection URL (plain ``postgresql://``).
            schema_name: Schema holding application tables.
            migrations_table: Optionally schema-qualified migration
                bookkeeping table whose row count is the schema version.
        """
        self._database_url = database_url
        self._schema_name = schema_name
        self._migrations_table = migrations_table
        self._conn: AsyncConnection | None = None

    async def __aenter__(self) -> "SchemaIntrospector":
        """Async context manager entry - opens connection."""
        url = self._database_url
        if "connect_timeout" not in url:
            separator = "&" if "?" in url else "?"
            url = f"{url}{separator}connect_timeout=10"

        self._conn = await AsyncConnection.connect(url, autocommit=True)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit - closes connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    def _require_conn(self) -> AsyncConnection:
        if not self._conn:
            raise RuntimeError("Introspector not connected. Use async with statement.")
        return self._conn

    async def get_table_names(self) -> list[str]:
        """Get all base table names in the schema, sorted."""
        conn = self._require_conn()
        query = """
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = %s
              AND table_type = 'BASE TABLE'
            ORDER BY table_name
        """
        async with conn.cursor() as cur:
            await cur.execute(query, (self._schema_name,))
            rows = await cur.fetchall()
        return [row[0] for row in rows if row[0] not in self.EXCLUDED_TABLES]

    async def get_foreign_keys(self) -> dict[str, set[str]]:
        """Get the FK dependency graph.

        Returns:
            Dict mapping each referencing (child) table to the set of
            tables it references.  Self-references are omitted.
        """
        conn = self._require_conn()
        query = """
            SELECT DISTINCT child.relname, parent.relname
            FROM pg_constraint con
            JOIN pg_class child ON child.oid = con.conrelid
            JOIN pg_class parent ON parent.oid = con.confrelid
            JOIN pg_namespace n ON n.oid = child.relnamespace
            WHERE con.contype = 'f'
              AND n.nspname = %s
        """
        edges: dict[str, set[str]] = {}
        async with conn.cursor() as cur:
            await cur.execute(query, (self._schema_name,))
            for child, parent in await cur.fetchall():
                if child == parent:
                    continue
                edges.setdefault(child, set()).add(parent)
        return edges

    async def get_schema_version(self) -> str:
        """Get the live migration index.

        Returns:
            Number of applied migrations as a string, or ``"unknown"`` when
            the bookkeeping table does not exist.
        """
        conn = self._require_conn()
        qualified = quote_qualified(self._migrations_table)
        async with conn.cursor() as cur:
            await cur.execute("SELECT to_regclass(%s)", (qualified,))
            row = await cur.fetchone()
            if row is None or row[0] is None:
                return UNKNOWN_SCHEMA_VERSION
            await cur.execute(f"SELECT count(*) FROM {qualified}")
            row = await cur.fetchone()
        return str(row[0]) if row else UNKNOWN_SCHEMA_VERSION
