"""Foreign-key-aware table ordering.

Inserting tables in ``order()`` never violates a foreign key; walking the
same list in reverse is safe for truncation and deletion (children first).

Usage:
    from db_restore.schema.dependencies import DependencyResolver

    resolver = DependencyResolver(database_url)
    ordered = await resolver.order(["order_lines", "orders", "customers"])
    # ['customers', 'orders', 'order_lines']
"""

from db_restore.schema.introspector import SchemaIntrospector


def topological_sort(dependencies: dict[str, set[str]], tables: list[str]) -> list[str]:
    """Topological sort of tables based on FK dependencies.

    Returns tables in forward order: parent tables first, child tables last.
    Input order is kept wherever the graph allows it, so the result is
    deterministic for a given input.  Cycles are broken at the point they
    are detected.

    Args:
        dependencies: FK dependency graph (table -> set of referenced tables).
        tables: List of table names to sort.

    Returns:
        Tables sorted so that parent tables come before child tables.

    Example:
        >>> topological_sort({"b": {"a"}}, ["b", "a"])
        ['a', 'b']
    """
    # Filter dependencies to only include relevant tables
    relevant = {t: dependencies.get(t, set()) & set(tables) for t in tables}

    sorted_tables: list[str] = []
    visited: set[str] = set()
    visiting: set[str] = set()  # For cycle detection

    def visit(table: str) -> None:
        if table in visited:
            return
        if table in visiting:
            # Cycle detected -- break it by just adding the table
            return
        visiting.add(table)
        for dep in sorted(relevant.get(table, set())):
            visit(dep)
        visiting.discard(table)
        visited.add(table)
        sorted_tables.append(table)

    for table in tables:
        visit(table)

    return sorted_tables


class DependencyResolver:
    """Orders tables using the live FK graph and reports the schema version.

    Each call opens its own short introspection connection; nothing is
    cached between restores.
    """

    def __init__(
        self,
        database_url: str,
        schema_name: str = "public",
        migrations_table: str = "drizzle.__drizzle_migrations",
    ) -> None:
        self._database_url = database_url
        self._schema_name = schema_name
        self._migrations_table = migrations_table

    def _introspector(self) -> SchemaIntrospector:
        return SchemaIntrospector(
            self._database_url,
            schema_name=self._schema_name,
            migrations_table=self._migrations_table,
        )

    async def order(self, tables: list[str]) -> list[str]:
        async with self._introspector() as introspector:
            edges = await introspector.get_foreign_keys()
        return topological_sort(edges, sorted(tables))

    async def schema_version(self) -> str:
        async with self._introspector() as introspector:
            return await introspector.get_schema_version()

    async def live_tables(self) -> list[str]:
        async with self._introspector() as introspector:
            return await introspector.get_table_names()

