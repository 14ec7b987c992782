"""PostgreSQL identifier quoting.

Table, column, sequence, and role names used by the restore engine come
from the system catalog or from operator config, never from request data.
They are quoted, not bound as parameters; values always travel as bind
parameters.
"""


def quote_ident(name: str) -> str:
    """Quote a single identifier.

    Example:
        >>> quote_ident("order_lines")
        '"order_lines"'
        >>> quote_ident('we"ird')
        '"we""ird"'
    """
    return '"' + name.replace('"', '""') + '"'


def quote_qualified(name: str, schema: str | None = None) -> str:
    """Quote ``schema.name``; a dotted ``name`` is split on its first dot.

    Example:
        >>> quote_qualified("orders", "public")
        '"public"."orders"'
        >>> quote_qualified("drizzle.__drizzle_migrations")
        '"drizzle"."__drizzle_migrations"'
    """
    if schema is None and "." in name:
        schema, name = name.split(".", 1)
    if schema is None:
        return quote_ident(name)
    return f"{quote_ident(schema)}.{quote_ident(name)}"
