"""Batched multi-row INSERTs for restored rows.

Backup rows are JSON, so a value's Python type decides how it is bound:

- ``None``: SQL NULL
- list of scalars: PostgreSQL array literal (``{"a","b"}``), each element escaped
- list containing an object: JSON text cast to ``jsonb``
- ``{"type": "Buffer", "data": [...]}``: raw ``bytes`` (captured binary column)
- any other dict: JSON text cast to ``jsonb``
- everything else: bound as-is

Usage:
    from db_restore.restore.batch import insert_rows

    async with adapter.transaction() as tx:
        inserted = await insert_rows(tx, "orders", ["id", "total"], rows)
"""

import json
import logging
from typing import Any

from db_restore.adapters.base import TransactionClient
from db_restore.schema.identifiers import quote_ident, quote_qualified

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 1000

# PostgreSQL's wire protocol caps bind parameters per statement
MAX_BIND_PARAMS = 65535


def is_buffer(value: dict) -> bool:
    """True for the ``{"type": "Buffer", "data": [ints]}`` binary wrapper."""
    return (
        value.get("type") == "Buffer"
        and isinstance(value.get("data"), list)
        and set(value) == {"type", "data"}
    )


def _has_object(values: list) -> bool:
    return any(isinstance(v, dict) or (isinstance(v, list) and _has_object(v)) for v in values)


def _array_element(value: Any) -> str:
    if value is None:
        return "NULL"
    if isinstance(value, list):
        return array_literal(value)
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    text = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{text}"'


def array_literal(values: list) -> str:
    """Render a list as a PostgreSQL array literal.

    Example:
        >>> array_literal(["a", None, 3])
        '{"a",NULL,3}'
    """
    return "{" + ",".join(_array_element(v) for v in values) + "}"


def serialize_value(value: Any) -> tuple[Any, str | None]:
    """Convert a backup value into a bind parameter.

    Returns:
        ``(param, cast)`` where ``cast`` is a SQL type name to wrap the
        placeholder in, or ``None``.
    """
    if value is None:
        return None, None
    if isinstance(value, list):
        if _has_object(value):
            return json.dumps(value), "jsonb"
        return array_literal(value), None
    if isinstance(value, dict):
        if is_buffer(value):
            return bytes(value["data"]), None
        return json.dumps(value), "jsonb"
    return value, None


def build_insert(
    table: str,
    columns: list[str],
    rows: list[dict[str, Any]],
    schema_name: str | None = None,
) -> tuple[str, dict[str, Any]]:
    """Build one parameterized multi-row INSERT.

    Columns missing from a row are inserted as NULL.

    Returns:
        ``(sql, params)`` ready for ``TransactionClient.execute``.
    """
    params: dict[str, Any] = {}
    value_groups: list[str] = []

    for r, row in enumerate(rows):
        placeholders: list[str] = []
        for c, column in enumerate(columns):
            name = f"r{r}_c{c}"
            param, cast = serialize_value(row.get(column))
            params[name] = param
            placeholders.append(f"CAST(:{name} AS {cast})" if cast else f":{name}")
        value_groups.append("(" + ", ".join(placeholders) + ")")

    column_list = ", ".join(quote_ident(c) for c in columns)
    sql = (
        f"INSERT INTO {quote_qualified(table, schema_name)} ({column_list}) "
        f"VALUES {', '.join(value_groups)}"
    )
    return sql, params


def effective_batch_size(batch_size: int, column_count: int) -> int:
    """Largest batch not above ``batch_size`` that fits the bind-parameter cap."""
    per_statement = MAX_BIND_PARAMS // max(1, column_count)
    return max(1, min(batch_size, per_statement))


async def insert_rows(
    tx: TransactionClient,
    table: str,
    columns: list[str],
    rows: list[dict[str, Any]],
    batch_size: int = DEFAULT_BATCH_SIZE,
    schema_name: str | None = None,
) -> int:
    """Insert ``rows`` in fixed-size batches inside ``tx``.

    Returns:
        Number of rows inserted.
    """
    if not rows or not columns:
        return 0

    size = effective_batch_size(batch_size, len(columns))
    inserted = 0
    for start in range(0, len(rows), size):
        batch = rows[start:start + size]
        sql, params = build_insert(table, columns, batch, schema_name)
        await tx.execute(sql, params)
        inserted += len(batch)
        logger.debug(f"Inserted batch of {len(batch)} rows into {table} ({inserted}/{len(rows)})")
    return inserted
