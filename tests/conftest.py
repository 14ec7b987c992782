"""Shared fakes for restore engine tests.

- ``FakeDatabase``: in-memory tables behind a ``transaction()`` that
  interprets the statements the orchestrator issues and rolls back on error
- ``InMemoryAdapter``: dict-backed ``select``/``insert``/``update`` for the
  operations table
- ``FakeResolver``: fixed live tables, schema version, and FK edges
- ``write_backup``: writes an archive in the on-disk backup format
"""

import copy
import gzip
import json
import re
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

import pytest

from db_restore.backup.models import BackupRef
from db_restore.backup.reader import BackupReader, BackupStore
from db_restore.restore.operations import RestoreOperationStore
from db_restore.schema.dependencies import topological_sort

_QUALIFIED = re.compile(r'"[^"]+"\."([^"]+)"')
_MAX_COLUMN = re.compile(r'MAX\("([^"]+)"\)')
_ROLE = re.compile(r'SET LOCAL ROLE "([^"]+)"')
_INSERT = re.compile(r'INSERT INTO "[^"]+"\."[^"]+" \((.*?)\) VALUES')
_PARAM = re.compile(r"r(\d+)_c(\d+)")


# ------------------------------------------------------------------
# Backup archives
# ------------------------------------------------------------------


def write_backup(
    directory: Path,
    backup_id: str,
    tables: dict[str, list[dict]],
    schema_version: str = "7",
    format_version: int = 1,
) -> Path:
    """Write a backup archive in the format ``BackupStore`` reads."""
    path = directory / backup_id
    (path / "tables").mkdir(parents=True)
    for name, rows in tables.items():
        with gzip.open(path / "tables" / f"{name}.json.gz", "wt", encoding="utf-8") as f:
            json.dump(rows, f)
    manifest = {
        "backup_id": backup_id,
        "format_version": format_version,
        "schema_version": schema_version,
        "created_at": datetime(2026, 10, 1, 2, 0, tzinfo=timezone.utc).isoformat(),
        "backup_type": "scheduled",
        "table_counts": {name: len(rows) for name, rows in tables.items()},
        "tables": sorted(tables),
    }
    (path / "manifest.json").write_text(json.dumps(manifest))
    return path


class TrackingStore(BackupStore):
    """``BackupStore`` that remembers every reader it hands out."""

    def __init__(self, directory: str | Path) -> None:
        super().__init__(directory)
        self.readers: list[BackupReader] = []

    def open(self, backup_id: str) -> BackupReader:
        reader = super().open(backup_id)
        self.readers.append(reader)
        return reader


# ------------------------------------------------------------------
# Live database
# ------------------------------------------------------------------


class FakeTransaction:
    """Applies restore statements to a working copy of the tables."""

    def __init__(self, db: "FakeDatabase", tables: dict[str, list[dict]]) -> None:
        self._db = db
        self.tables = tables

    async def execute(self, sql: str, params: dict | None = None) -> None:
        params = params or {}
        self._db.statements.append((sql, params))

        for fragment in self._db.fail_on:
            if fragment in sql:
                raise RuntimeError(f"simulated failure on: {fragment}")

        role = _ROLE.search(sql)
        if role:
            if role.group(1) in self._db.denied_roles:
                raise RuntimeError(f'permission denied to set role "{role.group(1)}"')
            return
        if "set_config('row_security'" in sql:
            if self._db.row_security_denied:
                raise RuntimeError("permission denied to set parameter row_security")
            return
        if sql.startswith("TRUNCATE TABLE"):
            self.tables[_QUALIFIED.search(sql).group(1)] = []
            return
        if sql.startswith("DELETE FROM"):
            table = _QUALIFIED.search(sql).group(1)
            self.tables[table] = [
                row for row in self.tables.get(table, []) if row.get("tenant_id") != params["tenant_id"]
            ]
            return
        if sql.startswith("INSERT INTO"):
            self._insert(sql, params)
            return
        if "setval(" in sql:
            table = _QUALIFIED.search(sql).group(1)
            column = _MAX_COLUMN.search(sql).group(1)
            values = [row[column] for row in self.tables.get(table, []) if row.get(column) is not None]
            self._db.sequences[params["sequence"]] = max(values) if values else 1

    def _insert(self, sql: str, params: dict) -> None:
        table = _QUALIFIED.search(sql).group(1)
        columns = re.findall(r'"([^"]+)"', _INSERT.search(sql).group(1))
        rows: dict[int, dict] = {}
        for name, value in params.items():
            match = _PARAM.fullmatch(name)
            r, c = int(match.group(1)), int(match.group(2))
            rows.setdefault(r, {})[columns[c]] = value
        self.tables.setdefault(table, []).extend(rows[r] for r in sorted(rows))

    async def fetch_all(self, sql: str, params: dict | None = None) -> list[dict]:
        self._db.statements.append((sql, params or {}))
        if "information_schema.columns" in sql:
            return [{"table_name": t} for t in sorted(self._db.tenant_tables)]
        if "pg_depend" in sql:
            return [
                {"sequence_name": seq, "table_name": table, "column_name": column}
                for seq, table, column in self._db.owned_sequences
            ]
        return []

    async def fetch_scalar(self, sql: str, params: dict | None = None) -> Any:
        self._db.statements.append((sql, params or {}))
        if "pg_try_advisory" in sql:
            return params["key"] not in self._db.held_locks
        return None

    @asynccontextmanager
    async def savepoint(self):
        yield


class FakeDatabase:
    """In-memory stand-in for the restore transaction's database.

    Changes made through ``transaction()`` become visible in ``tables``
    only when the block exits without an exception.
    """

    def __init__(self, tables: dict[str, list[dict]] | None = None) -> None:
        self.tables: dict[str, list[dict]] = tables or {}
        self.tenant_tables: set[str] = set()
        self.owned_sequences: list[tuple[str, str, str]] = []
        self.sequences: dict[str, int] = {}
        self.statements: list[tuple[str, dict]] = []
        self.denied_roles: set[str] = set()
        self.row_security_denied = False
        self.held_locks: set[str] = set()
        self.fail_on: list[str] = []
        self.transactions_opened = 0
        self.on_begin = None

    @asynccontextmanager
    async def transaction(self):
        self.transactions_opened += 1
        if self.on_begin is not None:
            await self.on_begin()
        working = copy.deepcopy(self.tables)
        yield FakeTransaction(self, working)
        self.tables = working

    def count(self, table: str) -> int:
        return len(self.tables.get(table, []))

    def sql(self, prefix: str = "") -> list[str]:
        return [sql for sql, _ in self.statements if sql.startswith(prefix)]


# ------------------------------------------------------------------
# Operations table
# ------------------------------------------------------------------


class InMemoryAdapter:
    """Dict-backed ``select``/``insert``/``update`` for small tables."""

    def __init__(self) -> None:
        self.tables: dict[str, list[dict]] = {}
        self.updates: list[tuple[str, dict, dict]] = []

    @staticmethod
    def _matches(row: dict, filters: dict | None) -> bool:
        return all(row.get(k) == v for k, v in (filters or {}).items())

    async def select(self, table, columns, filters=None, order_by=None):
        rows = [dict(r) for r in self.tables.get(table, []) if self._matches(r, filters)]
        if order_by:
            column, _, direction = order_by.partition(" ")
            rows.sort(key=lambda r: r.get(column) or "", reverse=direction.upper() == "DESC")
        return rows

    async def insert(self, table, data):
        row = dict(data)
        self.tables.setdefault(table, []).append(row)
        return dict(row)

    async def update(self, table, data, filters):
        self.updates.append((table, dict(data), dict(filters)))
        matched = [r for r in self.tables.get(table, []) if self._matches(r, filters)]
        if not matched:
            raise ValueError(f"No rows matched filters: {filters}")
        for row in matched:
            row.update(data)
        return dict(matched[0])

    async def execute(self, sql, params=None):
        return None

    async def close(self):
        return None


# ------------------------------------------------------------------
# Live schema
# ------------------------------------------------------------------


class FakeResolver:
    def __init__(
        self,
        tables: list[str],
        schema_version: str = "7",
        edges: dict[str, set[str]] | None = None,
    ) -> None:
        self.tables = tables
        self.version = schema_version
        self.edges = edges or {}

    async def live_tables(self) -> list[str]:
        return list(self.tables)

    async def schema_version(self) -> str:
        return self.version

    async def order(self, tables: list[str]) -> list[str]:
        return topological_sort(self.edges, sorted(tables))


# ------------------------------------------------------------------
# Fixtures
# ------------------------------------------------------------------


@pytest.fixture
def operations_adapter() -> InMemoryAdapter:
    return InMemoryAdapter()


@pytest.fixture
def operations(operations_adapter: InMemoryAdapter) -> RestoreOperationStore:
    return RestoreOperationStore(operations_adapter)


@pytest.fixture
def creator() -> AsyncMock:
    creator = AsyncMock()
    creator.create = AsyncMock(return_value=BackupRef(backup_id="bk_safety_0001"))
    return creator


@pytest.fixture
def reporter() -> AsyncMock:
    reporter = AsyncMock()
    reporter.report = AsyncMock(return_value=None)
    return reporter
