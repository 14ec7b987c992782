"""Streaming access to on-disk backup archives.

A backup is a directory holding a JSON manifest and one gzip-compressed
JSON array per table:

    <directory>/<backup_id>/manifest.json
    <directory>/<backup_id>/tables/<table>.json.gz

Opening a backup reads only the manifest.  ``BackupReader.rows()``
decompresses a single table on demand and drops the previously
materialized table, so at most one table's rows are resident at a time.

Usage:
    from db_restore.backup.reader import BackupStore

    store = BackupStore("backups")
    with store.open("bk_20261001_0200_ab12cd34") as reader:
        manifest = reader.manifest()
        for table in reader.table_names():
            rows = reader.rows(table)
"""

import gzip
import json
import logging
import shutil
from pathlib import Path
from typing import Any

from db_restore.backup.models import BackupManifest, BackupPayload

logger = logging.getLogger(__name__)

MANIFEST_FILE = "manifest.json"
TABLES_DIR = "tables"
TABLE_SUFFIX = ".json.gz"


class BackupNotFoundError(Exception):
    """Raised when a backup id has no readable manifest."""

    pass


class BackupReader:
    """Lazy, single-table-at-a-time view of one backup.

    Owned by exactly one restore.  ``release()`` frees the materialized
    table and may be called any number of times.
    """

    def __init__(self, path: Path, manifest: BackupManifest, table_names: list[str]) -> None:
        self._path = path
        self._manifest = manifest
        self._table_names = table_names
        self._current_table: str | None = None
        self._current_rows: list[dict[str, Any]] | None = None
        self._released = False

    def __enter__(self) -> "BackupReader":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()

    @property
    def released(self) -> bool:
        return self._released

    def manifest(self) -> BackupManifest:
        return self._manifest

    def table_names(self) -> list[str]:
        return list(self._table_names)

    def rows(self, table: str) -> list[dict[str, Any]] | None:
        """Materialize one table's rows.

        Returns:
            The table's rows, or ``None`` when the backup has no such table.

        Raises:
            RuntimeError: If the reader has been released.
        """
        if self._released:
            raise RuntimeError("Backup reader has been released")
        if table not in self._table_names:
            return None
        if table == self._current_table:
            return self._current_rows

        # Drop the previous table before decompressing the next one
        self._current_table = None
        self._current_rows = None

        table_file = self._path / TABLES_DIR / f"{table}{TABLE_SUFFIX}"
        if not table_file.exists():
            logger.warning(f"Backup {self._manifest.backup_id} lists {table} but has no data file")
            return None

        with gzip.open(table_file, "rt", encoding="utf-8") as f:
            rows = json.load(f)

        self._current_table = table
        self._current_rows = rows
        logger.debug(f"Loaded {len(rows)} rows for {table} from {self._manifest.backup_id}")
        return rows

    def load_payload(self) -> BackupPayload:
        """Materialize every table at once (small backups and tooling only)."""
        tables: dict[str, list[dict[str, Any]]] = {}
        for table in self._table_names:
            rows = self.rows(table)
            if rows is not None:
                tables[table] = rows
        return BackupPayload(manifest=self._manifest, tables=tables)

    def release(self) -> None:
        self._current_table = None
        self._current_rows = None
        self._released = True


class BackupStore:
    """Directory of backup archives, addressed by backup id."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    def path_for(self, backup_id: str) -> Path:
        if not backup_id or "/" in backup_id or backup_id.startswith("."):
            raise BackupNotFoundError(f"Invalid backup id: {backup_id!r}")
        return self.directory / backup_id

    def exists(self, backup_id: str) -> bool:
        try:
            return (self.path_for(backup_id) / MANIFEST_FILE).exists()
        except BackupNotFoundError:
            return False

    def open(self, backup_id: str) -> BackupReader:
        """Open a backup for streaming reads.

        Raises:
            BackupNotFoundError: If the backup directory or manifest is missing.
        """
        path = self.path_for(backup_id)
        manifest_file = path / MANIFEST_FILE
        if not manifest_file.exists():
            raise BackupNotFoundError(f"Backup not found: {backup_id}")

        with open(manifest_file, "r") as f:
            data = json.load(f)

        table_names = data.pop("tables", None)
        manifest = BackupManifest(**data)
        if table_names is None:
            table_names = sorted(manifest.table_counts)

        return BackupReader(path, manifest, table_names)

    def delete(self, backup_id: str) -> None:
        """Remove a backup directory, complete or not.

        Raises:
            BackupNotFoundError: If no directory exists for ``backup_id``.
        """
        path = self.path_for(backup_id)
        if not path.is_dir():
            raise BackupNotFoundError(f"Backup not found: {backup_id}")
        shutil.rmtree(path)
        logger.info(f"Deleted backup {backup_id}")

    def list_backups(self) -> list[BackupManifest]:
        """Manifests of every complete backup, newest first."""
        if not self.directory.exists():
            return []

        manifests: list[BackupManifest] = []
        for manifest_file in self.directory.glob(f"*/{MANIFEST_FILE}"):
            with open(manifest_file, "r") as f:
                data = json.load(f)
            data.pop("tables", None)
            manifests.append(BackupManifest(**data))

        return sorted(manifests, key=lambda m: m.created_at, reverse=True)
