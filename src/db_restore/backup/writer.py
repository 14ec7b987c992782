"""Backup creation in the archive format read by ``BackupStore``.

Dumps every non-system table of the live schema.  Binary values are
wrapped as ``{"type": "Buffer", "data": [...]}`` so the restore side can
tell them apart from JSON objects.  The manifest is written last: a
directory without ``manifest.json`` is an incomplete backup and is never
listed or opened.

Usage:
    from db_restore.backup.writer import BackupWriter

    writer = BackupWriter(adapter, store, resolver)
    ref = await writer.create(backup_type="pre_restore", label="Before restore op_42")
"""

import gzip
import json
import logging
import shutil
import uuid
from pathlib import Path
from typing import Any, Protocol

from db_restore.adapters.base import DatabaseClient
from db_restore.backup.models import BackupManifest, BackupRef, BackupType, utc_now
from db_restore.backup.reader import MANIFEST_FILE, TABLE_SUFFIX, TABLES_DIR, BackupStore
from db_restore.schema.dependencies import DependencyResolver
from db_restore.schema.identifiers import quote_qualified
from db_restore.schema.models import SYSTEM_TABLES

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1


class BackupCreator(Protocol):
    """Anything that can take a backup on demand."""

    async def create(self, backup_type: BackupType = "manual", label: str | None = None) -> BackupRef:
        ...


def encode_value(value: Any) -> Any:
    """Make a selected value JSON-safe, wrapping binary data."""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return {"type": "Buffer", "data": list(bytes(value))}
    if isinstance(value, list):
        return [encode_value(v) for v in value]
    return value


def new_backup_id() -> str:
    return f"bk_{utc_now():%Y%m%d_%H%M%S}_{uuid.uuid4().hex[:8]}"


class BackupWriter:
    """Writes full-database backups into a ``BackupStore``."""

    def __init__(
        self,
        adapter: DatabaseClient,
        store: BackupStore,
        resolver: DependencyResolver,
        schema_name: str = "public",
        excluded: frozenset[str] = SYSTEM_TABLES,
    ) -> None:
        self._adapter = adapter
        self._store = store
        self._resolver = resolver
        self._schema_name = schema_name
        self._excluded = excluded

    async def create(self, backup_type: BackupType = "manual", label: str | None = None) -> BackupRef:
        """Export every non-system table to a new backup directory.

        A failed export removes its directory before re-raising.

        Args:
            backup_type: ``"manual"``, ``"scheduled"``, or ``"pre_restore"``.
            label: Free-text label stored in the manifest.

        Returns:
            ``BackupRef`` with the new backup id and its directory.
        """
        backup_id = new_backup_id()
        path = self._store.path_for(backup_id)
        (path / TABLES_DIR).mkdir(parents=True, exist_ok=True)

        try:
            manifest = await self._dump(backup_id, path, backup_type, label)
        except Exception:
            logger.warning(f"Backup {backup_id} failed; removing {path}")
            shutil.rmtree(path, ignore_errors=True)
            raise

        logger.info(f"Backup {backup_id} complete: {sum(manifest.table_counts.values())} rows")
        return BackupRef(backup_id=backup_id, path=str(path))

    async def _dump(
        self, backup_id: str, path: Path, backup_type: BackupType, label: str | None
    ) -> BackupManifest:
        live_tables = await self._resolver.live_tables()
        schema_version = await self._resolver.schema_version()
        tables = [t for t in live_tables if t not in self._excluded]

        logger.info(f"Creating {backup_type} backup {backup_id} of {len(tables)} tables")

        table_counts: dict[str, int] = {}
        for table in tables:
            rows = await self._adapter.select(quote_qualified(table, self._schema_name), "*")
            encoded = [{k: encode_value(v) for k, v in row.items()} for row in rows]
            with gzip.open(path / TABLES_DIR / f"{table}{TABLE_SUFFIX}", "wt", encoding="utf-8") as f:
                json.dump(encoded, f, default=str)
            table_counts[table] = len(rows)
            logger.debug(f"Backed up {len(rows)} rows from {table}")

        manifest = BackupManifest(
            backup_id=backup_id,
            format_version=FORMAT_VERSION,
            schema_version=schema_version,
            created_at=utc_now(),
            backup_type=backup_type,
            label=label,
            table_counts=table_counts,
        )
        data = manifest.model_dump(mode="json")
        data["tables"] = tables

        tmp_manifest = path / f"{MANIFEST_FILE}.tmp"
        with open(tmp_manifest, "w") as f:
            json.dump(data, f, indent=2)
        tmp_manifest.replace(path / MANIFEST_FILE)
        return manifest
