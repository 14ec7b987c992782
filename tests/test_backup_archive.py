"""Tests for the on-disk backup archive: store, streaming reader, writer."""

import gzip
import json
from unittest.mock import AsyncMock

import pytest

from db_restore.backup.reader import BackupNotFoundError, BackupStore
from db_restore.backup.writer import BackupWriter, encode_value, new_backup_id

from conftest import FakeResolver, write_backup


class TestBackupStore:
    """Opening and listing archives."""

    def test_open_reads_manifest_only(self, tmp_path) -> None:
        write_backup(tmp_path, "bk_a", {"orders": [{"id": 1}], "lines": [{"id": 1}, {"id": 2}]})

        reader = BackupStore(tmp_path).open("bk_a")

        assert reader.manifest().backup_id == "bk_a"
        assert reader.manifest().table_counts == {"orders": 1, "lines": 2}
        assert reader.table_names() == ["lines", "orders"]

    def test_missing_backup(self, tmp_path) -> None:
        with pytest.raises(BackupNotFoundError):
            BackupStore(tmp_path).open("bk_missing")

    @pytest.mark.parametrize("backup_id", ["", "../etc", ".hidden", "a/b"])
    def test_rejects_path_like_ids(self, tmp_path, backup_id) -> None:
        with pytest.raises(BackupNotFoundError):
            BackupStore(tmp_path).open(backup_id)

    def test_incomplete_backup_not_listed(self, tmp_path) -> None:
        """A directory without manifest.json is not a backup."""
        write_backup(tmp_path, "bk_done", {"orders": []})
        (tmp_path / "bk_partial" / "tables").mkdir(parents=True)

        store = BackupStore(tmp_path)

        assert [m.backup_id for m in store.list_backups()] == ["bk_done"]
        assert store.exists("bk_done")
        assert not store.exists("bk_partial")

    def test_list_missing_directory(self, tmp_path) -> None:
        assert BackupStore(tmp_path / "nope").list_backups() == []

    def test_delete(self, tmp_path) -> None:
        write_backup(tmp_path, "bk_a", {"orders": [{"id": 1}]})
        write_backup(tmp_path, "bk_b", {"orders": []})
        store = BackupStore(tmp_path)

        store.delete("bk_a")

        assert not (tmp_path / "bk_a").exists()
        assert [m.backup_id for m in store.list_backups()] == ["bk_b"]

    @pytest.mark.parametrize("backup_id", ["bk_missing", "../etc", ""])
    def test_delete_unknown_or_invalid(self, tmp_path, backup_id) -> None:
        with pytest.raises(BackupNotFoundError):
            BackupStore(tmp_path).delete(backup_id)


class TestBackupReader:
    """One table resident at a time, explicit release."""

    def test_rows_per_table(self, tmp_path) -> None:
        write_backup(tmp_path, "bk_a", {"orders": [{"id": 1}, {"id": 2}], "lines": [{"id": 9}]})

        with BackupStore(tmp_path).open("bk_a") as reader:
            assert reader.rows("orders") == [{"id": 1}, {"id": 2}]
            assert reader.rows("lines") == [{"id": 9}]
            assert reader.rows("unknown") is None

    def test_release_is_idempotent(self, tmp_path) -> None:
        write_backup(tmp_path, "bk_a", {"orders": [{"id": 1}]})
        reader = BackupStore(tmp_path).open("bk_a")

        reader.release()
        reader.release()

        assert reader.released
        with pytest.raises(RuntimeError):
            reader.rows("orders")

    def test_context_manager_releases(self, tmp_path) -> None:
        write_backup(tmp_path, "bk_a", {"orders": [{"id": 1}]})
        with BackupStore(tmp_path).open("bk_a") as reader:
            reader.rows("orders")
        assert reader.released

    def test_missing_data_file(self, tmp_path) -> None:
        """A listed table without a data file reads as absent."""
        path = write_backup(tmp_path, "bk_a", {"orders": [{"id": 1}]})
        (path / "tables" / "orders.json.gz").unlink()

        with BackupStore(tmp_path).open("bk_a") as reader:
            assert reader.rows("orders") is None

    def test_load_payload(self, tmp_path) -> None:
        write_backup(tmp_path, "bk_a", {"orders": [{"id": 1}], "lines": []})
        with BackupStore(tmp_path).open("bk_a") as reader:
            payload = reader.load_payload()
        assert payload.tables == {"orders": [{"id": 1}], "lines": []}


class TestBackupWriter:
    """Dumping live tables into a new archive."""

    def test_encode_value(self) -> None:
        assert encode_value(b"hi") == {"type": "Buffer", "data": [104, 105]}
        assert encode_value([b"a", 1]) == [{"type": "Buffer", "data": [97]}, 1]
        assert encode_value("x") == "x"

    def test_backup_id_format(self) -> None:
        backup_id = new_backup_id()
        assert backup_id.startswith("bk_")
        assert len(backup_id.split("_")) == 4

    @pytest.mark.asyncio
    async def test_create_writes_readable_archive(self, tmp_path) -> None:
        """A written backup opens with BackupStore and round-trips rows."""
        data = {
            '"public"."orders"': [{"id": 1, "blob": b"\x00\x01"}],
            '"public"."lines"': [{"id": 1}, {"id": 2}],
        }
        adapter = AsyncMock()
        adapter.select = AsyncMock(side_effect=lambda table, columns: data[table])
        resolver = FakeResolver(["lines", "orders", "platform_backups"], schema_version="12")
        store = BackupStore(tmp_path)

        ref = await BackupWriter(adapter, store, resolver).create(backup_type="pre_restore", label="before op")

        with store.open(ref.backup_id) as reader:
            manifest = reader.manifest()
            assert manifest.backup_type == "pre_restore"
            assert manifest.label == "before op"
            assert manifest.schema_version == "12"
            assert manifest.table_counts == {"lines": 2, "orders": 1}
            assert reader.table_names() == ["lines", "orders"]
            assert reader.rows("orders") == [{"id": 1, "blob": {"type": "Buffer", "data": [0, 1]}}]

        queried = [call.args[0] for call in adapter.select.call_args_list]
        assert '"public"."platform_backups"' not in queried

    @pytest.mark.asyncio
    async def test_manifest_written_last(self, tmp_path) -> None:
        """A failed dump leaves no manifest behind."""
        adapter = AsyncMock()
        adapter.select = AsyncMock(side_effect=ConnectionError("lost"))
        store = BackupStore(tmp_path)

        with pytest.raises(ConnectionError):
            await BackupWriter(adapter, store, FakeResolver(["orders"])).create()

        assert store.list_backups() == []

    @pytest.mark.asyncio
    async def test_failed_dump_removes_directory(self, tmp_path) -> None:
        """Tables written before the failure are removed with their directory."""
        rows = {'"public"."lines"': [{"id": 1}]}

        async def select(table, columns):
            if table not in rows:
                raise ConnectionError("lost")
            return rows[table]

        adapter = AsyncMock()
        adapter.select = AsyncMock(side_effect=select)
        store = BackupStore(tmp_path)

        with pytest.raises(ConnectionError):
            await BackupWriter(adapter, store, FakeResolver(["lines", "orders"])).create()

        assert adapter.select.await_count == 2
        assert list(tmp_path.iterdir()) == []

    def test_table_files_are_gzip_json(self, tmp_path) -> None:
        path = write_backup(tmp_path, "bk_a", {"orders": [{"id": 1}]})
        with gzip.open(path / "tables" / "orders.json.gz", "rt") as f:
            assert json.load(f) == [{"id": 1}]
