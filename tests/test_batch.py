"""Tests for batched INSERT construction and value binding."""

import json
from unittest.mock import AsyncMock

import pytest

from db_restore.restore.batch import (
    MAX_BIND_PARAMS,
    array_literal,
    build_insert,
    effective_batch_size,
    insert_rows,
    serialize_value,
)


class TestSerializeValue:
    """Each backup value type binds the right way."""

    def test_none_is_null(self) -> None:
        assert serialize_value(None) == (None, None)

    def test_scalar_list_is_array_literal(self) -> None:
        assert serialize_value(["a", "b"]) == ('{"a","b"}', None)

    def test_array_elements_escaped(self) -> None:
        """Quotes and backslashes inside elements are escaped."""
        param, cast = serialize_value(['say "hi"', "back\\slash"])
        assert param == '{"say \\"hi\\"","back\\\\slash"}'
        assert cast is None

    def test_nested_list_recurses(self) -> None:
        assert array_literal([[1, 2], [3, None]]) == "{{1,2},{3,NULL}}"

    def test_bool_elements(self) -> None:
        assert array_literal([True, False]) == "{true,false}"

    def test_empty_list(self) -> None:
        assert serialize_value([]) == ("{}", None)

    def test_list_of_objects_is_jsonb(self) -> None:
        param, cast = serialize_value([{"k": 1}, {"k": 2}])
        assert cast == "jsonb"
        assert json.loads(param) == [{"k": 1}, {"k": 2}]

    def test_object_in_nested_list_is_jsonb(self) -> None:
        param, cast = serialize_value([["x", [{"a": 1}]]])
        assert cast == "jsonb"
        assert json.loads(param) == [["x", [{"a": 1}]]]

    def test_buffer_is_bytes(self) -> None:
        """Captured binary columns come back as raw bytes."""
        assert serialize_value({"type": "Buffer", "data": [104, 105]}) == (b"hi", None)

    def test_buffer_lookalike_is_json(self) -> None:
        """An object with extra keys is data, not a binary wrapper."""
        value = {"type": "Buffer", "data": [1], "note": "x"}
        param, cast = serialize_value(value)
        assert cast == "jsonb"
        assert json.loads(param) == value

    def test_object_is_jsonb(self) -> None:
        param, cast = serialize_value({"plan": "pro"})
        assert (json.loads(param), cast) == ({"plan": "pro"}, "jsonb")

    @pytest.mark.parametrize("value", [42, 1.5, True, "2026-10-01T00:00:00+00:00", "text"])
    def test_scalars_pass_through(self, value) -> None:
        assert serialize_value(value) == (value, None)


class TestBuildInsert:
    """One parameterized multi-row statement per batch."""

    def test_multi_row_statement(self) -> None:
        sql, params = build_insert(
            "orders",
            ["id", "meta"],
            [{"id": 1, "meta": {"a": 1}}, {"id": 2, "meta": None}],
            schema_name="public",
        )
        assert sql == (
            'INSERT INTO "public"."orders" ("id", "meta") VALUES '
            "(:r0_c0, CAST(:r0_c1 AS jsonb)), (:r1_c0, :r1_c1)"
        )
        assert params == {"r0_c0": 1, "r0_c1": '{"a": 1}', "r1_c0": 2, "r1_c1": None}

    def test_missing_column_is_null(self) -> None:
        _, params = build_insert("t", ["id", "name"], [{"id": 1}])
        assert params["r0_c1"] is None

    def test_identifiers_quoted(self) -> None:
        sql, _ = build_insert('we"ird', ["select"], [{"select": 1}])
        assert sql.startswith('INSERT INTO "we""ird" ("select")')


class TestInsertRows:
    """Batching over a transaction."""

    @pytest.mark.asyncio
    async def test_batches_of_1000(self) -> None:
        tx = AsyncMock()
        rows = [{"id": i} for i in range(2500)]

        inserted = await insert_rows(tx, "orders", ["id"], rows)

        assert inserted == 2500
        assert tx.execute.await_count == 3
        last_params = tx.execute.call_args_list[-1].args[1]
        assert len(last_params) == 500

    @pytest.mark.asyncio
    async def test_empty_rows_no_statement(self) -> None:
        tx = AsyncMock()
        assert await insert_rows(tx, "orders", ["id"], []) == 0
        tx.execute.assert_not_called()

    def test_batch_capped_by_bind_parameters(self) -> None:
        """Wide tables shrink the batch to stay under the parameter ceiling."""
        assert effective_batch_size(1000, 10) == 1000
        assert effective_batch_size(1000, 100) == MAX_BIND_PARAMS // 100
        assert effective_batch_size(1000, 100) * 100 <= MAX_BIND_PARAMS
        assert effective_batch_size(1000, 100_000) == 1
