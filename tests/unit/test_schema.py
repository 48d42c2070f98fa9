"""
Unit tests for the schema model and query results.
"""
import pytest

from querygate.catalog.schema import (
    INTEGER, TEXT, ColumnInfo, QueryResult, SchemaInfo, TableInfo,
)
from querygate.core.errors import SchemaFetchError


def test_non_normalised_type_rejected():
    with pytest.raises(SchemaFetchError):
        TableInfo(name="t", columns=[ColumnInfo("a", "VARCHAR")])


def test_duplicate_column_rejected():
    with pytest.raises(SchemaFetchError):
        TableInfo(name="t", columns=[ColumnInfo("a"), ColumnInfo("a")])


def test_duplicate_table_rejected():
    with pytest.raises(SchemaFetchError):
        SchemaInfo(tables=[TableInfo(name="t", schema="s"), TableInfo(name="T", schema="S")])


def test_find_table_bare_and_qualified():
    schema = SchemaInfo(tables=[
        TableInfo(name="orders", schema="public"),
        TableInfo(name="users", schema="public"),
        TableInfo(name="users", schema="audit"),
    ])
    assert schema.find_table("orders").qualified_name == "public.orders"
    assert schema.find_table("PUBLIC.ORDERS").name == "orders"
    assert schema.find_table("audit.users").schema == "audit"
    # ambiguous bare name
    assert schema.find_table("users") is None
    assert schema.find_table("missing") is None


def test_find_column_prefers_exact_match():
    table = TableInfo(name="t", columns=[ColumnInfo("Name"), ColumnInfo("name")])
    assert table.find_column("name").name == "name"
    assert table.find_column("NAME") is None


def test_schema_to_dict():
    schema = SchemaInfo(tables=[
        TableInfo(name="t", columns=[ColumnInfo("id", INTEGER, nullable=False, is_primary=True)]),
    ])
    assert schema.to_dict() == {
        "tables": [{
            "name": "t",
            "schema": None,
            "row_count": None,
            "columns": [{
                "name": "id", "type": INTEGER, "nullable": False,
                "is_primary": True, "is_foreign": False, "description": None,
            }],
        }],
    }


def test_rename_columns():
    result = QueryResult(columns=["a_0", "b"], rows=[{"a_0": 1, "b": 2}], row_count=1)
    renamed = result.rename_columns({"a_0": "sum_a"})
    assert renamed.columns == ["sum_a", "b"]
    assert renamed.rows == [{"sum_a": 1, "b": 2}]
    assert result.rename_columns({}) is result


def test_column_default_type_is_text():
    assert ColumnInfo("x").type == TEXT
