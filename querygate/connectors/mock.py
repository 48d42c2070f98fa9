"""
Canned schemas per backend kind.

Returned only when a caller explicitly asks for mock data (or opts into the
fallback); the response is always flagged ``is_mock``.
"""
from __future__ import annotations

from querygate.catalog.schema import (
    BOOLEAN, DATE, INTEGER, JSON, REAL, TEXT, TIMESTAMP,
    ColumnInfo, SchemaInfo, TableInfo,
)
from querygate.store.records import FILE, RELATIONAL, REST, SAAS, WAREHOUSE


def _col(name: str, type_: str, **kw) -> ColumnInfo:
    return ColumnInfo(name=name, type=type_, **kw)


_MOCK_SCHEMAS: dict[str, SchemaInfo] = {
    RELATIONAL: SchemaInfo(tables=(
        TableInfo(name="customers", schema="public", row_count=100, columns=(
            _col("id", INTEGER, nullable=False, is_primary=True),
            _col("name", TEXT),
            _col("email", TEXT),
            _col("segment", TEXT),
            _col("created_at", TIMESTAMP),
        )),
        TableInfo(name="orders", schema="public", row_count=1000, columns=(
            _col("id", INTEGER, nullable=False, is_primary=True),
            _col("customer_id", INTEGER, is_foreign=True),
            _col("status", TEXT),
            _col("amount", REAL),
            _col("order_date", DATE),
        )),
    )),
    WAREHOUSE: SchemaInfo(tables=(
        TableInfo(name="SALES", schema="PUBLIC", row_count=50000, columns=(
            _col("SALE_ID", INTEGER, nullable=False, is_primary=True),
            _col("REGION", TEXT),
            _col("SEGMENT", TEXT),
            _col("REVENUE", REAL),
            _col("SOLD_AT", TIMESTAMP),
        )),
    )),
    SAAS: SchemaInfo(tables=(
        TableInfo(name="Account", schema="salesforce", columns=(
            _col("Id", TEXT, nullable=False, is_primary=True),
            _col("Name", TEXT),
            _col("Industry", TEXT),
            _col("AnnualRevenue", REAL),
        )),
        TableInfo(name="Opportunity", schema="salesforce", columns=(
            _col("Id", TEXT, nullable=False, is_primary=True),
            _col("AccountId", TEXT, is_foreign=True),
            _col("StageName", TEXT),
            _col("Amount", REAL),
            _col("IsWon", BOOLEAN),
            _col("CloseDate", DATE),
        )),
    )),
    FILE: SchemaInfo(tables=(
        TableInfo(name="sheet1", row_count=250, columns=(
            _col("date", TEXT),
            _col("category", TEXT),
            _col("value", REAL),
        )),
    )),
    REST: SchemaInfo(tables=(
        TableInfo(name="users", row_count=10, columns=(
            _col("id", INTEGER),
            _col("name", TEXT),
            _col("active", BOOLEAN),
            _col("address", JSON),
        )),
    )),
}


def mock_schema(kind: str) -> SchemaInfo:
    """Return the canned schema for *kind* (empty for unknown kinds)."""
    return _MOCK_SCHEMAS.get(kind, SchemaInfo())
