"""
Backend-agnostic schema model and query results.

Every connector produces a ``SchemaInfo`` from its own metadata source
(information schema, object describe calls, header inference).  A fetched
schema is immutable and always replaced wholesale, never patched.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from querygate.core.errors import SchemaFetchError

# ── Normalised column types ──────────────────────────────

INTEGER = "INTEGER"
REAL = "REAL"
TEXT = "TEXT"
BOOLEAN = "BOOLEAN"
DATE = "DATE"
TIMESTAMP = "TIMESTAMP"
JSON = "JSON"

NORMALIZED_TYPES = (INTEGER, REAL, TEXT, BOOLEAN, DATE, TIMESTAMP, JSON)


@dataclass(frozen=True)
class ColumnInfo:
    name: str
    type: str = TEXT
    nullable: bool = True
    is_primary: bool = False
    is_foreign: bool = False
    description: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type,
            "nullable": self.nullable,
            "is_primary": self.is_primary,
            "is_foreign": self.is_foreign,
            "description": self.description,
        }


@dataclass(frozen=True)
class TableInfo:
    name: str
    columns: tuple[ColumnInfo, ...] = ()
    schema: str | None = None
    row_count: int | None = None

    def __post_init__(self):
        object.__setattr__(self, "columns", tuple(self.columns))
        seen: set[str] = set()
        for col in self.columns:
            if col.type not in NORMALIZED_TYPES:
                raise SchemaFetchError(
                    f"Column '{self.name}.{col.name}' has non-normalised type '{col.type}'"
                )
            if col.name in seen:
                raise SchemaFetchError(f"Duplicate column '{col.name}' in table '{self.name}'")
            seen.add(col.name)

    @property
    def qualified_name(self) -> str:
        return f"{self.schema}.{self.name}" if self.schema else self.name

    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]

    def find_column(self, name: str) -> ColumnInfo | None:
        """Exact match first, then a unique case-insensitive match."""
        for col in self.columns:
            if col.name == name:
                return col
        folded = [c for c in self.columns if c.name.lower() == name.lower()]
        if len(folded) == 1:
            return folded[0]
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "schema": self.schema,
            "row_count": self.row_count,
            "columns": [c.to_dict() for c in self.columns],
        }


@dataclass(frozen=True)
class SchemaInfo:
    """Ordered list of tables fetched from one connection."""

    tables: tuple[TableInfo, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "tables", tuple(self.tables))
        seen: set[str] = set()
        for table in self.tables:
            key = table.qualified_name.lower()
            if key in seen:
                raise SchemaFetchError(f"Duplicate table '{table.qualified_name}' in schema")
            seen.add(key)

    def table_names(self) -> list[str]:
        return [t.qualified_name for t in self.tables]

    def find_table(self, name: str) -> TableInfo | None:
        """Resolve a bare or schema-qualified table name.

        A bare name matching tables in several namespaces is ambiguous and
        resolves to nothing.
        """
        wanted = name.lower()
        for table in self.tables:
            if table.qualified_name.lower() == wanted:
                return table
        bare = [t for t in self.tables if t.name.lower() == wanted]
        if len(bare) == 1:
            return bare[0]
        return None

    def to_dict(self) -> dict[str, Any]:
        return {"tables": [t.to_dict() for t in self.tables]}


@dataclass
class QueryResult:
    """Rows returned by one execution.  Transient, never cached."""

    columns: list[str] = field(default_factory=list)
    rows: list[dict[str, Any]] = field(default_factory=list)
    row_count: int = 0
    execution_time_ms: int = 0

    def rename_columns(self, mapping: dict[str, str]) -> QueryResult:
        """Return a copy with result columns renamed through *mapping*."""
        if not mapping:
            return self
        return QueryResult(
            columns=[mapping.get(c, c) for c in self.columns],
            rows=[{mapping.get(k, k): v for k, v in row.items()} for row in self.rows],
            row_count=self.row_count,
            execution_time_ms=self.execution_time_ms,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "columns": self.columns,
            "rows": self.rows,
            "row_count": self.row_count,
            "execution_time_ms": self.execution_time_ms,
        }
