"""
Per-backend rendering rules used by the aggregation compiler.

Each dialect knows how to quote identifiers, render literals, truncate
timestamps to a bucket and express a substring match.  SOQL additionally
cannot carry arbitrary result aliases, so it reports safe aliases that the
orchestrator maps back to the contract labels after execution.
"""
from __future__ import annotations

import datetime
import math
import re
from typing import Any

from querygate.catalog.schema import TableInfo
from querygate.core.errors import InvalidRequestError

_AGG_FUNCS = {
    "count": "COUNT",
    "sum": "SUM",
    "avg": "AVG",
    "min": "MIN",
    "max": "MAX",
}


class SqlDialect:
    """ANSI-flavoured defaults (double-quoted identifiers, '' escapes)."""

    name = "ansi"
    ident_quote = '"'
    backslash_escapes = False
    case_insensitive_like = "LIKE"
    supports_result_aliases = True
    true_literal = "TRUE"
    false_literal = "FALSE"

    # ── Identifiers ─────────────────────────────────────

    def quote_ident(self, name: str) -> str:
        q = self.ident_quote
        return f"{q}{name.replace(q, q + q)}{q}"

    def qualify_table(self, table: TableInfo) -> str:
        if table.schema:
            return f"{self.quote_ident(table.schema)}.{self.quote_ident(table.name)}"
        return self.quote_ident(table.name)

    def result_alias(self, label: str, position: int) -> str:
        """Alias actually emitted for a result column."""
        return label

    def render_alias(self, alias: str) -> str:
        return f"AS {self.quote_ident(alias)}"

    # ── Literals ────────────────────────────────────────

    def string_literal(self, value: str) -> str:
        if self.backslash_escapes:
            value = value.replace("\\", "\\\\")
        return "'" + value.replace("'", "''") + "'"

    def literal(self, value: Any) -> str:
        if value is None:
            return "NULL"
        if isinstance(value, bool):
            return self.true_literal if value else self.false_literal
        if isinstance(value, int):
            return str(value)
        if isinstance(value, float):
            if math.isnan(value) or math.isinf(value):
                raise InvalidRequestError(f"Filter value {value!r} is not a finite number")
            return repr(value)
        if isinstance(value, (datetime.date, datetime.datetime)):
            return self.string_literal(value.isoformat())
        if isinstance(value, str):
            return self.string_literal(value)
        raise InvalidRequestError(f"Unsupported filter value type: {type(value).__name__}")

    # ── Expressions ─────────────────────────────────────

    def aggregate(self, agg_type: str, expr: str) -> str:
        if agg_type == "count_distinct":
            return f"COUNT(DISTINCT {expr})"
        if agg_type == "none":
            return expr
        return f"{_AGG_FUNCS[agg_type]}({expr})"

    def count_star(self) -> str:
        return "COUNT(*)"

    def time_bucket(self, expr: str, bucket: str) -> str:
        return f"DATE_TRUNC('{bucket}', {expr})"

    def text_cast(self, expr: str) -> str:
        return f"CAST({expr} AS VARCHAR)"

    def is_null(self, expr: str, negate: bool) -> str:
        return f"{expr} IS NOT NULL" if negate else f"{expr} IS NULL"

    def contains(self, expr: str, value: Any) -> str:
        escaped = (
            str(value).replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        )
        pattern = self.string_literal(f"%{escaped}%")
        return f"{expr} {self.case_insensitive_like} {pattern} ESCAPE {self.string_literal(chr(92))}"

    def order_by(self, alias: str, expr: str) -> str:
        return f"{self.quote_ident(alias)} DESC"

    def limit(self, n: int) -> str:
        return f"LIMIT {int(n)}"


class PostgresDialect(SqlDialect):
    name = "postgresql"
    case_insensitive_like = "ILIKE"

    def text_cast(self, expr: str) -> str:
        return f"CAST({expr} AS TEXT)"


class MySqlDialect(SqlDialect):
    name = "mysql"
    ident_quote = "`"
    backslash_escapes = True

    def time_bucket(self, expr: str, bucket: str) -> str:
        if bucket == "day":
            return f"DATE({expr})"
        if bucket == "week":
            return f"DATE(DATE_SUB({expr}, INTERVAL WEEKDAY({expr}) DAY))"
        if bucket == "month":
            return f"DATE_FORMAT({expr}, '%Y-%m-01')"
        return f"DATE_FORMAT({expr}, '%Y-01-01')"

    def text_cast(self, expr: str) -> str:
        return f"CAST({expr} AS CHAR)"


class SqliteDialect(SqlDialect):
    name = "sqlite"
    true_literal = "1"
    false_literal = "0"

    def time_bucket(self, expr: str, bucket: str) -> str:
        if bucket == "day":
            return f"date({expr})"
        if bucket == "week":
            # Monday-start weeks, matching DATE_TRUNC('week', ...)
            return f"date({expr}, '-' || ((CAST(strftime('%w', {expr}) AS INTEGER) + 6) % 7) || ' days')"
        if bucket == "month":
            return f"date({expr}, 'start of month')"
        return f"date({expr}, 'start of year')"

    def text_cast(self, expr: str) -> str:
        return f"CAST({expr} AS TEXT)"


class DuckDbDialect(SqlDialect):
    name = "duckdb"
    case_insensitive_like = "ILIKE"

    def time_bucket(self, expr: str, bucket: str) -> str:
        return f"date_trunc('{bucket}', {expr})"


class SnowflakeDialect(SqlDialect):
    name = "snowflake"
    backslash_escapes = True
    case_insensitive_like = "ILIKE"

    def time_bucket(self, expr: str, bucket: str) -> str:
        return f"DATE_TRUNC('{bucket.upper()}', {expr})"

    def text_cast(self, expr: str) -> str:
        return f"TO_VARCHAR({expr})"


class BigQueryDialect(SqlDialect):
    """GoogleSQL: backtick identifiers, backslash-escaped literals, no ILIKE."""

    name = "bigquery"
    ident_quote = "`"
    backslash_escapes = True

    def quote_ident(self, name: str) -> str:
        if "`" in name or "\\" in name:
            raise InvalidRequestError(f"'{name}' is not a valid BigQuery identifier")
        return f"`{name}`"

    def string_literal(self, value: str) -> str:
        return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"

    def time_bucket(self, expr: str, bucket: str) -> str:
        part = "WEEK(MONDAY)" if bucket == "week" else bucket.upper()
        return f"DATE_TRUNC(CAST({expr} AS DATE), {part})"

    def text_cast(self, expr: str) -> str:
        return f"CAST({expr} AS STRING)"

    def contains(self, expr: str, value: Any) -> str:
        # LIKE escapes with a backslash and has no ESCAPE clause
        escaped = (
            str(value).lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        )
        return f"LOWER({expr}) LIKE {self.string_literal(f'%{escaped}%')}"


_SOQL_IDENT = re.compile(r"^[A-Za-z_][A-Za-z0-9_.]*$")
_SOQL_BUCKETS = {
    "day": "DAY_ONLY",
    "week": "WEEK_IN_YEAR",
    "month": "CALENDAR_MONTH",
    "year": "CALENDAR_YEAR",
}


class SoqlDialect(SqlDialect):
    """Salesforce Object Query Language.

    No identifier quoting, no derived tables, aliases must be plain
    identifiers and are only legal on aggregate / date-function columns.
    """

    name = "soql"
    backslash_escapes = True
    supports_result_aliases = False
    true_literal = "true"
    false_literal = "false"

    def quote_ident(self, name: str) -> str:
        if not _SOQL_IDENT.match(name):
            raise InvalidRequestError(f"'{name}' is not a valid SOQL field or object name")
        return name

    def qualify_table(self, table: TableInfo) -> str:
        return self.quote_ident(table.name)

    def result_alias(self, label: str, position: int) -> str:
        safe = re.sub(r"\W", "_", label).strip("_") or "col"
        if not safe[0].isalpha():
            safe = f"c_{safe}"
        return f"{safe}_{position}"

    def render_alias(self, alias: str) -> str:
        return alias

    def string_literal(self, value: str) -> str:
        return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"

    def literal(self, value: Any) -> str:
        if isinstance(value, datetime.datetime):
            return value.strftime("%Y-%m-%dT%H:%M:%SZ")
        if isinstance(value, datetime.date):
            return value.isoformat()
        return super().literal(value)

    def aggregate(self, agg_type: str, expr: str) -> str:
        if agg_type == "count_distinct":
            return f"COUNT_DISTINCT({expr})"
        return super().aggregate(agg_type, expr)

    def count_star(self) -> str:
        return "COUNT(Id)"

    def time_bucket(self, expr: str, bucket: str) -> str:
        return f"{_SOQL_BUCKETS[bucket]}({expr})"

    def text_cast(self, expr: str) -> str:
        raise InvalidRequestError("SOQL only supports 'contains' on text fields")

    def is_null(self, expr: str, negate: bool) -> str:
        return f"{expr} != null" if negate else f"{expr} = null"

    def contains(self, expr: str, value: Any) -> str:
        raw = str(value).replace("\\", "\\\\").replace("'", "\\'")
        raw = raw.replace("%", "\\%").replace("_", "\\_")
        return f"{expr} LIKE '%{raw}%'"

    def order_by(self, alias: str, expr: str) -> str:
        return f"{expr} DESC"


_DIALECTS: dict[str, SqlDialect] = {
    d.name: d
    for d in (
        PostgresDialect(), MySqlDialect(), SqliteDialect(),
        DuckDbDialect(), SnowflakeDialect(), BigQueryDialect(), SoqlDialect(),
    )
}


def get_dialect(name: str) -> SqlDialect:
    dialect = _DIALECTS.get(name)
    if dialect is None:
        raise InvalidRequestError(
            f"Unsupported dialect '{name}'. Choose from: {', '.join(_DIALECTS)}"
        )
    return dialect
