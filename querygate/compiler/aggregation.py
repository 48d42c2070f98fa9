"""
Aggregation compiler -- turns an AggregationRequest into backend query text.

The compiler reads table and column names only from the fetched schema; it
never invents identifiers.  Every reference is resolved up front so an
unknown column fails the whole request instead of being silently dropped.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from querygate.catalog.schema import TEXT, ColumnInfo, TableInfo
from querygate.compiler.dialects import SqlDialect, get_dialect
from querygate.compiler.request import WILDCARD, AggregationRequest, FilterSpec
from querygate.core.config import get_settings
from querygate.core.errors import InvalidRequestError, UnknownColumnError
from querygate.core.logging import get_logger

logger = get_logger(__name__)

_COMPARISONS = ("=", "!=", ">", "<", ">=", "<=")


@dataclass(frozen=True)
class CompiledQuery:
    text: str
    columns: list[str]
    dialect: str
    # emitted result alias -> contract label (only where they differ)
    alias_map: dict[str, str] = field(default_factory=dict)


# ── Column resolution ────────────────────────────────────

def _resolve_columns(request: AggregationRequest, table: TableInfo) -> dict[str, ColumnInfo]:
    """Map every referenced column name to its schema column.

    Raises
    ------
    UnknownColumnError
        Listing all unknown references and the available columns.
    """
    referenced: list[str] = [d.column for d in request.dimension_specs()]
    referenced += [f.column for f in request.filters]
    for m in request.metrics:
        if m.column == WILDCARD:
            if m.type != "count":
                raise UnknownColumnError(
                    f"'*' is only valid with a count metric (got '{m.type}')"
                )
            continue
        referenced.append(m.column)

    resolved: dict[str, ColumnInfo] = {}
    unknown: list[str] = []
    for name in referenced:
        if name in resolved:
            continue
        col = table.find_column(name)
        if col is None:
            if name not in unknown:
                unknown.append(name)
        else:
            resolved[name] = col

    if unknown:
        raise UnknownColumnError(
            f"Unknown column(s) {', '.join(repr(u) for u in unknown)} in table "
            f"'{table.qualified_name}'. Available: {', '.join(table.column_names())}"
        )
    return resolved


# ── Filters ──────────────────────────────────────────────

def _render_filter(f: FilterSpec, col: ColumnInfo, dialect: SqlDialect) -> str:
    expr = dialect.quote_ident(col.name)

    if f.operator == "contains":
        if f.value is None:
            raise InvalidRequestError(f"'contains' filter on '{col.name}' needs a value")
        if col.type != TEXT:
            expr = dialect.text_cast(expr)
        return dialect.contains(expr, f.value)

    if f.value is None:
        if f.operator == "=":
            return dialect.is_null(expr, negate=False)
        if f.operator == "!=":
            return dialect.is_null(expr, negate=True)
        raise InvalidRequestError(
            f"Operator '{f.operator}' on '{col.name}' cannot compare against null"
        )

    if f.operator not in _COMPARISONS:
        raise InvalidRequestError(f"Unsupported filter operator '{f.operator}'")
    return f"{expr} {f.operator} {dialect.literal(f.value)}"


# ── Compiler ─────────────────────────────────────────────

def compile_aggregation(
    request: AggregationRequest,
    table: TableInfo,
    dialect: str | SqlDialect,
    max_rows: int | None = None,
) -> CompiledQuery:
    """Compile *request* against *table* for the given dialect.

    Parameters
    ----------
    request:
        The structured aggregation request.
    table:
        Schema of the target table, as fetched from the connection.
    dialect:
        Dialect name (``postgresql``, ``mysql``, ``sqlite``, ``snowflake``,
        ``duckdb``, ``soql``) or a dialect instance.
    max_rows:
        Upper bound for LIMIT; defaults to ``settings.max_query_rows``.

    Raises
    ------
    InvalidRequestError
        No metrics, duplicate result labels or unrenderable filter values.
    UnknownColumnError
        Any dimension, metric or filter column missing from *table*.
    """
    if not request.metrics:
        raise InvalidRequestError("At least one metric is required")

    d = dialect if isinstance(dialect, SqlDialect) else get_dialect(dialect)
    settings = get_settings()
    if max_rows is None:
        max_rows = settings.max_query_rows

    cols = _resolve_columns(request, table)

    select_parts: list[str] = []
    group_parts: list[str] = []
    labels: list[str] = []
    alias_map: dict[str, str] = {}
    first_aggregate: tuple[str, str] | None = None  # (alias, expression)

    def _aliased(expr: str, label: str) -> str:
        alias = d.result_alias(label, len(labels))
        if alias != label:
            alias_map[alias] = label
        labels.append(label)
        return alias

    # ── Dimensions ───────────────────────────────────
    for dim in request.dimension_specs():
        col = cols[dim.column]
        raw = d.quote_ident(col.name)
        if dim.time_bucket:
            expr = d.time_bucket(raw, dim.time_bucket)
            alias = _aliased(expr, col.name)
            select_parts.append(f"{expr} {d.render_alias(alias)}")
            group_parts.append(expr)
        else:
            labels.append(col.name)
            select_parts.append(raw)
            group_parts.append(raw)

    # ── Metrics ──────────────────────────────────────
    passthrough: list[str] = []
    for m in request.metrics:
        label = m.output_label()
        if m.column == WILDCARD:
            expr = d.count_star()
        else:
            col_expr = d.quote_ident(cols[m.column].name)
            expr = d.aggregate(m.type, col_expr)
            if not m.is_aggregate:
                passthrough.append(expr)
        if not m.is_aggregate and not d.supports_result_aliases:
            # SOQL cannot alias plain fields; the result key is the field name
            field_name = cols[m.column].name
            if label != field_name:
                alias_map[field_name] = label
            labels.append(label)
            select_parts.append(expr)
            continue
        alias = _aliased(expr, label)
        select_parts.append(f"{expr} {d.render_alias(alias)}")
        if m.is_aggregate and first_aggregate is None:
            first_aggregate = (alias, expr)

    if len(set(labels)) != len(labels):
        dupes = sorted({lbl for lbl in labels if labels.count(lbl) > 1})
        raise InvalidRequestError(
            f"Duplicate result column(s) {', '.join(dupes)}; give metrics distinct labels"
        )

    # ── WHERE ────────────────────────────────────────
    where_parts = [_render_filter(f, cols[f.column], d) for f in request.filters]

    # ── Assemble ─────────────────────────────────────
    limit = min(request.limit or settings.default_query_limit, max_rows)

    lines = ["SELECT", "  " + ",\n  ".join(select_parts), f"FROM {d.qualify_table(table)}"]
    if where_parts:
        lines.append("WHERE " + "\n  AND ".join(where_parts))
    if first_aggregate is not None and (group_parts or passthrough):
        lines.append("GROUP BY " + ", ".join(group_parts + passthrough))
    if first_aggregate is not None:
        lines.append("ORDER BY " + d.order_by(*first_aggregate))
    lines.append(d.limit(limit))

    text = "\n".join(lines)
    logger.info("Compiled aggregation on %s [%s]:\n%s", table.qualified_name, d.name, text)
    return CompiledQuery(text=text, columns=labels, dialect=d.name, alias_map=alias_map)
