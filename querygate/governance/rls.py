"""
Row-level security -- resolve the policies that apply to a request and
enforce them on query text.

Enforcement never rewrites the caller's query beyond dropping its comments.
Backends that support derived tables get the whole query wrapped::

    SELECT * FROM (<query>) AS _rls_wrapper WHERE <c1> AND <c2>

Backends without derived tables (SOQL) get the conditions ANDed into the
top-level WHERE clause instead, each one parenthesised.  Conditions are
combined by conjunction only, so a request with more policies can never see
more rows.
"""
from __future__ import annotations

import fnmatch
import re

from querygate.compiler.dialects import get_dialect
from querygate.core.errors import PolicyResolutionError, UnsafeQueryError
from querygate.core.logging import get_logger
from querygate.governance import sql_scan
from querygate.store.memory import RecordStore
from querygate.store.records import ConnectionConfig, RLSPolicy

logger = get_logger(__name__)

WRAPPER_ALIAS = "_rls_wrapper"

_TEMPLATE = re.compile(r"\{\{\s*current_user\.([A-Za-z_][\w.]*)\s*\}\}")
_CLAUSES_AFTER_WHERE = (
    ("GROUP", "BY"), ("HAVING",), ("ORDER", "BY"), ("LIMIT",), ("OFFSET",),
)


# ── Resolution ───────────────────────────────────────────

def _table_matches(pattern: str, table: str) -> bool:
    """Exact, case-insensitive or glob match (``orders_*``, ``*``).

    A schema-qualified table also matches a policy naming the bare table.
    """
    p = pattern.strip().lower()
    t = table.strip().lower()
    candidates = {t, t.rsplit(".", 1)[-1]}
    return any(p == c or fnmatch.fnmatchcase(c, p) for c in candidates)


def resolve_policies(
    context,
    connection: ConnectionConfig,
    table: str | None,
    store: RecordStore,
) -> list[RLSPolicy]:
    """Return the active policies that apply, highest priority first.

    Parameters
    ----------
    context:
        The caller's SecurityContext.
    connection:
        The connection being queried.
    table:
        Target table, or ``None`` when the query has no declared table
        context; then every policy of the connection targeting this user or
        role applies.
    store:
        Record store queried fresh on every call.

    Raises
    ------
    PolicyResolutionError
        The store could not be read.  The request must fail closed.
    """
    try:
        candidates = store.list_policies(connection.workspace_id, connection.id)
    except Exception as exc:
        raise PolicyResolutionError(
            f"Could not load row-level policies for connection '{connection.id}': {exc}"
        ) from exc

    applicable = [
        p for p in candidates
        if p.is_active
        and p.workspace_id == connection.workspace_id
        and p.connection_id == connection.id
        and p.targets(context.user_id, context.role)
        and (table is None or _table_matches(p.table_name, table))
    ]
    applicable.sort(key=lambda p: p.priority, reverse=True)
    return applicable


# ── Templates ────────────────────────────────────────────

def _sql_string(value) -> str:
    return "'" + str(value).replace("'", "''") + "'"


def _context_value(context, path: str):
    if path == "id":
        return context.user_id
    if path.startswith("attributes."):
        key = path.split(".", 1)[1]
        if key not in context.attributes:
            raise PolicyResolutionError(f"Security context has no attribute '{key}'")
        return context.attributes[key]
    if path in ("tenant_id", "segment", "role", "email"):
        return getattr(context, path)
    raise PolicyResolutionError(f"Unknown policy template 'current_user.{path}'")


def render_conditions(policies: list[RLSPolicy], context, dialect: str | None = None) -> list[str]:
    """Substitute ``{{current_user.*}}`` templates into each condition.

    Values become string literals escaped for *dialect* (backslash-escaping
    backends double the backslash too); without a dialect the ANSI rule
    applies.  A template whose value is missing, or any ``{{`` left after
    substitution, fails closed.
    """
    quote = get_dialect(dialect).string_literal if dialect else _sql_string
    conditions: list[str] = []
    for policy in policies:

        def _sub(m: re.Match) -> str:
            value = _context_value(context, m.group(1))
            if value is None:
                raise PolicyResolutionError(
                    f"Policy '{policy.id}' needs current_user.{m.group(1)}, "
                    "which is not set for this request"
                )
            return quote(str(value))

        rendered = _TEMPLATE.sub(_sub, policy.condition).strip()
        if "{{" in rendered:
            raise PolicyResolutionError(f"Policy '{policy.id}' has an unresolved template")
        if rendered:
            conditions.append(rendered)
    return conditions


# ── Table context ────────────────────────────────────────

def _same_table(a: str, b: str) -> bool:
    a, b = a.lower(), b.lower()
    return a == b or a.rsplit(".", 1)[-1] == b.rsplit(".", 1)[-1]


def undeclared_tables(query_text: str, tables: list[str]) -> list[str]:
    """Sources read by *query_text* that are missing from *tables*."""
    missing: list[str] = []
    for ref in sql_scan.table_references(query_text):
        if not any(_same_table(ref, t) for t in tables) and ref not in missing:
            missing.append(ref)
    return missing


def check_table_context(query_text: str, tables: list[str]) -> None:
    """Fail closed when the declared tables do not cover what the query reads.

    Raises
    ------
    PolicyResolutionError
        The query reads a table (or table function) that was not declared,
        so the policies resolved for the declared tables cannot be trusted.
    """
    missing = undeclared_tables(query_text, tables)
    if missing:
        raise PolicyResolutionError(
            f"Query reads {', '.join(missing)} outside the declared tables "
            f"({', '.join(tables)})"
        )


# ── Enforcement ──────────────────────────────────────────

def _prepare(query_text: str) -> str:
    """Comment-free query text without its terminator."""
    text = sql_scan.strip_comments(query_text).strip()
    while text.endswith(";"):
        text = text[:-1].rstrip()
    return text


def _ensure_contained(text: str) -> None:
    if sql_scan.unclosed(text) or not sql_scan.parentheses_balanced(text):
        raise UnsafeQueryError(
            "Query structure would escape the row-level security filter",
            reason="malformed",
            query_text=text,
        )


def _conjunction(conditions: list[str]) -> str:
    if len(conditions) == 1:
        return conditions[0]
    return " AND ".join(f"({c})" for c in conditions)


def wrap(query_text: str, conditions: list[str]) -> str:
    """Wrap *query_text* as a derived table filtered by *conditions*.

    Comments are removed first so nothing in the inner text can swallow the
    wrapper's closing parenthesis, and text with unbalanced parentheses or an
    open literal is refused with ``UnsafeQueryError``.
    """
    if not conditions:
        return query_text
    inner = _prepare(query_text)
    _ensure_contained(inner)
    return f"SELECT * FROM ({inner}) AS {WRAPPER_ALIAS} WHERE {_conjunction(conditions)}"


def inject_predicate(query_text: str, conditions: list[str]) -> str:
    """AND *conditions* into the top-level WHERE clause.

    Used for backends that cannot select from a derived table and for
    compiled aggregations.  Every condition is parenthesised, as is an
    existing WHERE body.  A new WHERE is inserted before GROUP BY / HAVING /
    ORDER BY / LIMIT when the query has none.
    """
    if not conditions:
        return query_text
    text = _prepare(query_text)
    predicate = " AND ".join(f"({c})" for c in conditions)

    clause_end = len(text)
    for phrase in _CLAUSES_AFTER_WHERE:
        pos = sql_scan.find_top_level(text, phrase)
        if pos is not None and pos < clause_end:
            clause_end = pos

    where_pos = sql_scan.find_top_level(text, ("WHERE",))
    if where_pos is not None and where_pos < clause_end:
        body_start = where_pos + len("WHERE")
        existing = text[body_start:clause_end].strip()
        rebuilt = f"WHERE ({existing}) AND {predicate}"
        tail = text[clause_end:].strip()
        return f"{text[:where_pos]}{rebuilt}" + (f" {tail}" if tail else "")

    head = text[:clause_end].rstrip()
    tail = text[clause_end:].strip()
    return f"{head} WHERE {predicate}" + (f" {tail}" if tail else "")


def enforce(query_text: str, conditions: list[str], supports_derived_tables: bool) -> str:
    """Apply *conditions* the way the backend can accept them."""
    if not conditions:
        return query_text
    if supports_derived_tables:
        return wrap(query_text, conditions)
    return inject_predicate(query_text, conditions)
