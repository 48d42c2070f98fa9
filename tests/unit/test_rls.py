"""
Unit tests for row-level security: policy resolution, templates and enforcement.
"""
import pytest

from querygate.core.errors import PolicyResolutionError, UnsafeQueryError
from querygate.engine.context import SecurityContext
from querygate.governance import rls
from querygate.store.memory import InMemoryRecordStore
from querygate.store.records import ConnectionConfig, RLSPolicy

CONN = ConnectionConfig(id="sales_db", workspace_id="acme", kind="relational")
CTX = SecurityContext(
    user_id="u-1", tenant_id="acme", role="analyst", segment="Consumer",
    attributes={"region": "EU"},
)


def _policy(pid, condition, table="sales", **kw):
    defaults = dict(workspace_id="acme", connection_id="sales_db", role="analyst")
    defaults.update(kw)
    return RLSPolicy(id=pid, table_name=table, condition=condition, **defaults)


class BrokenStore:
    def get_connection(self, connection_id):
        return CONN

    def list_policies(self, workspace_id, connection_id):
        raise ConnectionError("record store unavailable")


# ── wrap ─────────────────────────────────────────────────

def test_wrap_single_condition():
    wrapped = rls.wrap("SELECT * FROM sales", ["segment = 'Consumer'"])
    assert wrapped == "SELECT * FROM (SELECT * FROM sales) AS _rls_wrapper WHERE segment = 'Consumer'"


def test_wrap_conjunction_of_all_conditions():
    wrapped = rls.wrap("SELECT * FROM sales", ["segment = 'Consumer'", "region = 'EU'"])
    assert wrapped.endswith("WHERE (segment = 'Consumer') AND (region = 'EU')")


def test_wrap_no_conditions_is_identity():
    assert rls.wrap("SELECT * FROM sales", []) == "SELECT * FROM sales"


def test_wrap_strips_trailing_semicolon():
    wrapped = rls.wrap("SELECT * FROM sales;", ["x = 1"])
    assert "(SELECT * FROM sales)" in wrapped


def test_wrap_keeps_or_condition_grouped():
    wrapped = rls.wrap("SELECT * FROM t", ["a = 1 OR b = 2", "c = 3"])
    assert wrapped.endswith("WHERE (a = 1 OR b = 2) AND (c = 3)")


def test_wrap_drops_comments_from_inner_query():
    wrapped = rls.wrap("SELECT * FROM sales -- trailing note", ["segment = 'Consumer'"])
    assert wrapped == "SELECT * FROM (SELECT * FROM sales) AS _rls_wrapper WHERE segment = 'Consumer'"


def test_wrap_keeps_comment_markers_inside_literals():
    wrapped = rls.wrap("SELECT '--kept' AS note FROM sales", ["x = 1"])
    assert "(SELECT '--kept' AS note FROM sales)" in wrapped


@pytest.mark.parametrize("sql", [
    "SELECT * FROM sales) --",
    "SELECT * FROM sales) /*",
    "SELECT * FROM sales WHERE note = 'open",
    "SELECT * FROM (SELECT * FROM sales",
])
def test_wrap_refuses_text_that_escapes_the_wrapper(sql):
    with pytest.raises(UnsafeQueryError) as err:
        rls.wrap(sql, ["segment = 'Consumer'"])
    assert err.value.reason == "malformed"


# ── inject_predicate ─────────────────────────────────────

def test_inject_without_where():
    text = "SELECT Name FROM Account ORDER BY Name LIMIT 10"
    assert rls.inject_predicate(text, ["Region__c = 'EU'"]) == (
        "SELECT Name FROM Account WHERE (Region__c = 'EU') ORDER BY Name LIMIT 10"
    )


def test_inject_with_existing_where():
    text = "SELECT Name FROM Account WHERE Industry = 'Tech' OR Industry = 'Bio' LIMIT 5"
    assert rls.inject_predicate(text, ["Region__c = 'EU'"]) == (
        "SELECT Name FROM Account WHERE (Industry = 'Tech' OR Industry = 'Bio') "
        "AND (Region__c = 'EU') LIMIT 5"
    )


def test_inject_at_end_of_query():
    assert rls.inject_predicate("SELECT Id FROM Lead", ["a = 1", "b = 2"]) == (
        "SELECT Id FROM Lead WHERE (a = 1) AND (b = 2)"
    )


def test_inject_keeps_single_or_condition_grouped():
    text = "SELECT status FROM orders WHERE (\"status\" = 'completed') GROUP BY status"
    injected = rls.inject_predicate(text, ["tenant_id = 'globex' OR segment = 'Home Office'"])
    assert injected == (
        "SELECT status FROM orders WHERE ((\"status\" = 'completed')) "
        "AND (tenant_id = 'globex' OR segment = 'Home Office') GROUP BY status"
    )


def test_inject_drops_comments():
    assert rls.inject_predicate("SELECT Id FROM Lead -- note", ["a = 1"]) == (
        "SELECT Id FROM Lead WHERE (a = 1)"
    )


def test_inject_ignores_subquery_where():
    text = "SELECT Id FROM Account WHERE Id IN (SELECT AccountId FROM Contact WHERE x = 1)"
    injected = rls.inject_predicate(text, ["y = 2"])
    assert injected == (
        "SELECT Id FROM Account WHERE (Id IN (SELECT AccountId FROM Contact WHERE x = 1)) AND (y = 2)"
    )


def test_enforce_picks_strategy():
    q = "SELECT * FROM sales"
    assert rls.enforce(q, ["a = 1"], supports_derived_tables=True).startswith("SELECT * FROM (")
    assert rls.enforce(q, ["a = 1"], supports_derived_tables=False) == "SELECT * FROM sales WHERE (a = 1)"
    assert rls.enforce(q, [], supports_derived_tables=False) == q


# ── resolve_policies ─────────────────────────────────────

def test_resolve_filters_by_target_and_table():
    store = InMemoryRecordStore(policies=[
        _policy("by_role", "segment = 'Consumer'"),
        _policy("by_user", "region = 'EU'", role=None, user_id="u-1"),
        _policy("other_role", "1 = 0", role="admin"),
        _policy("other_table", "1 = 0", table="orders"),
        _policy("inactive", "1 = 0", is_active=False),
        _policy("other_conn", "1 = 0", connection_id="crm"),
    ])
    ids = {p.id for p in rls.resolve_policies(CTX, CONN, "sales", store)}
    assert ids == {"by_role", "by_user"}


def test_resolve_orders_by_priority():
    store = InMemoryRecordStore(policies=[
        _policy("low", "a = 1", priority=1),
        _policy("high", "b = 2", priority=10),
    ])
    assert [p.id for p in rls.resolve_policies(CTX, CONN, "sales", store)] == ["high", "low"]


@pytest.mark.parametrize("pattern,table", [
    ("sales", "SALES"),
    ("sales", "public.sales"),
    ("sales_*", "sales_2024"),
    ("*", "anything"),
    ("public.sales", "public.sales"),
])
def test_table_patterns_match(pattern, table):
    store = InMemoryRecordStore(policies=[_policy("p", "a = 1", table=pattern)])
    assert len(rls.resolve_policies(CTX, CONN, table, store)) == 1


def test_no_table_context_applies_every_policy():
    store = InMemoryRecordStore(policies=[
        _policy("sales_p", "a = 1", table="sales"),
        _policy("orders_p", "b = 2", table="orders"),
    ])
    assert len(rls.resolve_policies(CTX, CONN, None, store)) == 2


def test_store_failure_fails_closed():
    with pytest.raises(PolicyResolutionError):
        rls.resolve_policies(CTX, CONN, "sales", BrokenStore())


# ── render_conditions ────────────────────────────────────

def test_render_templates():
    policies = [
        _policy("t", "tenant_id = {{current_user.tenant_id}}"),
        _policy("s", "segment = {{ current_user.segment }}"),
        _policy("a", "region = {{current_user.attributes.region}}"),
        _policy("u", "owner = {{current_user.id}}"),
    ]
    assert rls.render_conditions(policies, CTX) == [
        "tenant_id = 'acme'",
        "segment = 'Consumer'",
        "region = 'EU'",
        "owner = 'u-1'",
    ]


def test_render_escapes_quotes():
    ctx = CTX.model_copy(update={"segment": "O'Brien"})
    rendered = rls.render_conditions([_policy("s", "segment = {{current_user.segment}}")], ctx)
    assert rendered == ["segment = 'O''Brien'"]


def test_render_missing_value_fails_closed():
    with pytest.raises(PolicyResolutionError):
        rls.render_conditions([_policy("e", "email = {{current_user.email}}")], CTX)


def test_render_missing_attribute_fails_closed():
    with pytest.raises(PolicyResolutionError):
        rls.render_conditions([_policy("a", "x = {{current_user.attributes.cost_center}}")], CTX)


def test_render_unknown_template_fails_closed():
    with pytest.raises(PolicyResolutionError):
        rls.render_conditions([_policy("z", "x = {{current_user.password}}")], CTX)


def test_render_leftover_braces_fail_closed():
    with pytest.raises(PolicyResolutionError):
        rls.render_conditions([_policy("b", "x = {{ tenant }}")], CTX)


@pytest.mark.parametrize("dialect, expected", [
    ("postgresql", "region = 'x\\'' OR 1=1 -- '"),
    ("mysql", "region = 'x\\\\'' OR 1=1 -- '"),
    ("snowflake", "region = 'x\\\\'' OR 1=1 -- '"),
    ("bigquery", "region = 'x\\\\\\' OR 1=1 -- '"),
    ("soql", "region = 'x\\\\\\' OR 1=1 -- '"),
])
def test_render_escapes_for_backend_dialect(dialect, expected):
    ctx = CTX.model_copy(update={"attributes": {"region": "x\\' OR 1=1 -- "}})
    rendered = rls.render_conditions(
        [_policy("r", "region = {{current_user.attributes.region}}")], ctx, dialect,
    )
    assert rendered == [expected]


# ── table context ────────────────────────────────────────

def test_declared_tables_cover_query():
    rls.check_table_context("SELECT * FROM public.sales s JOIN orders o ON o.id = s.id", ["sales", "orders"])


def test_undeclared_table_fails_closed():
    with pytest.raises(PolicyResolutionError) as err:
        rls.check_table_context("SELECT * FROM sales", ["orders"])
    assert "sales" in err.value.message


@pytest.mark.parametrize("sql, missing", [
    ("SELECT * FROM orders WHERE id IN (SELECT order_id FROM refunds)", ["refunds"]),
    ("SELECT * FROM orders, refunds", ["refunds"]),
    ("SELECT * FROM orders o LEFT JOIN \"Refunds\" r ON r.id = o.id", ["Refunds"]),
    ("SELECT * FROM read_csv('secrets.csv')", ["read_csv()"]),
    ("WITH recent AS (SELECT * FROM orders) SELECT * FROM recent", []),
    ("SELECT EXTRACT(YEAR FROM created_at) FROM orders", []),
    ("SELECT * FROM orders -- JOIN refunds", []),
    ("SELECT 'FROM refunds' AS note FROM orders", []),
])
def test_undeclared_tables(sql, missing):
    assert rls.undeclared_tables(sql, ["orders"]) == missing
