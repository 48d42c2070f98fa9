"""
AI query path tests -- the mock provider feeds generated text through the
governed ad-hoc pipeline.
"""
from querygate.ai import query_generator
from querygate.ai.query_generator import build_prompt, generate_query
from querygate.catalog.schema import INTEGER, TEXT, ColumnInfo, SchemaInfo, TableInfo
from querygate.engine.service import QueryState
from querygate.store.records import RLSPolicy


def test_build_prompt_lists_tables():
    schema = SchemaInfo(tables=[
        TableInfo(name="orders", schema="public", columns=[ColumnInfo("id", INTEGER), ColumnInfo("status", TEXT)]),
    ])
    prompt = build_prompt("  How many orders?  ", schema, "relational", 1000)
    assert "public.orders(id INTEGER, status TEXT)" in prompt
    assert "Question: How many orders?" in prompt
    assert "at most 1000 rows" in prompt


def test_generate_and_execute(service, viewer):
    resp = generate_query("Anything?", "sales_db", viewer, service, provider="mock")
    assert resp.success, resp.error
    assert resp.data.rows == [{"result": 1}]


def test_generate_without_execute(service, viewer):
    resp = generate_query("Anything?", "sales_db", viewer, service, execute=False, provider="mock")
    assert resp.success
    assert resp.state == QueryState.VALIDATED
    assert resp.query_text == "SELECT 1 AS result"
    assert resp.data is None


def test_generated_text_gets_policies(service, store, analyst, monkeypatch):
    store.add_policy(RLSPolicy(
        id="consumer_sales", workspace_id="acme", connection_id="sales_db", role="analyst",
        table_name="sales", condition="segment = 'Consumer'",
    ))
    generated = "```sql\nSELECT segment, revenue FROM sales\n```"
    monkeypatch.setattr(query_generator, "call_llm", lambda prompt, **kw: generated)
    resp = generate_query("Revenue by segment", "sales_db", analyst, service, tables=["sales"])
    assert resp.success, resp.error
    assert "_rls_wrapper WHERE segment = 'Consumer'" in resp.query_text
    assert {r["segment"] for r in resp.data.rows} == {"Consumer"}


def test_destructive_generation_is_rejected(service, viewer, monkeypatch):
    monkeypatch.setattr(query_generator, "call_llm", lambda prompt, **kw: "DROP TABLE orders")
    resp = generate_query("Delete everything", "sales_db", viewer, service, execute=False)
    assert resp.success is False
    assert resp.error["code"] == "UNSAFE_QUERY"
    assert resp.query_text == "DROP TABLE orders"


def test_provider_failure(service, viewer):
    resp = generate_query("Anything?", "sales_db", viewer, service, provider="gemini")
    assert resp.success is False
    assert resp.error["code"] == "GENERATION_FAILED"


def test_unknown_connection(service, viewer):
    resp = generate_query("Anything?", "nope", viewer, service, provider="mock")
    assert resp.error["code"] == "CONNECTION_NOT_FOUND"


def test_system_prompt_names_backend_language(service, viewer, monkeypatch):
    seen = {}

    def fake_llm(prompt, **kw):
        seen.update(kw)
        return "SELECT 1 AS result"

    monkeypatch.setattr(query_generator, "call_llm", fake_llm)
    generate_query("Anything?", "sales_db", viewer, service, execute=False, provider="mock")
    assert seen["provider"] == "mock"
    assert "read-only SQL SELECT" in seen["system"]
    assert "SOQL" in query_generator.system_prompt("saas")
