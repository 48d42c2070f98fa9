"""
REST connector tests -- httpx.MockTransport stands in for the remote API.
"""
import httpx
import pytest

from querygate.connectors.rest import RestConnector, extract_records
from querygate.core.errors import ExecutionError, QueryTimeoutError, SchemaFetchError
from querygate.store.records import ConnectionConfig

USERS = [
    {"id": 1, "name": "Ada", "active": True, "team": {"name": "core"}},
    {"id": 2, "name": "Linus", "active": False, "team": None},
    {"id": 3, "name": "Grace", "active": True, "team": {"name": "infra"}},
]

CONFIG = ConnectionConfig(
    id="people_api",
    workspace_id="acme",
    kind="rest",
    extra={
        "base_url": "https://api.example.com",
        "api_key": "key-123",
        "endpoints": {"users": "/v1/users", "teams": "/v1/teams"},
        "health_endpoint": "/health",
    },
)


def _handler(request: httpx.Request) -> httpx.Response:
    assert request.headers["X-API-Key"] == "key-123"
    if request.url.path == "/v1/users":
        return httpx.Response(200, json={"data": USERS})
    if request.url.path == "/v1/teams":
        return httpx.Response(200, json=[{"name": "core"}, {"name": "infra"}])
    if request.url.path == "/health":
        return httpx.Response(200, json={"ok": True})
    return httpx.Response(404, text="not found")


def _connector(handler=_handler):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return RestConnector(CONFIG, client=client)


# ── Payload handling ─────────────────────────────────────

def test_extract_records_envelopes():
    assert extract_records({"results": [{"a": 1}]}) == [{"a": 1}]
    assert extract_records({"a": 1}) == [{"a": 1}]
    assert extract_records([1, 2]) == [{"value": 1}, {"value": 2}]
    assert extract_records("x") == [{"value": "x"}]


# ── Contract ─────────────────────────────────────────────

def test_connection_hits_health_endpoint():
    outcome = _connector().test_connection(timeout=5)
    assert outcome.success, outcome.error


def test_connection_failure_is_reported():
    outcome = _connector(lambda r: httpx.Response(500, text="down")).test_connection(timeout=5)
    assert outcome.success is False
    assert "500" in outcome.error


def test_fetch_schema_samples_every_endpoint():
    schema = _connector().fetch_schema()
    assert schema.table_names() == ["users", "teams"]
    users = schema.find_table("users")
    types = {c.name: c.type for c in users.columns}
    assert types == {"id": "INTEGER", "name": "TEXT", "active": "BOOLEAN", "team": "JSON"}
    assert users.row_count == 3


def test_fetch_schema_failure():
    with pytest.raises(SchemaFetchError):
        _connector(lambda r: httpx.Response(503)).fetch_schema()


def test_execute_query_only_fetches_referenced_endpoints():
    seen = []

    def handler(request):
        seen.append(request.url.path)
        return _handler(request)

    result = _connector(handler).execute_query(
        "SELECT name FROM users WHERE active ORDER BY name", timeout=10,
    )
    assert seen == ["/v1/users"]
    assert result.columns == ["name"]
    assert [r["name"] for r in result.rows] == ["Ada", "Grace"]


def test_nested_values_are_json_text():
    result = _connector().execute_query("SELECT team FROM users WHERE id = 1", timeout=10)
    assert result.rows == [{"team": '{"name": "core"}'}]


def test_unreferenced_query_fails():
    with pytest.raises(ExecutionError):
        _connector().execute_query("SELECT 1", timeout=10)


def test_http_timeout_maps_to_query_timeout():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(QueryTimeoutError):
        _connector(handler).execute_query("SELECT * FROM users", timeout=10)


def test_endpoint_error_is_execution_error():
    with pytest.raises(ExecutionError):
        _connector(lambda r: httpx.Response(500, text="boom")).execute_query(
            "SELECT * FROM users", timeout=10,
        )


def test_injected_client_is_not_closed():
    client = httpx.Client(transport=httpx.MockTransport(_handler))
    connector = RestConnector(CONFIG, client=client)
    connector.disconnect()
    assert client.is_closed is False
