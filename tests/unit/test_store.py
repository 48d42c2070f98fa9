"""
Unit tests for the in-memory record store and the workspace YAML loader.
"""
import pytest
import yaml

from querygate.store.memory import InMemoryRecordStore
from querygate.store.records import ConnectionConfig, RLSPolicy
from querygate.store.yaml_store import load_workspace, parse_workspace

WORKSPACE_YAML = """
connections:
  - id: sales_db
    workspace_id: acme
    kind: relational
    host: db.internal
    port: "5432"
    database: analytics
    username: reader
    password: "${SALES_DB_PASSWORD}"
    extra: {dialect: postgresql}
  - id: crm
    workspace_id: acme
    kind: saas
policies:
  - id: consumer_only
    workspace_id: acme
    connection_id: sales_db
    role: analyst
    table_name: sales
    condition: "segment = 'Consumer'"
    priority: 5
"""


# ── InMemoryRecordStore ──────────────────────────────────

def test_lookup_and_policy_scoping():
    store = InMemoryRecordStore(
        [ConnectionConfig(id="a", workspace_id="w1", kind="file")],
        [
            RLSPolicy(id="p1", workspace_id="w1", connection_id="a", table_name="*", condition="1 = 1"),
            RLSPolicy(id="p2", workspace_id="w2", connection_id="a", table_name="*", condition="1 = 1"),
        ],
    )
    assert store.get_connection("a").kind == "file"
    assert store.get_connection("missing") is None
    assert [p.id for p in store.list_policies("w1", "a")] == ["p1"]


def test_update_notifies_listeners():
    store = InMemoryRecordStore([ConnectionConfig(id="a", workspace_id="w", kind="file", file_path="x.csv")])
    seen = []
    store.subscribe(seen.append)
    updated = store.update_connection("a", file_path="y.csv")
    assert updated.file_path == "y.csv"
    assert store.get_connection("a").file_path == "y.csv"
    assert seen == ["a"]


def test_update_cannot_move_workspace():
    store = InMemoryRecordStore([ConnectionConfig(id="a", workspace_id="w", kind="file")])
    with pytest.raises(ValueError):
        store.update_connection("a", workspace_id="other")


def test_delete_removes_scoped_policies():
    store = InMemoryRecordStore(
        [ConnectionConfig(id="a", workspace_id="w", kind="file")],
        [RLSPolicy(id="p", workspace_id="w", connection_id="a", table_name="*", condition="1 = 1")],
    )
    seen = []
    store.subscribe(seen.append)
    assert store.delete_connection("a") is True
    assert store.list_policies("w", "a") == []
    assert store.delete_connection("a") is False
    assert seen == ["a"]


def test_failing_listener_does_not_break_update():
    store = InMemoryRecordStore([ConnectionConfig(id="a", workspace_id="w", kind="file")])

    def boom(_):
        raise RuntimeError("listener failed")

    store.subscribe(boom)
    store.update_connection("a", name="renamed")
    assert store.get_connection("a").name == "renamed"


def test_fingerprint_changes_with_settings():
    a = ConnectionConfig(id="a", workspace_id="w", kind="file", extra={"format": "csv"})
    b = ConnectionConfig(id="a", workspace_id="w", kind="file", extra={"format": "tsv"})
    assert a.fingerprint() != b.fingerprint()


# ── YAML loader ──────────────────────────────────────────

def test_parse_workspace_expands_env(monkeypatch):
    monkeypatch.setenv("SALES_DB_PASSWORD", "s3cret")
    store = parse_workspace(yaml.safe_load(WORKSPACE_YAML))
    conn = store.get_connection("sales_db")
    assert conn.password == "s3cret"
    assert conn.port == 5432
    assert conn.extra == {"dialect": "postgresql"}
    assert store.get_connection("crm").extra == {}

    [policy] = store.list_policies("acme", "sales_db")
    assert policy.role == "analyst"
    assert policy.priority == 5
    assert policy.is_active is True


def test_load_workspace_file(tmp_path):
    path = tmp_path / "workspace.yml"
    path.write_text(WORKSPACE_YAML)
    store = load_workspace(path)
    assert {c.id for c in store.list_connections()} == {"sales_db", "crm"}


def test_parse_empty_workspace():
    assert parse_workspace(None).list_connections() == []
