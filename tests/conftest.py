"""
Shared fixtures: a small SQLite sales database, a record store pointing at
it and a couple of security contexts.
"""
from __future__ import annotations

import sqlite3

import pytest

from querygate.connectors.registry import ConnectorRegistry
from querygate.engine.context import SecurityContext
from querygate.engine.service import QueryService
from querygate.store.memory import InMemoryRecordStore
from querygate.store.records import ConnectionConfig, RLSPolicy

_SEED_SQL = """
CREATE TABLE orders (
    id          INTEGER PRIMARY KEY,
    status      TEXT,
    amount      REAL,
    segment     TEXT,
    tenant_id   TEXT,
    created_at  TEXT
);
INSERT INTO orders VALUES
    (1, 'completed', 100.0, 'Consumer',    'acme',   '2024-01-15 10:00:00'),
    (2, 'completed',  50.0, 'Corporate',   'acme',   '2024-01-20 12:00:00'),
    (3, 'pending',    25.5, 'Consumer',    'acme',   '2024-02-03 09:30:00'),
    (4, 'cancelled',  10.0, 'Home Office', 'globex', '2024-02-10 08:00:00'),
    (5, 'completed',  75.0, 'Consumer',    'globex', '2024-03-01 14:00:00');

CREATE TABLE sales (
    id       INTEGER PRIMARY KEY,
    region   TEXT,
    segment  TEXT,
    revenue  REAL
);
INSERT INTO sales VALUES
    (1, 'EU', 'Consumer',  10.0),
    (2, 'US', 'Corporate', 20.0),
    (3, 'US', 'Consumer',  30.0);
"""


class RecordingAuditSink:
    def __init__(self):
        self.events = []

    def record(self, event):
        self.events.append(event)


@pytest.fixture
def sales_db(tmp_path):
    path = tmp_path / "sales.db"
    conn = sqlite3.connect(path)
    conn.executescript(_SEED_SQL)
    conn.commit()
    conn.close()
    return path


@pytest.fixture
def sqlite_config(sales_db):
    return ConnectionConfig(
        id="sales_db",
        workspace_id="acme",
        kind="relational",
        name="Sales (SQLite)",
        database=str(sales_db),
        extra={"dialect": "sqlite"},
    )


@pytest.fixture
def consumer_policy():
    return RLSPolicy(
        id="consumer_only",
        workspace_id="acme",
        connection_id="sales_db",
        role="analyst",
        table_name="*",
        condition="segment = 'Consumer'",
    )


@pytest.fixture
def store(sqlite_config):
    return InMemoryRecordStore([sqlite_config])


@pytest.fixture
def audit_sink():
    return RecordingAuditSink()


@pytest.fixture
def service(store, audit_sink):
    svc = QueryService(store, ConnectorRegistry(), audit_sink)
    yield svc
    svc.registry.close_all()


@pytest.fixture
def analyst():
    return SecurityContext(user_id="u-1", tenant_id="acme", role="analyst", segment="Consumer")


@pytest.fixture
def viewer():
    return SecurityContext(user_id="u-2", tenant_id="acme", role="viewer")
