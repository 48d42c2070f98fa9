"""
Integration tests -- Snowflake warehouse connector.

Requires the ``warehouse`` extra and credentials in QUERYGATE_TEST_SNOWFLAKE_*
(ACCOUNT, USER, PASSWORD, DATABASE, optional WAREHOUSE).  Skipped otherwise.
"""
from __future__ import annotations

import os

import pytest

pytest.importorskip("snowflake.connector")

from querygate.connectors.snowflake import SnowflakeConnector
from querygate.store.records import ConnectionConfig

_ENV = {k: os.environ.get(f"QUERYGATE_TEST_SNOWFLAKE_{k}") for k in ("ACCOUNT", "USER", "PASSWORD", "DATABASE")}

pytestmark = pytest.mark.skipif(not all(_ENV.values()), reason="Snowflake credentials not configured")


@pytest.fixture
def connector():
    config = ConnectionConfig(
        id="sf", workspace_id="it", kind="warehouse",
        username=_ENV["USER"], password=_ENV["PASSWORD"], database=_ENV["DATABASE"],
        extra={
            "account": _ENV["ACCOUNT"],
            "warehouse": os.environ.get("QUERYGATE_TEST_SNOWFLAKE_WAREHOUSE"),
        },
    )
    return SnowflakeConnector(config)


def test_connection(connector):
    outcome = connector.test_connection(timeout=30)
    assert outcome.success, outcome.error


def test_select(connector):
    result = connector.execute_query("SELECT 1 AS N", timeout=30)
    assert result.rows == [{"N": 1}]


def test_schema(connector):
    schema = connector.fetch_schema()
    assert all(t.schema == "PUBLIC" for t in schema.tables)
