"""
REST connector -- each configured endpoint is exposed as a table.

Endpoint payloads are fetched with httpx, flattened into DataFrames and
queried through DuckDB.  Only endpoints named in the query are fetched.
"""
from __future__ import annotations

import json
import re
from typing import Any

import httpx
import pandas as pd

from querygate.catalog.schema import ColumnInfo, QueryResult, SchemaInfo, TableInfo
from querygate.connectors import memory_engine
from querygate.connectors.base import Connector
from querygate.connectors.options import RestOptions, parse_rest
from querygate.connectors.types import infer_json_column
from querygate.core.config import Settings
from querygate.core.errors import (
    ConnectivityError,
    ExecutionError,
    QueryTimeoutError,
    SchemaFetchError,
)
from querygate.core.logging import get_logger
from querygate.core.utils import Deadline
from querygate.store.records import REST, ConnectionConfig

logger = get_logger(__name__)

# Envelope keys commonly wrapping the record list
_ENVELOPE_KEYS = ("data", "results", "items", "records")


def extract_records(payload: Any) -> list[dict[str, Any]]:
    """Normalise a JSON payload to a list of record dicts."""
    if isinstance(payload, dict):
        for key in _ENVELOPE_KEYS:
            if isinstance(payload.get(key), list):
                payload = payload[key]
                break
        else:
            payload = [payload]
    if not isinstance(payload, list):
        return [{"value": payload}]
    return [r if isinstance(r, dict) else {"value": r} for r in payload]


def records_to_frame(records: list[dict[str, Any]]) -> pd.DataFrame:
    """Build a DataFrame; nested objects are kept as JSON text."""
    flat = [
        {k: json.dumps(v) if isinstance(v, (dict, list)) else v for k, v in r.items()}
        for r in records
    ]
    return pd.DataFrame.from_records(flat)


class RestConnector(Connector):
    kind = REST
    dialect = "duckdb"
    supports_derived_tables = True
    uses_http = True

    def __init__(
        self,
        config: ConnectionConfig,
        settings: Settings | None = None,
        client: httpx.Client | None = None,
    ):
        super().__init__(config, settings)
        self._client = client
        self._owns_client = client is None

    @classmethod
    def parse_options(cls, config: ConnectionConfig) -> tuple[RestOptions | None, list[str]]:
        return parse_rest(config)

    # ── HTTP ────────────────────────────────────────────

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client()
            self._owns_client = True
        return self._client

    def _get(self, path: str, timeout: float) -> httpx.Response:
        opts: RestOptions = self.options
        url = f"{opts.base_url}{path if path.startswith('/') else '/' + path}"
        response = self.client.get(url, headers=opts.request_headers(), timeout=timeout)
        if response.status_code >= 400:
            raise ConnectivityError(
                f"API returned {response.status_code} for {path}: {response.text[:200]}"
            )
        return response

    def fetch_endpoint(self, name: str, timeout: float) -> list[dict[str, Any]]:
        path = self.options.endpoints[name]
        try:
            response = self._get(path, timeout)
            return extract_records(response.json())
        except httpx.TimeoutException as exc:
            raise QueryTimeoutError(f"Endpoint '{name}' did not respond within {timeout:g}s") from exc
        except httpx.HTTPError as exc:
            raise ConnectivityError(f"Request to endpoint '{name}' failed: {exc}") from exc
        except ValueError as exc:
            raise ConnectivityError(f"Endpoint '{name}' did not return JSON") from exc

    # ── Contract ────────────────────────────────────────

    def _ping(self, timeout: float) -> None:
        try:
            self._get(self.options.health_endpoint, timeout)
        except httpx.HTTPError as exc:
            raise ConnectivityError(f"REST API connection failed: {exc}") from exc

    def fetch_schema(self) -> SchemaInfo:
        deadline = Deadline(self.settings.query_timeout_seconds)
        tables = []
        for name in self.options.endpoints:
            try:
                records = self.fetch_endpoint(name, max(deadline.remaining(), 0.1))
            except (ConnectivityError, QueryTimeoutError) as exc:
                raise SchemaFetchError(f"Cannot sample endpoint '{name}': {exc.message}") from exc
            keys: list[str] = []
            for record in records:
                keys.extend(k for k in record if k not in keys)
            columns = [
                ColumnInfo(name=k, type=infer_json_column([r.get(k) for r in records]))
                for k in keys
            ]
            tables.append(TableInfo(name=name, columns=columns, row_count=len(records)))
        return SchemaInfo(tables=tables)

    def referenced_endpoints(self, query_text: str) -> list[str]:
        return [
            name for name in self.options.endpoints
            if re.search(rf"(?<![\w.]){re.escape(name)}(?!\w)", query_text, re.IGNORECASE)
        ]

    def execute_query(self, query_text: str, timeout: float | None = None) -> QueryResult:
        deadline = Deadline(self._timeout(timeout))
        names = self.referenced_endpoints(query_text)
        if not names:
            raise ExecutionError(
                "Query does not reference any configured endpoint. "
                f"Available: {', '.join(self.options.endpoints)}"
            )

        frames: dict[str, pd.DataFrame] = {}
        for name in names:
            if deadline.expired:
                raise QueryTimeoutError("Timed out while fetching endpoint data")
            try:
                records = self.fetch_endpoint(name, deadline.remaining())
            except ConnectivityError as exc:
                raise ExecutionError(exc.message) from exc
            frames[name] = records_to_frame(records)

        if deadline.expired:
            raise QueryTimeoutError("Timed out while fetching endpoint data")
        return memory_engine.run_query(
            frames, query_text, deadline.remaining(), max_rows=self._row_cap(),
        )

    def disconnect(self) -> None:
        if self._client is not None and self._owns_client:
            self._client.close()
            self._client = None
