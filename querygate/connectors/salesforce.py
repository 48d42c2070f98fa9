"""
Salesforce connector -- SOQL over the Salesforce REST API (httpx).

Authentication is either a pre-issued access token with its instance URL, or
the OAuth username-password flow.  Objects are exposed as tables; query text
is translated to SOQL and row-level conditions are injected into its WHERE
clause because SOQL cannot select from a derived table.
"""
from __future__ import annotations

from typing import Any

import httpx

from querygate.catalog.schema import ColumnInfo, QueryResult, SchemaInfo, TableInfo
from querygate.connectors.base import Connector
from querygate.connectors.options import SalesforceOptions, parse_salesforce
from querygate.connectors.soql import to_soql
from querygate.connectors.types import from_salesforce
from querygate.core.config import Settings
from querygate.core.errors import (
    ConnectivityError,
    ExecutionError,
    QueryTimeoutError,
    SchemaFetchError,
)
from querygate.core.logging import get_logger
from querygate.core.utils import Deadline, serialise_value, timer
from querygate.store.records import SAAS, ConnectionConfig

logger = get_logger(__name__)


def strip_attributes(value: Any) -> Any:
    """Drop the ``attributes`` envelope Salesforce adds to every record."""
    if isinstance(value, dict):
        return {k: strip_attributes(v) for k, v in value.items() if k != "attributes"}
    if isinstance(value, list):
        return [strip_attributes(v) for v in value]
    return value


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, list) and body and isinstance(body[0], dict):
        return f"{body[0].get('errorCode', '')}: {body[0].get('message', '')}".strip(": ")
    if isinstance(body, dict):
        return str(body.get("error_description") or body.get("message") or body)
    return str(body)[:200]


class SalesforceConnector(Connector):
    kind = SAAS
    dialect = "soql"
    supports_derived_tables = False
    reusable = True
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
        self._access_token: str | None = None
        self._instance_url: str | None = None
        self._fields: dict[str, list[str]] = {}

    @classmethod
    def parse_options(cls, config: ConnectionConfig) -> tuple[SalesforceOptions | None, list[str]]:
        return parse_salesforce(config)

    # ── Session ─────────────────────────────────────────

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client()
            self._owns_client = True
        return self._client

    @property
    def api_root(self) -> str:
        return f"/services/data/v{self.options.api_version}"

    def _authenticate(self, timeout: float) -> None:
        opts: SalesforceOptions = self.options
        if not opts.uses_password_flow:
            self._access_token = opts.access_token
            self._instance_url = opts.instance_url
            return
        response = self.client.post(
            f"{opts.login_url}/services/oauth2/token",
            data={
                "grant_type": "password",
                "client_id": opts.client_id,
                "client_secret": opts.client_secret,
                "username": opts.username,
                "password": opts.password,
            },
            timeout=timeout,
        )
        if response.status_code >= 400:
            raise ConnectivityError(f"Salesforce login failed: {_error_message(response)}")
        body = response.json()
        self._access_token = body["access_token"]
        self._instance_url = (body.get("instance_url") or opts.instance_url or "").rstrip("/")
        logger.info("Salesforce session opened for %s", self.config.id)

    def _request(self, path: str, timeout: float, params: dict | None = None) -> dict[str, Any]:
        if self._access_token is None:
            self._authenticate(timeout)
        url = path if path.startswith("http") else f"{self._instance_url}{path}"
        response = self.client.get(
            url,
            params=params,
            headers={"Authorization": f"Bearer {self._access_token}", "Accept": "application/json"},
            timeout=timeout,
        )
        if response.status_code == 401:
            self._access_token = None
            raise ConnectivityError(f"Salesforce session rejected: {_error_message(response)}")
        if response.status_code >= 400:
            raise ExecutionError(f"Salesforce API error {response.status_code}: {_error_message(response)}")
        return response.json()

    # ── Metadata ────────────────────────────────────────

    def describe(self, object_name: str, timeout: float) -> dict[str, Any]:
        return self._request(f"{self.api_root}/sobjects/{object_name}/describe", timeout)

    def _field_names(self, object_name: str, timeout: float) -> list[str]:
        if object_name not in self._fields:
            fields = self.describe(object_name, timeout).get("fields", [])
            self._fields[object_name] = [f["name"] for f in fields]
        return self._fields[object_name]

    # ── Contract ────────────────────────────────────────

    def _ping(self, timeout: float) -> None:
        try:
            self._request(f"{self.api_root}/query", timeout, params={"q": "SELECT Id FROM User LIMIT 1"})
        except httpx.HTTPError as exc:
            raise ConnectivityError(f"Salesforce connection failed: {exc}") from exc

    def fetch_schema(self) -> SchemaInfo:
        deadline = Deadline(self.settings.query_timeout_seconds)
        tables = []
        for object_name in self.options.objects:
            try:
                meta = self.describe(object_name, max(deadline.remaining(), 0.1))
            except (httpx.HTTPError, ConnectivityError, ExecutionError) as exc:
                raise SchemaFetchError(f"Cannot describe Salesforce object '{object_name}': {exc}") from exc
            fields = meta.get("fields", [])
            self._fields[object_name] = [f["name"] for f in fields]
            columns = [
                ColumnInfo(
                    name=f["name"],
                    type=from_salesforce(f.get("type", "")),
                    nullable=bool(f.get("nillable", True)),
                    is_primary=f["name"] == "Id",
                    is_foreign=bool(f.get("referenceTo")),
                    description=f.get("label"),
                )
                for f in fields
            ]
            tables.append(TableInfo(name=meta.get("name", object_name), columns=columns, schema="salesforce"))
        return SchemaInfo(tables=tables)

    def execute_query(self, query_text: str, timeout: float | None = None) -> QueryResult:
        deadline = Deadline(self._timeout(timeout))
        cap = self._row_cap()
        records: list[dict[str, Any]] = []
        with timer() as t:
            try:
                soql = to_soql(
                    query_text,
                    lambda obj: self._field_names(obj, max(deadline.remaining(), 0.1)),
                )
                logger.info("Running SOQL on %s: %s", self.config.id, soql)
                page = self._request(f"{self.api_root}/query", deadline.remaining(), params={"q": soql})
                records.extend(page.get("records", []))
                while not page.get("done", True) and page.get("nextRecordsUrl") and len(records) < cap:
                    if deadline.expired:
                        raise QueryTimeoutError("Timed out while paging Salesforce results")
                    page = self._request(page["nextRecordsUrl"], deadline.remaining())
                    records.extend(page.get("records", []))
            except httpx.TimeoutException as exc:
                raise QueryTimeoutError(f"Salesforce query exceeded the {deadline.seconds:g}s timeout") from exc
            except httpx.HTTPError as exc:
                raise ExecutionError(f"Salesforce request failed: {exc}") from exc
            except ConnectivityError as exc:
                raise ExecutionError(exc.message) from exc

        rows = [serialise_value(strip_attributes(r)) for r in records[:cap]]
        columns: list[str] = []
        for row in rows:
            columns.extend(k for k in row if k not in columns)
        return QueryResult(columns=columns, rows=rows, row_count=len(rows), execution_time_ms=t["elapsed_ms"])

    def disconnect(self) -> None:
        self._access_token = None
        self._fields.clear()
        if self._client is not None and self._owns_client:
            self._client.close()
            self._client = None
