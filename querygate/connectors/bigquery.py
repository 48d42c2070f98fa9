"""
BigQuery warehouse connector.

Selected for ``warehouse`` connections whose ``extra.engine`` is
``bigquery``.  ``google-cloud-bigquery`` is an optional extra and is imported
lazily.  A client is created per call and closed afterwards; every job runs
under the connection's ``maximum_bytes_billed`` cap.
"""
from __future__ import annotations

import concurrent.futures
from contextlib import contextmanager
from typing import Any, Generator

from querygate.catalog.schema import ColumnInfo, QueryResult, SchemaInfo, TableInfo
from querygate.connectors.base import Connector
from querygate.connectors.options import BigQueryOptions, parse_bigquery
from querygate.connectors.types import from_type_name
from querygate.core.errors import (
    ConnectivityError,
    ExecutionError,
    QueryTimeoutError,
    SchemaFetchError,
)
from querygate.core.logging import get_logger
from querygate.core.utils import serialise_value, timer
from querygate.store.records import WAREHOUSE, ConnectionConfig

logger = get_logger(__name__)

_COLUMNS_SQL = """
SELECT table_name, column_name, data_type, is_nullable
FROM `{project}.{dataset}.INFORMATION_SCHEMA.COLUMNS`
ORDER BY table_name, ordinal_position
"""


def _bigquery():
    try:
        from google.cloud import bigquery
    except ImportError as exc:
        raise ConnectivityError(
            "google-cloud-bigquery is not installed.  "
            "Run: pip install 'querygate[bigquery]'"
        ) from exc
    return bigquery


def _api_errors() -> tuple[type[BaseException], ...]:
    """Exception bases raised by the Google client libraries."""
    from google.api_core.exceptions import GoogleAPIError
    from google.auth.exceptions import GoogleAuthError

    return GoogleAPIError, GoogleAuthError


def _service_account_credentials(path: str) -> Any:
    from google.oauth2 import service_account

    return service_account.Credentials.from_service_account_file(path)


class BigQueryConnector(Connector):
    kind = WAREHOUSE
    dialect = "bigquery"
    supports_derived_tables = True

    @classmethod
    def parse_options(cls, config: ConnectionConfig) -> tuple[BigQueryOptions | None, list[str]]:
        return parse_bigquery(config)

    @contextmanager
    def _client(self) -> Generator[Any, None, None]:
        opts: BigQueryOptions = self.options
        bigquery = _bigquery()
        try:
            if opts.credentials_path:
                credentials = _service_account_credentials(opts.credentials_path)
                client = bigquery.Client(credentials=credentials, project=opts.project, location=opts.location)
            else:
                client = bigquery.Client(project=opts.project, location=opts.location)
        except (OSError, ValueError, *_api_errors()) as exc:
            raise ConnectivityError(f"BigQuery client could not be created: {exc}") from exc
        try:
            yield client
        finally:
            client.close()

    def _run(self, client: Any, sql: str, seconds: float) -> Any:
        """Start a capped job and wait for its first page of at most ``max_query_rows`` rows."""
        bigquery = _bigquery()
        job_config = bigquery.QueryJobConfig(
            maximum_bytes_billed=self.options.maximum_bytes_billed,
            use_query_cache=True,
        )
        job = client.query(sql, job_config=job_config, timeout=seconds)
        try:
            return job.result(max_results=self._row_cap(), timeout=seconds)
        except concurrent.futures.TimeoutError:
            job.cancel()
            raise

    def _ping(self, timeout: float) -> None:
        with self._client() as client:
            list(self._run(client, "SELECT 1", timeout))

    def fetch_schema(self) -> SchemaInfo:
        opts: BigQueryOptions = self.options
        sql = _COLUMNS_SQL.format(project=opts.project, dataset=opts.dataset)
        grouped: dict[str, list[ColumnInfo]] = {}
        try:
            with self._client() as client:
                for row in self._run(client, sql, self.settings.query_timeout_seconds):
                    grouped.setdefault(row["table_name"], []).append(
                        ColumnInfo(
                            name=row["column_name"],
                            type=from_type_name(row["data_type"]),
                            nullable=str(row["is_nullable"]).upper() == "YES",
                        )
                    )
        except (ConnectivityError, concurrent.futures.TimeoutError, *_api_errors()) as exc:
            raise SchemaFetchError(f"Could not read BigQuery schema for '{self.config.id}': {exc}") from exc

        tables = [
            TableInfo(name=table, schema=opts.dataset, columns=cols)
            for table, cols in grouped.items()
        ]
        logger.info("Fetched schema for %s: %d tables", self.config.id, len(tables))
        return SchemaInfo(tables=tables)

    def execute_query(self, query_text: str, timeout: float | None = None) -> QueryResult:
        seconds = self._timeout(timeout)
        logger.info("Executing BigQuery query on %s (%d chars)", self.config.id, len(query_text))
        try:
            with timer() as t, self._client() as client:
                results = self._run(client, query_text, seconds)
                columns = [field.name for field in results.schema or []]
                raw_rows = [tuple(row.values()) for row in results]
        except ConnectivityError as exc:
            raise ExecutionError(exc.message) from exc
        except concurrent.futures.TimeoutError as exc:
            raise QueryTimeoutError(f"Query exceeded the {seconds:g}s timeout") from exc
        except _api_errors() as exc:
            raise ExecutionError(f"Query failed: {exc}") from exc

        rows = [
            {col: serialise_value(val) for col, val in zip(columns, row)}
            for row in raw_rows[: self._row_cap()]
        ]
        return QueryResult(columns=columns, rows=rows, row_count=len(rows), execution_time_ms=t["elapsed_ms"])
