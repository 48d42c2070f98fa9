"""
Snowflake warehouse connector.

``snowflake-connector-python`` is an optional extra and is imported lazily,
the first time a connection is opened.  A fresh connection is opened per
call and always closed afterwards.
"""
from __future__ import annotations

from collections import OrderedDict
from contextlib import contextmanager
from typing import Any, Generator

from querygate.catalog.schema import ColumnInfo, QueryResult, SchemaInfo, TableInfo
from querygate.connectors.base import Connector
from querygate.connectors.options import WarehouseOptions, parse_warehouse
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

# Snowflake error number for a statement cancelled by its timeout
_STATEMENT_TIMEOUT_ERRNO = 604

_COLUMNS_SQL = """
SELECT table_schema, table_name, column_name, data_type, is_nullable, numeric_scale, comment
FROM information_schema.columns
WHERE table_schema = %s
ORDER BY table_name, ordinal_position
"""


def _snowflake():
    try:
        import snowflake.connector
    except ImportError as exc:
        raise ConnectivityError(
            "snowflake-connector-python is not installed.  "
            "Run: pip install 'querygate[warehouse]'"
        ) from exc
    return snowflake.connector


class SnowflakeConnector(Connector):
    kind = WAREHOUSE
    dialect = "snowflake"
    supports_derived_tables = True

    @classmethod
    def parse_options(cls, config: ConnectionConfig) -> tuple[WarehouseOptions | None, list[str]]:
        return parse_warehouse(config)

    @contextmanager
    def _connect(self, timeout: float) -> Generator[Any, None, None]:
        sf = _snowflake()
        opts: WarehouseOptions = self.options
        try:
            conn = sf.connect(
                account=opts.account,
                user=opts.username,
                password=opts.password,
                database=opts.database,
                schema=opts.schema,
                warehouse=opts.warehouse,
                role=opts.role,
                login_timeout=max(int(timeout), 1),
                network_timeout=max(int(timeout), 1),
                client_session_keep_alive=False,
            )
        except sf.errors.Error as exc:
            raise ConnectivityError(f"Snowflake connection failed: {exc}") from exc
        try:
            yield conn
        finally:
            conn.close()

    def _ping(self, timeout: float) -> None:
        with self._connect(timeout) as conn:
            cur = conn.cursor()
            try:
                cur.execute("SELECT 1", timeout=max(int(timeout), 1))
                cur.fetchone()
            finally:
                cur.close()

    def fetch_schema(self) -> SchemaInfo:
        sf = _snowflake()
        opts: WarehouseOptions = self.options
        timeout = self.settings.query_timeout_seconds
        grouped: OrderedDict[tuple[str, str], list[ColumnInfo]] = OrderedDict()
        try:
            with self._connect(timeout) as conn:
                cur = conn.cursor()
                try:
                    cur.execute(_COLUMNS_SQL, (opts.schema.upper(),), timeout=max(int(timeout), 1))
                    for schema, table, column, data_type, nullable, scale, comment in cur.fetchall():
                        grouped.setdefault((schema, table), []).append(
                            ColumnInfo(
                                name=column,
                                type=from_type_name(data_type, scale),
                                nullable=str(nullable).upper() == "YES",
                                description=comment,
                            )
                        )
                finally:
                    cur.close()
        except (ConnectivityError, sf.errors.Error) as exc:
            raise SchemaFetchError(f"Could not read Snowflake schema for '{self.config.id}': {exc}") from exc

        tables = [
            TableInfo(name=table, schema=schema, columns=cols)
            for (schema, table), cols in grouped.items()
        ]
        logger.info("Fetched schema for %s: %d tables", self.config.id, len(tables))
        return SchemaInfo(tables=tables)

    def execute_query(self, query_text: str, timeout: float | None = None) -> QueryResult:
        sf = _snowflake()
        seconds = self._timeout(timeout)
        logger.info("Executing Snowflake query on %s (%d chars)", self.config.id, len(query_text))
        try:
            with timer() as t, self._connect(seconds) as conn:
                cur = conn.cursor()
                try:
                    cur.execute(query_text, timeout=max(int(seconds), 1))
                    columns = [d[0] for d in cur.description or []]
                    raw_rows = cur.fetchmany(self._row_cap())
                finally:
                    cur.close()
        except ConnectivityError as exc:
            raise ExecutionError(exc.message) from exc
        except sf.errors.Error as exc:
            if getattr(exc, "errno", None) == _STATEMENT_TIMEOUT_ERRNO:
                raise QueryTimeoutError(f"Query exceeded the {seconds:g}s timeout") from exc
            raise ExecutionError(f"Query failed: {exc}") from exc

        rows = [
            {col: serialise_value(val) for col, val in zip(columns, row)}
            for row in raw_rows
        ]
        return QueryResult(columns=columns, rows=rows, row_count=len(rows), execution_time_ms=t["elapsed_ms"])
