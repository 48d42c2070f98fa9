"""
Relational connector -- PostgreSQL, MySQL and SQLite through SQLAlchemy.

Each connector owns one pooled engine.  Every query runs on a connection
that is put into read-only mode and given a per-statement timeout first:
  - PostgreSQL: ``SET TRANSACTION READ ONLY`` + ``SET LOCAL statement_timeout``
  - MySQL: ``SET SESSION TRANSACTION READ ONLY`` + ``MAX_EXECUTION_TIME``
  - SQLite: ``PRAGMA query_only`` + a progress handler that aborts at the deadline
"""
from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Any, Generator

from sqlalchemy import create_engine, inspect
from sqlalchemy.engine import URL, Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from querygate.catalog.schema import ColumnInfo, QueryResult, SchemaInfo, TableInfo
from querygate.connectors.base import Connector
from querygate.connectors.options import RelationalOptions, parse_relational
from querygate.connectors.types import from_sqlalchemy
from querygate.core.errors import (
    ConnectivityError,
    ExecutionError,
    QueryTimeoutError,
    SchemaFetchError,
)
from querygate.core.logging import get_logger
from querygate.core.utils import serialise_value, timer
from querygate.store.records import RELATIONAL, ConnectionConfig

logger = get_logger(__name__)

_PG_QUERY_CANCELED = "57014"
_MYSQL_QUERY_TIMEOUT = 3024


class SqlConnector(Connector):
    kind = RELATIONAL
    supports_derived_tables = True
    reusable = True

    def __init__(self, config: ConnectionConfig, settings=None):
        super().__init__(config, settings)
        self._engine: Engine | None = None

    @classmethod
    def parse_options(cls, config: ConnectionConfig) -> tuple[RelationalOptions | None, list[str]]:
        return parse_relational(config)

    @property
    def dialect(self) -> str:
        return self.options.dialect

    # ── Engine ──────────────────────────────────────────

    def url(self) -> URL:
        opts: RelationalOptions = self.options
        if opts.dialect == "sqlite":
            return URL.create("sqlite", database=opts.database)
        return URL.create(
            opts.driver,
            username=opts.username,
            password=opts.password,
            host=opts.host,
            port=opts.port,
            database=opts.database,
        )

    def get_engine(self) -> Engine:
        """Return this connection's engine (lazy-created, pooled)."""
        if self._engine is None:
            opts: RelationalOptions = self.options
            connect_timeout = int(self.settings.connection_test_timeout_seconds) or 1
            if opts.dialect == "sqlite":
                self._engine = create_engine(
                    self.url(), connect_args={"timeout": connect_timeout}, echo=False,
                )
            else:
                self._engine = create_engine(
                    self.url(),
                    pool_pre_ping=True,
                    pool_size=opts.pool_size,
                    max_overflow=opts.pool_size * 2,
                    connect_args={"connect_timeout": connect_timeout},
                    echo=False,
                )
            logger.info(
                "DB engine created  connection=%s  dialect=%s  host=%s  db=%s",
                self.config.id, opts.dialect, opts.host, opts.database,
            )
        return self._engine

    @contextmanager
    def readonly_connection(self, timeout: float) -> Generator[Connection, None, None]:
        """Yield a pooled connection in read-only mode with a statement timeout.

        The transaction is rolled back and the connection returned to the pool
        on exit.
        """
        conn = self.get_engine().connect()
        dbapi_conn = None
        try:
            dialect = self.dialect
            ms = max(int(timeout * 1000), 1)
            if dialect == "postgresql":
                conn.exec_driver_sql("SET TRANSACTION READ ONLY")
                conn.exec_driver_sql(f"SET LOCAL statement_timeout = {ms}")
            elif dialect == "mysql":
                conn.exec_driver_sql("SET SESSION TRANSACTION READ ONLY")
                conn.exec_driver_sql(f"SET SESSION MAX_EXECUTION_TIME = {ms}")
            else:
                conn.exec_driver_sql("PRAGMA query_only = ON")
                expires_at = time.monotonic() + timeout
                dbapi_conn = conn.connection.dbapi_connection
                dbapi_conn.set_progress_handler(
                    lambda: 1 if time.monotonic() > expires_at else 0, 1000,
                )
            yield conn
        finally:
            if dbapi_conn is not None:
                dbapi_conn.set_progress_handler(None, 0)
            conn.close()

    def _is_timeout(self, exc: SQLAlchemyError, started: float, timeout: float) -> bool:
        orig = getattr(exc, "orig", None)
        if getattr(orig, "pgcode", None) == _PG_QUERY_CANCELED:
            return True
        args = getattr(orig, "args", ())
        if args and args[0] == _MYSQL_QUERY_TIMEOUT:
            return True
        return time.monotonic() - started >= timeout

    # ── Contract ────────────────────────────────────────

    def _ping(self, timeout: float) -> None:
        try:
            with self.readonly_connection(timeout) as conn:
                conn.exec_driver_sql("SELECT 1").scalar()
        except SQLAlchemyError as exc:
            raise ConnectivityError(f"Database connection failed: {exc}") from exc

    def fetch_schema(self) -> SchemaInfo:
        schema = self.options.schema
        try:
            inspector = inspect(self.get_engine())
            tables = []
            for name in sorted(inspector.get_table_names(schema=schema)):
                pk = set(inspector.get_pk_constraint(name, schema=schema).get("constrained_columns") or [])
                fk: set[str] = set()
                for constraint in inspector.get_foreign_keys(name, schema=schema):
                    fk.update(constraint.get("constrained_columns") or [])
                columns = [
                    ColumnInfo(
                        name=col["name"],
                        type=from_sqlalchemy(col["type"]),
                        nullable=bool(col.get("nullable", True)),
                        is_primary=col["name"] in pk,
                        is_foreign=col["name"] in fk,
                        description=col.get("comment"),
                    )
                    for col in inspector.get_columns(name, schema=schema)
                ]
                tables.append(TableInfo(name=name, columns=columns, schema=schema))
        except SQLAlchemyError as exc:
            raise SchemaFetchError(f"Could not read schema for '{self.config.id}': {exc}") from exc
        logger.info("Fetched schema for %s: %d tables", self.config.id, len(tables))
        return SchemaInfo(tables=tables)

    def execute_query(self, query_text: str, timeout: float | None = None) -> QueryResult:
        """Execute read-only query text and return rows as serialisable dicts.

        Raises
        ------
        QueryTimeoutError
            The backend cancelled the statement at the deadline.
        ExecutionError
            Any other database failure.
        """
        seconds = self._timeout(timeout)
        logger.info("Executing SQL on %s (%d chars)", self.config.id, len(query_text))
        started = time.monotonic()
        try:
            with timer() as t, self.readonly_connection(seconds) as conn:
                # Driver-level execution: no bind-parameter parsing of ':name' in literals
                result = conn.exec_driver_sql(query_text)
                columns = list(result.keys())
                raw_rows = result.fetchmany(self._row_cap())
        except SQLAlchemyError as exc:
            if self._is_timeout(exc, started, seconds):
                raise QueryTimeoutError(f"Query exceeded the {seconds:g}s timeout") from exc
            raise ExecutionError(f"Query failed: {getattr(exc, 'orig', None) or exc}") from exc

        rows: list[dict[str, Any]] = [
            {col: serialise_value(val) for col, val in zip(columns, row)}
            for row in raw_rows
        ]
        logger.info("Returned %d rows", len(rows))
        return QueryResult(columns=columns, rows=rows, row_count=len(rows), execution_time_ms=t["elapsed_ms"])

    def disconnect(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
