"""
In-memory SQL over parsed tabular data (DuckDB).

Every call opens a fresh DuckDB connection, registers the supplied frames as
tables, runs the query and closes the connection, so no query state survives
between calls.  A timer interrupts the query when the deadline passes.
"""
from __future__ import annotations

import threading

import duckdb
import pandas as pd

from querygate.catalog.schema import QueryResult
from querygate.core.errors import ExecutionError, QueryTimeoutError
from querygate.core.logging import get_logger
from querygate.core.utils import serialise_value, timer

logger = get_logger(__name__)


def run_query(
    frames: dict[str, pd.DataFrame],
    query_text: str,
    timeout: float,
    max_rows: int | None = None,
) -> QueryResult:
    """Execute *query_text* against *frames* and return JSON-safe rows.

    Raises
    ------
    QueryTimeoutError
        The query was still running when *timeout* seconds elapsed.
    ExecutionError
        DuckDB rejected or failed the query.
    """
    conn = duckdb.connect(database=":memory:")
    fired = threading.Event()

    def _interrupt() -> None:
        fired.set()
        conn.interrupt()

    watchdog = threading.Timer(timeout, _interrupt)
    try:
        for name, frame in frames.items():
            conn.register(name, frame)
        watchdog.start()
        with timer() as t:
            cursor = conn.execute(query_text)
            columns = [d[0] for d in cursor.description or []]
            raw_rows = cursor.fetchmany(max_rows) if max_rows else cursor.fetchall()
    except duckdb.Error as exc:
        if fired.is_set():
            raise QueryTimeoutError(f"Query exceeded the {timeout:g}s timeout") from exc
        raise ExecutionError(f"Query failed: {exc}") from exc
    finally:
        watchdog.cancel()
        conn.close()

    rows = [
        {col: serialise_value(val) for col, val in zip(columns, row)}
        for row in raw_rows
    ]
    logger.info("In-memory query returned %d rows in %dms", len(rows), t["elapsed_ms"])
    return QueryResult(
        columns=columns,
        rows=rows,
        row_count=len(rows),
        execution_time_ms=t["elapsed_ms"],
    )
