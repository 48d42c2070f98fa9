"""
File connector -- CSV / TSV / JSON / Excel / Parquet queried through DuckDB.

The file is parsed with pandas on every call; Excel workbooks expose one
table per sheet.
"""
from __future__ import annotations

from pathlib import Path

import pandas as pd

from querygate.catalog.schema import ColumnInfo, QueryResult, SchemaInfo, TableInfo
from querygate.connectors import memory_engine
from querygate.connectors.base import Connector
from querygate.connectors.options import FileOptions, parse_file
from querygate.connectors.types import from_pandas_dtype
from querygate.core.errors import ConnectivityError, ExecutionError, SchemaFetchError
from querygate.core.logging import get_logger
from querygate.store.records import FILE, ConnectionConfig

logger = get_logger(__name__)

_PARSE_ERRORS = (OSError, ValueError, pd.errors.ParserError, pd.errors.EmptyDataError)


def _table_name(raw: str) -> str:
    name = "".join(ch if ch.isalnum() or ch == "_" else "_" for ch in str(raw).strip())
    return name or "sheet"


def sheet_tables(sheets: dict[str, pd.DataFrame]) -> dict[str, pd.DataFrame]:
    """One table per sheet; names that collide after cleaning get ``_2``, ``_3`` ...

    DuckDB resolves identifiers case-insensitively, so ``Q1`` and ``q1``
    collide too.
    """
    tables: dict[str, pd.DataFrame] = {}
    taken: set[str] = set()
    for raw, frame in sheets.items():
        base = _table_name(raw)
        name = base
        n = 1
        while name.lower() in taken:
            n += 1
            name = f"{base}_{n}"
        if name != base:
            logger.warning("Sheet '%s' exposed as table '%s' (name collision)", raw, name)
        taken.add(name.lower())
        tables[name] = frame
    return tables


class FileConnector(Connector):
    kind = FILE
    dialect = "duckdb"
    supports_derived_tables = True

    @classmethod
    def parse_options(cls, config: ConnectionConfig) -> tuple[FileOptions | None, list[str]]:
        return parse_file(config)

    def load_frames(self) -> dict[str, pd.DataFrame]:
        """Parse the file into ``{table_name: DataFrame}``."""
        opts: FileOptions = self.options
        path = Path(opts.path)
        if not path.is_file():
            raise FileNotFoundError(f"File not found: {path}")

        if opts.format == "excel":
            sheets = pd.read_excel(path, sheet_name=None)
            return sheet_tables(sheets)
        if opts.format == "csv":
            frame = pd.read_csv(path, sep=opts.delimiter or ",")
        elif opts.format == "tsv":
            frame = pd.read_csv(path, sep=opts.delimiter or "\t")
        elif opts.format == "json":
            frame = pd.read_json(path, lines=opts.json_lines)
        else:
            frame = pd.read_parquet(path)
        return {opts.table_name: frame}

    def _ping(self, timeout: float) -> None:
        try:
            frames = self.load_frames()
        except _PARSE_ERRORS as exc:
            raise ConnectivityError(f"Cannot read {self.options.path}: {exc}") from exc
        if not any(len(f.columns) for f in frames.values()):
            raise ConnectivityError(f"{self.options.path} contains no columns")

    def fetch_schema(self) -> SchemaInfo:
        try:
            frames = self.load_frames()
        except _PARSE_ERRORS as exc:
            raise SchemaFetchError(f"Cannot read {self.options.path}: {exc}") from exc

        tables = [
            TableInfo(
                name=name,
                columns=[
                    ColumnInfo(name=str(col), type=from_pandas_dtype(dtype))
                    for col, dtype in frame.dtypes.items()
                ],
                row_count=len(frame),
            )
            for name, frame in frames.items()
        ]
        return SchemaInfo(tables=tables)

    def execute_query(self, query_text: str, timeout: float | None = None) -> QueryResult:
        try:
            frames = self.load_frames()
        except _PARSE_ERRORS as exc:
            raise ExecutionError(f"Cannot read {self.options.path}: {exc}") from exc
        return memory_engine.run_query(
            frames, query_text, self._timeout(timeout), max_rows=self._row_cap(),
        )
