"""
Typed, per-kind connection options.

Each parser reads a generic ``ConnectionConfig`` and returns
``(options, errors)``.  Every problem is collected so a caller sees the full
list at once; nothing here touches the network or the filesystem.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from querygate.store.records import ConnectionConfig

RELATIONAL_DIALECTS = ("postgresql", "mysql", "sqlite")

_DRIVERS = {
    "postgresql": "postgresql+psycopg2",
    "mysql": "mysql+pymysql",
    "sqlite": "sqlite",
}
_DEFAULT_PORTS = {"postgresql": 5432, "mysql": 3306}

FILE_FORMATS = ("csv", "tsv", "json", "excel", "parquet")
_SUFFIX_FORMATS = {
    ".csv": "csv",
    ".tsv": "tsv",
    ".json": "json",
    ".jsonl": "json",
    ".xlsx": "excel",
    ".xls": "excel",
    ".parquet": "parquet",
}

WAREHOUSE_ENGINES = ("snowflake", "bigquery")
# Per-query scan cap; BigQuery fails the job instead of billing past it
DEFAULT_BIGQUERY_BYTES_BILLED = 10**9

DEFAULT_SALESFORCE_OBJECTS = (
    "Account", "Contact", "Lead", "Opportunity", "Case", "Task", "Event", "User",
)


def _check_port(port: int | None, errors: list[str]) -> None:
    if port is not None and not (0 < port < 65536):
        errors.append(f"Port {port} is out of range (1-65535)")


def _require(value: Any, message: str, errors: list[str]) -> None:
    if value in (None, ""):
        errors.append(message)


# ── Relational ───────────────────────────────────────────

@dataclass(frozen=True)
class RelationalOptions:
    dialect: str
    database: str
    host: str | None = None
    port: int | None = None
    username: str | None = None
    password: str | None = None
    schema: str | None = None
    pool_size: int = 5

    @property
    def driver(self) -> str:
        return _DRIVERS[self.dialect]


def parse_relational(config: ConnectionConfig) -> tuple[RelationalOptions | None, list[str]]:
    errors: list[str] = []
    extra = config.extra or {}
    dialect = str(extra.get("dialect", "postgresql")).lower()
    if dialect == "postgres":
        dialect = "postgresql"
    if dialect not in RELATIONAL_DIALECTS:
        errors.append(
            f"Unsupported relational dialect '{dialect}'. Choose from: {', '.join(RELATIONAL_DIALECTS)}"
        )

    database = config.database or (config.file_path if dialect == "sqlite" else None)
    _require(database, "Database name is required" if dialect != "sqlite"
             else "SQLite database path is required (database or file_path)", errors)
    if dialect != "sqlite":
        _require(config.host, "Host is required", errors)
        _require(config.username, "Username is required", errors)
    _check_port(config.port, errors)

    pool_size = extra.get("pool_size", 5)
    if not isinstance(pool_size, int) or pool_size < 1:
        errors.append("pool_size must be a positive integer")

    if errors:
        return None, errors
    return RelationalOptions(
        dialect=dialect,
        database=database,
        host=config.host,
        port=config.port or _DEFAULT_PORTS.get(dialect),
        username=config.username,
        password=config.password,
        schema=extra.get("schema"),
        pool_size=pool_size,
    ), []


# ── Warehouse (Snowflake) ────────────────────────────────

@dataclass(frozen=True)
class WarehouseOptions:
    account: str
    username: str
    password: str
    database: str
    schema: str = "PUBLIC"
    warehouse: str | None = None
    role: str | None = None


def warehouse_engine(config: ConnectionConfig) -> str:
    """``extra.engine`` of a warehouse connection, Snowflake when unset."""
    return str((config.extra or {}).get("engine") or "snowflake").lower()


def parse_warehouse(config: ConnectionConfig) -> tuple[WarehouseOptions | None, list[str]]:
    errors: list[str] = []
    extra = config.extra or {}
    engine = warehouse_engine(config)
    if engine not in WAREHOUSE_ENGINES:
        errors.append(
            f"Unsupported warehouse engine '{engine}'. Choose from: {', '.join(WAREHOUSE_ENGINES)}"
        )
    account = extra.get("account") or config.host
    _require(account, "Snowflake account identifier is required (extra.account or host)", errors)
    _require(config.username, "Username is required", errors)
    _require(config.password, "Password is required", errors)
    _require(config.database, "Database is required", errors)
    if errors:
        return None, errors
    return WarehouseOptions(
        account=account,
        username=config.username,
        password=config.password,
        database=config.database,
        schema=extra.get("schema") or "PUBLIC",
        warehouse=extra.get("warehouse"),
        role=extra.get("role"),
    ), []


# ── Warehouse (BigQuery) ─────────────────────────────────

@dataclass(frozen=True)
class BigQueryOptions:
    project: str
    dataset: str
    credentials_path: str | None = None
    location: str | None = None
    maximum_bytes_billed: int = DEFAULT_BIGQUERY_BYTES_BILLED


def parse_bigquery(config: ConnectionConfig) -> tuple[BigQueryOptions | None, list[str]]:
    """Project from ``project``, ``extra.project`` or host; dataset from ``extra.dataset`` or database.

    Without ``extra.credentials_path`` or ``file_path`` the client uses application
    default credentials.
    """
    errors: list[str] = []
    extra = config.extra or {}
    project = extra.get("project") or config.project or config.host
    dataset = extra.get("dataset") or config.database
    _require(project, "BigQuery project is required (project, extra.project or host)", errors)
    _require(dataset, "BigQuery dataset is required (extra.dataset or database)", errors)

    credentials_path = extra.get("credentials_path") or config.file_path
    if credentials_path and Path(credentials_path).suffix.lower() != ".json":
        errors.append(f"Service account key must be a .json file: {credentials_path}")

    raw_limit = extra.get("maximum_bytes_billed", DEFAULT_BIGQUERY_BYTES_BILLED)
    try:
        limit = int(raw_limit)
    except (TypeError, ValueError):
        errors.append(f"maximum_bytes_billed must be an integer, got {raw_limit!r}")
        limit = 0
    else:
        if limit <= 0:
            errors.append("maximum_bytes_billed must be positive")

    if errors:
        return None, errors
    return BigQueryOptions(
        project=project,
        dataset=dataset,
        credentials_path=credentials_path,
        location=extra.get("location"),
        maximum_bytes_billed=limit,
    ), []


# ── SaaS (Salesforce) ────────────────────────────────────

@dataclass(frozen=True)
class SalesforceOptions:
    instance_url: str | None
    access_token: str | None = None
    username: str | None = None
    password: str | None = None
    client_id: str | None = None
    client_secret: str | None = None
    login_url: str = "https://login.salesforce.com"
    api_version: str = "58.0"
    objects: tuple[str, ...] = DEFAULT_SALESFORCE_OBJECTS

    @property
    def uses_password_flow(self) -> bool:
        return not self.access_token


def parse_salesforce(config: ConnectionConfig) -> tuple[SalesforceOptions | None, list[str]]:
    errors: list[str] = []
    extra = config.extra or {}
    instance_url = extra.get("instance_url") or config.host
    access_token = extra.get("access_token")

    has_token = bool(access_token and instance_url)
    has_password = bool(
        config.username and config.password
        and extra.get("client_id") and extra.get("client_secret")
    )
    if not has_token and not has_password:
        errors.append(
            "Either access_token + instance_url, or username/password + "
            "client_id/client_secret is required for Salesforce"
        )
    for url in (instance_url, extra.get("login_url")):
        if url and not str(url).startswith("https://"):
            errors.append(f"Salesforce URL '{url}' must use https://")

    objects = extra.get("objects") or DEFAULT_SALESFORCE_OBJECTS
    if isinstance(objects, str) or not all(isinstance(o, str) and o for o in objects):
        errors.append("extra.objects must be a list of object names")

    if errors:
        return None, errors
    return SalesforceOptions(
        instance_url=instance_url.rstrip("/") if instance_url else None,
        access_token=access_token,
        username=config.username,
        password=config.password,
        client_id=extra.get("client_id"),
        client_secret=extra.get("client_secret"),
        login_url=str(extra.get("login_url") or "https://login.salesforce.com").rstrip("/"),
        api_version=str(extra.get("api_version", "58.0")),
        objects=tuple(objects),
    ), []


# ── File ─────────────────────────────────────────────────

@dataclass(frozen=True)
class FileOptions:
    path: str
    format: str
    table_name: str
    delimiter: str | None = None
    json_lines: bool = False


def parse_file(config: ConnectionConfig) -> tuple[FileOptions | None, list[str]]:
    errors: list[str] = []
    extra = config.extra or {}
    if not config.file_path:
        return None, ["file_path is required"]

    path = Path(config.file_path)
    fmt = str(extra.get("format") or _SUFFIX_FORMATS.get(path.suffix.lower(), "")).lower()
    if fmt not in FILE_FORMATS:
        errors.append(
            f"Cannot determine file format for '{path.name}'. "
            f"Set extra.format to one of: {', '.join(FILE_FORMATS)}"
        )
    table_name = extra.get("table_name") or path.stem
    if not table_name:
        errors.append("A table name could not be derived from the file path")

    if errors:
        return None, errors
    return FileOptions(
        path=str(path),
        format=fmt,
        table_name=table_name,
        delimiter=extra.get("delimiter"),
        json_lines=bool(extra.get("json_lines", path.suffix.lower() == ".jsonl")),
    ), []


# ── REST ─────────────────────────────────────────────────

@dataclass(frozen=True)
class RestOptions:
    base_url: str
    endpoints: dict[str, str] = field(default_factory=dict)
    api_key: str | None = None
    auth_token: str | None = None
    health_endpoint: str = "/"
    headers: dict[str, str] = field(default_factory=dict)

    def request_headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json", **self.headers}
        if self.api_key:
            headers["X-API-Key"] = self.api_key
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"
        return headers


def parse_rest(config: ConnectionConfig) -> tuple[RestOptions | None, list[str]]:
    errors: list[str] = []
    extra = config.extra or {}
    base_url = extra.get("base_url") or config.host
    if not base_url:
        errors.append("API base URL is required (extra.base_url or host)")
    elif not str(base_url).startswith(("http://", "https://")):
        errors.append(f"API base URL '{base_url}' must start with http:// or https://")

    api_key = extra.get("api_key")
    auth_token = extra.get("auth_token") or config.password
    if not api_key and not auth_token:
        errors.append("Either an API key or an auth token is required")

    endpoints = extra.get("endpoints") or {}
    if not isinstance(endpoints, dict) or not endpoints:
        errors.append("At least one endpoint must be configured in extra.endpoints")
    else:
        for name in endpoints:
            if not str(name).isidentifier():
                errors.append(f"Endpoint name '{name}' must be a valid identifier")

    if errors:
        return None, errors
    return RestOptions(
        base_url=str(base_url).rstrip("/"),
        endpoints={str(k): str(v) for k, v in endpoints.items()},
        api_key=api_key,
        auth_token=auth_token,
        health_endpoint=str(extra.get("health_endpoint", "/")),
        headers=dict(extra.get("headers") or {}),
    ), []
