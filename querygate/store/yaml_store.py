"""
Loads connections and row-level policies from a workspace YAML file.

Example YAML:
  connections:
    - id: sales_db
      workspace_id: acme
      kind: relational
      host: db.internal
      database: analytics
      username: reader
      password: ${SALES_DB_PASSWORD}
      extra: {dialect: postgresql}
  policies:
    - id: consumer_only
      workspace_id: acme
      connection_id: sales_db
      role: analyst
      table_name: sales
      condition: "segment = 'Consumer'"

``${VAR}`` references are expanded from the environment so credentials stay
out of the file.
"""
from __future__ import annotations

import os
import re
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

from querygate.core.config import get_settings
from querygate.core.logging import get_logger
from querygate.store.memory import InMemoryRecordStore
from querygate.store.records import ConnectionConfig, RLSPolicy

logger = get_logger(__name__)

_ENV_REF = re.compile(r"\$\{(\w+)\}")


def _expand_env(value: Any) -> Any:
    if isinstance(value, str):
        return _ENV_REF.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _expand_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_expand_env(v) for v in value]
    return value


# ── Parsing ──────────────────────────────────────────────

def _parse_connection(raw: dict[str, Any]) -> ConnectionConfig:
    raw = _expand_env(raw)
    port = raw.get("port")
    return ConnectionConfig(
        id=str(raw["id"]),
        workspace_id=str(raw["workspace_id"]),
        kind=raw["kind"],
        name=raw.get("name", ""),
        host=raw.get("host"),
        port=int(port) if port not in (None, "") else None,
        database=raw.get("database"),
        username=raw.get("username"),
        password=raw.get("password"),
        file_path=raw.get("file_path"),
        project=raw.get("project"),
        extra=raw.get("extra") or {},
    )


def _parse_policy(raw: dict[str, Any]) -> RLSPolicy:
    return RLSPolicy(
        id=str(raw["id"]),
        workspace_id=str(raw["workspace_id"]),
        connection_id=str(raw["connection_id"]),
        table_name=raw["table_name"],
        condition=raw["condition"],
        user_id=raw.get("user_id"),
        role=raw.get("role"),
        is_active=raw.get("is_active", True),
        name=raw.get("name", ""),
        priority=raw.get("priority", 0),
    )


def parse_workspace(raw_yaml: dict[str, Any] | None) -> InMemoryRecordStore:
    raw_yaml = raw_yaml or {}
    connections = [_parse_connection(c) for c in raw_yaml.get("connections", [])]
    policies = [_parse_policy(p) for p in raw_yaml.get("policies", [])]
    return InMemoryRecordStore(connections, policies)


# ── Public API ───────────────────────────────────────────

def load_workspace(path: str | Path) -> InMemoryRecordStore:
    """Parse a workspace YAML file into a record store."""
    with open(path) as f:
        raw = yaml.safe_load(f)
    store = parse_workspace(raw)
    logger.info(
        "Loaded workspace file %s  connections=%d",
        path, len(store.list_connections()),
    )
    return store


@lru_cache
def load_record_store() -> InMemoryRecordStore:
    """Load and cache the record store configured in settings.

    A missing file yields an empty store rather than an error so the API can
    start before any connection is configured.
    """
    path = Path(get_settings().record_store_path)
    if not path.exists():
        logger.warning("Record store file %s not found -- starting empty", path)
        return InMemoryRecordStore()
    return load_workspace(path)
