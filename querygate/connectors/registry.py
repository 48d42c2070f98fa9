"""
Builds connectors from connection configs and keeps the reusable ones.

Reusable connectors (pooled SQL engines, authenticated API sessions) are
cached per connection id and evicted when the record store reports that the
connection changed or was deleted.  Other connectors are built per request
and disconnected when the lease ends.
"""
from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Callable, Generator

import httpx

from querygate.connectors.base import Connector
from querygate.connectors.bigquery import BigQueryConnector
from querygate.connectors.files import FileConnector
from querygate.connectors.options import warehouse_engine
from querygate.connectors.rest import RestConnector
from querygate.connectors.salesforce import SalesforceConnector
from querygate.connectors.snowflake import SnowflakeConnector
from querygate.connectors.sql import SqlConnector
from querygate.core.config import Settings, get_settings
from querygate.core.errors import ConfigValidationError
from querygate.core.logging import get_logger
from querygate.store.records import (
    FILE, RELATIONAL, REST, SAAS, WAREHOUSE, ConnectionConfig,
)

logger = get_logger(__name__)

_CONNECTORS: dict[str, type[Connector]] = {
    RELATIONAL: SqlConnector,
    WAREHOUSE: SnowflakeConnector,
    SAAS: SalesforceConnector,
    FILE: FileConnector,
    REST: RestConnector,
}

# Warehouse connections pick their client with extra.engine; Snowflake is the default
_WAREHOUSE_ENGINES: dict[str, type[Connector]] = {
    "snowflake": SnowflakeConnector,
    "bigquery": BigQueryConnector,
}


class ConnectorRegistry:
    def __init__(
        self,
        settings: Settings | None = None,
        http_client: httpx.Client | None = None,
        connectors: dict[str, type[Connector]] | None = None,
    ):
        self.settings = settings or get_settings()
        self._http_client = http_client
        self._classes = dict(connectors or _CONNECTORS)
        self._cache: dict[str, tuple[tuple, Connector]] = {}
        self._lock = threading.Lock()

    def build(self, config: ConnectionConfig) -> Connector:
        """Create a new, unconnected connector for *config*."""
        cls = self._classes.get(config.kind)
        if config.kind == WAREHOUSE and cls is SnowflakeConnector:
            cls = _WAREHOUSE_ENGINES.get(warehouse_engine(config), SnowflakeConnector)
        if cls is None:
            raise ConfigValidationError([
                f"Unsupported connection kind '{config.kind}'. "
                f"Choose from: {', '.join(self._classes)}"
            ])
        if getattr(cls, "uses_http", False):
            return cls(config, self.settings, client=self._http_client)
        return cls(config, self.settings)

    def get(self, config: ConnectionConfig) -> Connector:
        """Return the cached connector for *config*, or a fresh one."""
        with self._lock:
            cached = self._cache.get(config.id)
            if cached is not None:
                fingerprint, connector = cached
                if fingerprint == config.fingerprint():
                    return connector
                # Config changed without a notification: drop the stale handle
                del self._cache[config.id]
                connector.disconnect()

            connector = self.build(config)
            if connector.reusable:
                self._cache[config.id] = (config.fingerprint(), connector)
            return connector

    @contextmanager
    def lease(self, config: ConnectionConfig) -> Generator[Connector, None, None]:
        """Yield a connector; per-request connectors are disconnected on exit."""
        connector = self.get(config)
        try:
            yield connector
        finally:
            if not connector.reusable:
                connector.disconnect()

    def evict(self, connection_id: str) -> None:
        """Drop and disconnect the cached connector for *connection_id*."""
        with self._lock:
            cached = self._cache.pop(connection_id, None)
        if cached is not None:
            cached[1].disconnect()
            logger.info("Evicted cached connector for %s", connection_id)

    def attach(self, subscribe: Callable[[Callable[[str], None]], None]) -> None:
        """Register ``evict`` with a store's change notifications."""
        subscribe(self.evict)

    def close_all(self) -> None:
        with self._lock:
            cached = list(self._cache.values())
            self._cache.clear()
        for _, connector in cached:
            connector.disconnect()

    def cached_ids(self) -> list[str]:
        with self._lock:
            return list(self._cache)
