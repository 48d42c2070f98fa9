"""
Record-store protocol and the in-process implementation.

The gateway never owns persistence: it only needs connection lookup by id and
policy lookup by (workspace, connection).  ``InMemoryRecordStore`` backs tests
and the YAML-configured deployment; change listeners let the connector
registry drop pooled handles when a connection is updated or deleted.
"""
from __future__ import annotations

import dataclasses
import threading
from typing import Callable, Iterable, Protocol

from querygate.store.records import ConnectionConfig, RLSPolicy
from querygate.core.logging import get_logger

logger = get_logger(__name__)

ChangeListener = Callable[[str], None]


class RecordStore(Protocol):
    def get_connection(self, connection_id: str) -> ConnectionConfig | None: ...

    def list_policies(self, workspace_id: str, connection_id: str) -> list[RLSPolicy]: ...


class InMemoryRecordStore:
    """Thread-safe dict-backed record store."""

    def __init__(
        self,
        connections: Iterable[ConnectionConfig] = (),
        policies: Iterable[RLSPolicy] = (),
    ):
        self._lock = threading.Lock()
        self._connections: dict[str, ConnectionConfig] = {c.id: c for c in connections}
        self._policies: dict[str, RLSPolicy] = {p.id: p for p in policies}
        self._listeners: list[ChangeListener] = []

    # ── Lookups ─────────────────────────────────────────

    def get_connection(self, connection_id: str) -> ConnectionConfig | None:
        with self._lock:
            return self._connections.get(connection_id)

    def list_connections(self, workspace_id: str | None = None) -> list[ConnectionConfig]:
        with self._lock:
            return [
                c for c in self._connections.values()
                if workspace_id is None or c.workspace_id == workspace_id
            ]

    def list_policies(self, workspace_id: str, connection_id: str) -> list[RLSPolicy]:
        with self._lock:
            return [
                p for p in self._policies.values()
                if p.workspace_id == workspace_id and p.connection_id == connection_id
            ]

    # ── Mutations ───────────────────────────────────────

    def add_connection(self, config: ConnectionConfig) -> None:
        with self._lock:
            if config.id in self._connections:
                raise ValueError(f"Connection '{config.id}' already exists")
            self._connections[config.id] = config

    def update_connection(self, connection_id: str, **changes) -> ConnectionConfig:
        """Replace a connection with an updated copy and notify listeners."""
        with self._lock:
            current = self._connections.get(connection_id)
            if current is None:
                raise KeyError(connection_id)
            if "id" in changes or "workspace_id" in changes:
                raise ValueError("Connection id and owning workspace cannot change")
            updated = dataclasses.replace(current, **changes)
            self._connections[connection_id] = updated
        self._notify(connection_id)
        return updated

    def delete_connection(self, connection_id: str) -> bool:
        """Remove a connection and every policy scoped to it."""
        with self._lock:
            removed = self._connections.pop(connection_id, None)
            if removed is None:
                return False
            for pid in [p.id for p in self._policies.values() if p.connection_id == connection_id]:
                del self._policies[pid]
        self._notify(connection_id)
        return True

    def add_policy(self, policy: RLSPolicy) -> None:
        with self._lock:
            self._policies[policy.id] = policy

    def remove_policy(self, policy_id: str) -> bool:
        with self._lock:
            return self._policies.pop(policy_id, None) is not None

    def subscribe(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def _notify(self, connection_id: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(connection_id)
            except Exception:
                logger.exception("Connection change listener failed for %s", connection_id)
