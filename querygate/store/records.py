"""
Records the gateway reads from the external record store.

``ConnectionConfig`` describes how to reach one backend; ``RLSPolicy`` is one
row-level restriction scoped to a (workspace, connection) pair.  Both are
immutable snapshots -- the store replaces them on update.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

# ── Backend kinds ────────────────────────────────────────

RELATIONAL = "relational"
WAREHOUSE = "warehouse"
SAAS = "saas"
FILE = "file"
REST = "rest"

CONNECTION_KINDS = (RELATIONAL, WAREHOUSE, SAAS, FILE, REST)


@dataclass(frozen=True)
class ConnectionConfig:
    id: str
    workspace_id: str
    kind: str
    name: str = ""
    host: str | None = None
    port: int | None = None
    database: str | None = None
    username: str | None = None
    password: str | None = None
    file_path: str | None = None
    project: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def fingerprint(self) -> tuple:
        """Hashable identity of the connection settings (detects updates)."""
        return (
            self.kind, self.host, self.port, self.database, self.username,
            self.password, self.file_path, self.project,
            repr(sorted(self.extra.items())),
        )


@dataclass(frozen=True)
class RLSPolicy:
    id: str
    workspace_id: str
    connection_id: str
    table_name: str
    condition: str
    user_id: str | None = None
    role: str | None = None
    is_active: bool = True
    name: str = ""
    priority: int = 0

    def targets(self, user_id: str, role: str | None) -> bool:
        """True when the policy names this user or this role."""
        if self.user_id and self.user_id == user_id:
            return True
        if self.role and role and self.role == role:
            return True
        return False
