"""
Audit log -- one event per public operation (query, schema fetch, connection
test), successful or not.

Writing is fire-and-forget: a failing audit sink is logged and never fails
the request it describes.  The SQL table is created automatically on first
use.
"""
from __future__ import annotations

import datetime
import json
from dataclasses import asdict, dataclass, field
from typing import Any, Protocol

from sqlalchemy import (
    Column, DateTime, Integer, MetaData, String, Table, Text, insert,
)
from sqlalchemy.engine import Engine

from querygate.core.logging import get_logger
from querygate.db.connection import get_audit_engine

logger = get_logger(__name__)

_TABLE = "querygate_audit_events"

_metadata = MetaData()

audit_events = Table(
    _TABLE,
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("action", String(40), nullable=False),
    Column("resource", String(200)),
    Column("status", String(20), nullable=False),
    Column("connection_id", String(100)),
    Column("user_id", String(100)),
    Column("tenant_id", String(100)),
    Column("error_code", String(60)),
    Column("row_count", Integer),
    Column("execution_time_ms", Integer),
    Column("details", Text),  # JSON object
    Column("created_at", DateTime(timezone=True), nullable=False),
)


@dataclass
class AuditEvent:
    action: str  # execute_aggregation | execute_ad_hoc_query | fetch_schema | ...
    status: str  # success | failure
    resource: str = ""
    connection_id: str | None = None
    user_id: str | None = None
    tenant_id: str | None = None
    error_code: str | None = None
    row_count: int | None = None
    execution_time_ms: int | None = None
    details: dict[str, Any] = field(default_factory=dict)
    created_at: datetime.datetime = field(
        default_factory=lambda: datetime.datetime.now(datetime.timezone.utc)
    )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        return data


class AuditSink(Protocol):
    def record(self, event: AuditEvent) -> None: ...


class LoggingAuditSink:
    """Writes audit events to the application log only."""

    def record(self, event: AuditEvent) -> None:
        logger.info(
            "AUDIT action=%s status=%s connection=%s user=%s tenant=%s code=%s rows=%s ms=%s",
            event.action, event.status, event.connection_id, event.user_id,
            event.tenant_id, event.error_code, event.row_count, event.execution_time_ms,
        )


class SqlAuditSink:
    """Persists audit events through SQLAlchemy."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self._table_ready = False

    def ensure_table(self) -> None:
        """Create the audit table if it doesn't exist."""
        _metadata.create_all(self.engine, tables=[audit_events], checkfirst=True)
        self._table_ready = True
        logger.info("Audit table '%s' ensured", _TABLE)

    def record(self, event: AuditEvent) -> None:
        try:
            if not self._table_ready:
                self.ensure_table()
            row = asdict(event)
            row["details"] = json.dumps(event.details, default=str) if event.details else None
            with self.engine.begin() as conn:
                conn.execute(insert(audit_events), row)
            logger.debug("Audit event stored: action=%s status=%s", event.action, event.status)
        except Exception:
            logger.exception("Failed to write audit event -- continuing without audit row")


def get_audit_sink() -> AuditSink:
    """SQL sink when an audit database is configured, log-only otherwise."""
    engine = get_audit_engine()
    if engine is None:
        return LoggingAuditSink()
    return SqlAuditSink(engine)
