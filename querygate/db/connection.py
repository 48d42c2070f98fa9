"""SQLAlchemy engine for the gateway's own audit database.

Backend connections are owned by the connectors; this engine only serves the
audit log and is created lazily from ``settings.audit_database_url``.
"""
from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from querygate.core.config import get_settings
from querygate.core.logging import get_logger

logger = get_logger(__name__)

_engine: Engine | None = None


def get_audit_engine() -> Engine | None:
    """Return the shared audit engine, or None when no audit database is configured."""
    global _engine
    if _engine is None:
        url = get_settings().audit_database_url
        if not url:
            return None
        if url.startswith("sqlite"):
            _engine = create_engine(url, echo=False)
        else:
            _engine = create_engine(url, pool_pre_ping=True, pool_size=2, max_overflow=3, echo=False)
        logger.info("Audit DB engine created  url=%s", _engine.url.render_as_string(hide_password=True))
    return _engine


def dispose_audit_engine() -> None:
    global _engine
    if _engine is not None:
        _engine.dispose()
        _engine = None
