"""
Connector contract shared by every backend kind.

A connector is built from one ``ConnectionConfig`` and exposes five
operations: ``validate_config`` (pure), ``test_connection`` (never raises),
``fetch_schema``, ``execute_query`` and ``disconnect`` (idempotent).
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from querygate.catalog.schema import QueryResult, SchemaInfo
from querygate.core.config import Settings, get_settings
from querygate.core.errors import ConfigValidationError
from querygate.core.logging import get_logger
from querygate.core.utils import timer
from querygate.store.records import ConnectionConfig

logger = get_logger(__name__)


@dataclass(frozen=True)
class ConfigCheck:
    valid: bool
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"valid": self.valid, "errors": list(self.errors)}


@dataclass(frozen=True)
class ConnectionTestResult:
    success: bool
    error: str | None = None
    latency_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"success": self.success, "error": self.error, "latency_ms": self.latency_ms}


class Connector(ABC):
    """Base class for all backend connectors.

    Subclasses set the capability attributes and implement ``parse_options``,
    ``_ping``, ``fetch_schema`` and ``execute_query``.
    """

    kind: str = ""
    dialect: str = ""
    supports_derived_tables: bool = True
    # Reusable connectors hold pooled handles and are cached by the registry
    reusable: bool = False

    def __init__(self, config: ConnectionConfig, settings: Settings | None = None):
        self.config = config
        self.settings = settings or get_settings()
        self._options: Any = None

    # ── Configuration ───────────────────────────────────

    @classmethod
    @abstractmethod
    def parse_options(cls, config: ConnectionConfig) -> tuple[Any, list[str]]:
        """Return ``(options, errors)``; options is None when errors exist."""

    def validate_config(self) -> ConfigCheck:
        """Structural check of the configuration.  No I/O."""
        _, errors = self.parse_options(self.config)
        return ConfigCheck(valid=not errors, errors=errors)

    @property
    def options(self) -> Any:
        if self._options is None:
            options, errors = self.parse_options(self.config)
            if errors:
                raise ConfigValidationError(errors)
            self._options = options
        return self._options

    def _timeout(self, timeout: float | None) -> float:
        return float(timeout) if timeout else self.settings.query_timeout_seconds

    def _row_cap(self) -> int:
        return self.settings.max_query_rows

    # ── Operations ──────────────────────────────────────

    def test_connection(self, timeout: float | None = None) -> ConnectionTestResult:
        """Ping the backend with a trivial request.

        Always returns a result; handles acquired during a failed test are
        released before returning.
        """
        check = self.validate_config()
        if not check.valid:
            return ConnectionTestResult(success=False, error="; ".join(check.errors))

        seconds = timeout or self.settings.connection_test_timeout_seconds
        with timer() as t:
            try:
                self._ping(seconds)
                error = None
            except Exception as exc:
                # Backend libraries raise their own hierarchies; any failure is a failed test
                error = getattr(exc, "message", None) or str(exc) or type(exc).__name__
                logger.warning("Connection test failed for %s: %s", self.config.id, error)
                self.disconnect()
        return ConnectionTestResult(success=error is None, error=error, latency_ms=t["elapsed_ms"])

    @abstractmethod
    def _ping(self, timeout: float) -> None:
        """Run the cheapest round-trip the backend supports; raise on failure."""

    @abstractmethod
    def fetch_schema(self) -> SchemaInfo:
        """Return the backend's tables and columns (raises SchemaFetchError)."""

    @abstractmethod
    def execute_query(self, query_text: str, timeout: float | None = None) -> QueryResult:
        """Run read-only query text (raises ExecutionError / QueryTimeoutError)."""

    def disconnect(self) -> None:
        """Release any handles.  Safe to call more than once."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self.config.id!r} kind={self.kind!r}>"
