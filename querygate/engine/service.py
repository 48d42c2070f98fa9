"""
Query service -- orchestrates resolve -> compile/validate -> policy -> execute -> audit.

Every public operation follows the same per-request state machine::

    RECEIVED -> SCHEMA_RESOLVED -> (COMPILED | VALIDATED) -> POLICY_WRAPPED
             -> EXECUTED -> RETURNED

with a transition to FAILED from any state.  Nothing is retried here; a
failed execution is reported to the caller.  Connection configs, schemas and
policies are read fresh for every request, only connector handle pools are
shared between requests.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from querygate.catalog.schema import QueryResult, SchemaInfo
from querygate.compiler.aggregation import compile_aggregation
from querygate.compiler.request import AggregationRequest
from querygate.connectors.base import ConfigCheck, Connector, ConnectionTestResult
from querygate.connectors.mock import mock_schema
from querygate.connectors.registry import ConnectorRegistry
from querygate.core.config import Settings, get_settings
from querygate.core.errors import (
    ConfigValidationError,
    ConnectionNotFoundError,
    InvalidRequestError,
    QueryGateError,
    QueryTimeoutError,
    UnknownTableError,
    UnsafeQueryError,
)
from querygate.core.logging import get_logger
from querygate.core.utils import Deadline, timer
from querygate.db.audit_log import AuditEvent, AuditSink, LoggingAuditSink, get_audit_sink
from querygate.engine.context import SecurityContext
from querygate.governance import rls
from querygate.governance.sql_safety import check_query
from querygate.store.memory import RecordStore
from querygate.store.records import ConnectionConfig, RLSPolicy
from querygate.store.yaml_store import load_record_store

logger = get_logger(__name__)

INTERNAL_ERROR = "INTERNAL_ERROR"


class QueryState(str, enum.Enum):
    RECEIVED = "RECEIVED"
    SCHEMA_RESOLVED = "SCHEMA_RESOLVED"
    COMPILED = "COMPILED"
    VALIDATED = "VALIDATED"
    POLICY_WRAPPED = "POLICY_WRAPPED"
    EXECUTED = "EXECUTED"
    RETURNED = "RETURNED"
    FAILED = "FAILED"


@dataclass
class QueryResponse:
    success: bool
    state: QueryState
    data: QueryResult | None = None
    error: dict[str, str] | None = None
    query_text: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "state": self.state.value,
            "data": self.data.to_dict() if self.data else None,
            "error": self.error,
            "query_text": self.query_text,
        }


@dataclass
class SchemaResponse:
    success: bool
    schema: SchemaInfo | None = None
    is_mock: bool = False
    warning: str | None = None
    error: dict[str, str] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "schema": self.schema.to_dict() if self.schema else None,
            "is_mock": self.is_mock,
            "warning": self.warning,
            "error": self.error,
        }


def _error(exc: Exception) -> dict[str, str]:
    if isinstance(exc, QueryGateError):
        return exc.to_dict()
    return {"code": INTERNAL_ERROR, "message": "An unexpected error occurred while processing the request."}


class _Run:
    """State tracker for one request; every transition is logged."""

    def __init__(self, operation: str, connection_id: str, context: SecurityContext | None):
        self.operation = operation
        self.connection_id = connection_id
        self.context = context
        self.state = QueryState.RECEIVED
        logger.info("%s | connection=%s | user=%s | state=%s", operation, connection_id,
                    context.user_id if context else None, self.state.value)

    def advance(self, state: QueryState) -> None:
        logger.info("%s | connection=%s | %s -> %s", self.operation, self.connection_id,
                    self.state.value, state.value)
        self.state = state

    def fail(self, exc: Exception) -> None:
        failed_in = self.state.value
        self.state = QueryState.FAILED
        if isinstance(exc, QueryGateError):
            logger.warning("%s | connection=%s | FAILED in %s: %s (%s)", self.operation,
                           self.connection_id, failed_in, exc.message, exc.code)
        else:
            logger.exception("%s | connection=%s | FAILED in %s with unexpected error",
                             self.operation, self.connection_id, failed_in)


class QueryService:
    """Entry point for every query and schema operation."""

    def __init__(
        self,
        store: RecordStore,
        registry: ConnectorRegistry | None = None,
        audit_sink: AuditSink | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.store = store
        self.registry = registry or ConnectorRegistry(self.settings)
        self.audit_sink = audit_sink or LoggingAuditSink()
        subscribe = getattr(store, "subscribe", None)
        if subscribe is not None:
            self.registry.attach(subscribe)

    # ── Helpers ─────────────────────────────────────────

    def _connection(self, connection_id: str) -> ConnectionConfig:
        config = self.store.get_connection(connection_id)
        if config is None:
            raise ConnectionNotFoundError(f"Connection '{connection_id}' not found")
        return config

    @staticmethod
    def _ensure_valid(connector: Connector) -> None:
        check = connector.validate_config()
        if not check.valid:
            raise ConfigValidationError(check.errors)

    def _conditions(
        self,
        context: SecurityContext,
        config: ConnectionConfig,
        tables: list[str] | None,
        dialect: str,
        query_text: str | None = None,
    ) -> list[str]:
        if tables:
            if query_text is not None:
                rls.check_table_context(query_text, tables)
            seen: dict[str, RLSPolicy] = {}
            for table in tables:
                for policy in rls.resolve_policies(context, config, table, self.store):
                    seen.setdefault(policy.id, policy)
            policies = sorted(seen.values(), key=lambda p: p.priority, reverse=True)
        else:
            policies = rls.resolve_policies(context, config, None, self.store)
        if policies:
            logger.warning(
                "Applying %d row-level polic%s for user=%s on %s: %s",
                len(policies), "y" if len(policies) == 1 else "ies", context.user_id,
                config.id, ", ".join(p.id for p in policies),
            )
        return rls.render_conditions(policies, context, dialect)

    def _audit(self, event: AuditEvent) -> None:
        try:
            self.audit_sink.record(event)
        except Exception:
            logger.exception("Audit sink raised -- continuing")

    def _audit_query(
        self,
        action: str,
        run: _Run,
        response: QueryResponse,
        elapsed_ms: int,
        resource: str = "",
    ) -> None:
        ctx = run.context
        self._audit(AuditEvent(
            action=action,
            status="success" if response.success else "failure",
            resource=resource,
            connection_id=run.connection_id,
            user_id=ctx.user_id if ctx else None,
            tenant_id=ctx.tenant_id if ctx else None,
            error_code=response.error["code"] if response.error else None,
            row_count=response.data.row_count if response.data else None,
            execution_time_ms=elapsed_ms,
            details={"state": response.state.value},
        ))

    def _execute(self, connector: Connector, query_text: str, deadline: Deadline) -> QueryResult:
        if deadline.expired:
            raise QueryTimeoutError("Request deadline passed before execution")
        return connector.execute_query(query_text, timeout=deadline.remaining())

    # ── Public operations ───────────────────────────────

    def execute_aggregation(
        self,
        request: AggregationRequest,
        context: SecurityContext,
        timeout: float | None = None,
    ) -> QueryResponse:
        """Compile and run a structured aggregation under the caller's policies.

        Structural problems (no metrics) are reported before any connector I/O.
        """
        run = _Run("execute_aggregation", request.connection_id, context)
        deadline = Deadline(timeout or self.settings.query_timeout_seconds)
        query_text: str | None = None
        with timer() as t:
            try:
                if not request.metrics:
                    raise InvalidRequestError("At least one metric is required")
                config = self._connection(request.connection_id)

                with self.registry.lease(config) as connector:
                    self._ensure_valid(connector)
                    schema = connector.fetch_schema()
                    table = schema.find_table(request.table)
                    if table is None:
                        raise UnknownTableError(
                            f"Unknown table '{request.table}'. Available: {', '.join(schema.table_names())}"
                        )
                    run.advance(QueryState.SCHEMA_RESOLVED)

                    compiled = compile_aggregation(
                        request, table, connector.dialect, max_rows=self.settings.max_query_rows,
                    )
                    query_text = compiled.text
                    run.advance(QueryState.COMPILED)

                    conditions = self._conditions(context, config, [table.qualified_name], connector.dialect)
                    # Conditions reference base-table columns, so they go into the
                    # compiled WHERE rather than around the grouped projection
                    query_text = rls.inject_predicate(compiled.text, conditions)
                    run.advance(QueryState.POLICY_WRAPPED)

                    result = self._execute(connector, query_text, deadline)
                    run.advance(QueryState.EXECUTED)

                result = result.rename_columns(compiled.alias_map)
                run.advance(QueryState.RETURNED)
                response = QueryResponse(success=True, state=run.state, data=result, query_text=query_text)
            except Exception as exc:
                run.fail(exc)
                response = QueryResponse(success=False, state=run.state, error=_error(exc), query_text=query_text)
        self._audit_query("execute_aggregation", run, response, t["elapsed_ms"], resource=request.table)
        return response

    def execute_ad_hoc_query(
        self,
        raw_text: str,
        connection_id: str,
        context: SecurityContext,
        tables: list[str] | None = None,
        timeout: float | None = None,
    ) -> QueryResponse:
        """Run untrusted query text: sanitize + validate, then policies, then execute.

        ``tables`` is the explicit table context of the query; it must name
        every table the query reads, otherwise the request fails closed.
        Without it, every policy of the connection targeting the caller is
        applied.
        Rejected text is returned for display only and never executed.
        """
        run = _Run("execute_ad_hoc_query", connection_id, context)
        deadline = Deadline(timeout or self.settings.query_timeout_seconds)
        query_text: str | None = None
        with timer() as t:
            try:
                config = self._connection(connection_id)
                run.advance(QueryState.SCHEMA_RESOLVED)

                try:
                    query_text = check_query(raw_text)
                except UnsafeQueryError as exc:
                    query_text = exc.query_text
                    raise
                run.advance(QueryState.VALIDATED)

                with self.registry.lease(config) as connector:
                    self._ensure_valid(connector)
                    conditions = self._conditions(
                        context, config, tables, connector.dialect, query_text=query_text,
                    )
                    query_text = rls.enforce(query_text, conditions, connector.supports_derived_tables)
                    run.advance(QueryState.POLICY_WRAPPED)

                    result = self._execute(connector, query_text, deadline)
                    run.advance(QueryState.EXECUTED)

                run.advance(QueryState.RETURNED)
                response = QueryResponse(success=True, state=run.state, data=result, query_text=query_text)
            except Exception as exc:
                run.fail(exc)
                response = QueryResponse(success=False, state=run.state, error=_error(exc), query_text=query_text)
        self._audit_query("execute_ad_hoc_query", run, response, t["elapsed_ms"],
                          resource=",".join(tables or []))
        return response

    def fetch_schema(
        self,
        connection_id: str,
        use_mock: bool = False,
        fallback_to_mock: bool = False,
    ) -> SchemaResponse:
        """Return the live schema, or the canned one when asked for it.

        A failed live fetch falls back to the mock schema only when the caller
        opted in, and the response is then flagged with a warning.
        """
        response: SchemaResponse
        with timer() as t:
            try:
                config = self._connection(connection_id)
                if use_mock:
                    response = SchemaResponse(
                        success=True, schema=mock_schema(config.kind), is_mock=True,
                        warning="Mock schema requested; tables are illustrative only.",
                    )
                else:
                    try:
                        with self.registry.lease(config) as connector:
                            self._ensure_valid(connector)
                            schema = connector.fetch_schema()
                        response = SchemaResponse(success=True, schema=schema)
                    except QueryGateError as exc:
                        if not fallback_to_mock:
                            raise
                        logger.warning("Live schema fetch for %s failed, using mock: %s",
                                       connection_id, exc.message)
                        response = SchemaResponse(
                            success=True, schema=mock_schema(config.kind), is_mock=True,
                            warning=f"Live schema unavailable ({exc.message}); showing mock schema.",
                        )
            except Exception as exc:
                if not isinstance(exc, QueryGateError):
                    logger.exception("fetch_schema | connection=%s | unexpected error", connection_id)
                response = SchemaResponse(success=False, error=_error(exc))

        self._audit(AuditEvent(
            action="fetch_schema",
            status="success" if response.success else "failure",
            connection_id=connection_id,
            error_code=response.error["code"] if response.error else None,
            execution_time_ms=t["elapsed_ms"],
            details={"is_mock": response.is_mock},
        ))
        return response

    def validate_connection(self, connection_id: str) -> ConfigCheck:
        """Structural config check for a stored connection.  No network I/O.

        Raises
        ------
        ConnectionNotFoundError
        """
        config = self._connection(connection_id)
        try:
            check = self.registry.build(config).validate_config()
        except ConfigValidationError as exc:
            check = ConfigCheck(valid=False, errors=exc.errors)
        self._audit(AuditEvent(
            action="validate_connection",
            status="success" if check.valid else "failure",
            connection_id=connection_id,
            error_code=None if check.valid else ConfigValidationError.code,
            details={"errors": check.errors},
        ))
        return check

    def test_connection(self, connection_id: str) -> ConnectionTestResult:
        """Check a stored connection with the connection-test timeout.

        Raises
        ------
        ConnectionNotFoundError
        """
        config = self._connection(connection_id)
        try:
            # A fresh connector, so a connection test never disturbs a pooled one
            connector = self.registry.build(config)
        except ConfigValidationError as exc:
            outcome = ConnectionTestResult(success=False, error=exc.message)
        else:
            try:
                outcome = connector.test_connection(self.settings.connection_test_timeout_seconds)
            finally:
                connector.disconnect()
        self._audit(AuditEvent(
            action="test_connection",
            status="success" if outcome.success else "failure",
            connection_id=connection_id,
            execution_time_ms=outcome.latency_ms,
            details={"error": outcome.error} if outcome.error else {},
        ))
        return outcome


@lru_cache
def get_service() -> QueryService:
    """Process-wide service wired from settings (record store, audit sink)."""
    settings = get_settings()
    return QueryService(
        store=load_record_store(),
        registry=ConnectorRegistry(settings),
        audit_sink=get_audit_sink(),
        settings=settings,
    )
