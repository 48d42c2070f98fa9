"""
Error taxonomy for the query gateway.

Every failure carries a machine-readable ``code`` plus a human-readable
message.  Components raise these; only the execution orchestrator turns them
into ``success: false`` responses.
"""
from __future__ import annotations


class QueryGateError(Exception):
    """Base class for all structured gateway errors."""

    code = "QUERYGATE_ERROR"

    def __init__(self, message: str, *, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


class ConfigValidationError(QueryGateError):
    """Connection configuration is structurally invalid (never touches the network)."""

    code = "CONFIG_INVALID"

    def __init__(self, errors: list[str]):
        super().__init__("; ".join(errors) or "Invalid connection configuration")
        self.errors = list(errors)


class ConnectivityError(QueryGateError):
    """Backend unreachable or authentication failed."""

    code = "CONNECTIVITY_ERROR"


class SchemaFetchError(QueryGateError):
    code = "SCHEMA_FETCH_FAILED"


class InvalidRequestError(QueryGateError):
    """Structurally invalid aggregation request (e.g. no metrics)."""

    code = "INVALID_REQUEST"


class UnknownColumnError(QueryGateError):
    code = "UNKNOWN_COLUMN"


class UnknownTableError(UnknownColumnError):
    code = "UNKNOWN_TABLE"


class UnsafeQueryError(QueryGateError):
    """AI-generated query text rejected by the safety validator.

    ``query_text`` is the sanitised text, kept for display only.
    """

    code = "UNSAFE_QUERY"

    def __init__(self, message: str, *, reason: str, query_text: str = ""):
        super().__init__(message)
        self.reason = reason
        self.query_text = query_text


class ExecutionError(QueryGateError):
    code = "EXECUTION_FAILED"


class QueryTimeoutError(ExecutionError):
    code = "QUERY_TIMEOUT"


class PolicyResolutionError(QueryGateError):
    """Row-level policies could not be resolved; the request fails closed."""

    code = "POLICY_RESOLUTION_FAILED"


class ConnectionNotFoundError(QueryGateError):
    code = "CONNECTION_NOT_FOUND"


class GenerationError(QueryGateError):
    """The text generator could not produce a query (provider or SDK unavailable)."""

    code = "GENERATION_FAILED"
