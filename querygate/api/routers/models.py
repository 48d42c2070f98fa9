"""Response models shared by the routers."""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class ErrorBody(BaseModel):
    code: str
    message: str


class QueryData(BaseModel):
    columns: list[str]
    rows: list[dict[str, Any]]
    row_count: int
    execution_time_ms: int


class QueryResponseModel(BaseModel):
    success: bool
    state: str
    data: QueryData | None = None
    error: ErrorBody | None = None
    query_text: str | None = None


class SchemaResponseModel(BaseModel):
    success: bool
    schema_: dict[str, Any] | None = Field(None, alias="schema")
    is_mock: bool = False
    warning: str | None = None
    error: ErrorBody | None = None

    model_config = {"populate_by_name": True}


class ConfigCheckModel(BaseModel):
    connection_id: str
    valid: bool
    errors: list[str]


class ConnectionTestModel(BaseModel):
    connection_id: str
    success: bool
    error: str | None = None
    latency_ms: int = 0
