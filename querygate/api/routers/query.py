"""POST /query/* -- structured aggregations, ad-hoc text and AI-generated queries."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from querygate.ai.query_generator import generate_query
from querygate.api.routers.models import QueryResponseModel
from querygate.compiler.request import AggregationRequest
from querygate.core.errors import ConnectionNotFoundError
from querygate.core.logging import get_logger
from querygate.engine.context import SecurityContext
from querygate.engine.service import QueryResponse, QueryService, get_service

logger = get_logger(__name__)
router = APIRouter()


class AggregateBody(BaseModel):
    request: AggregationRequest
    context: SecurityContext
    timeout_seconds: float | None = Field(None, gt=0, description="Overrides the configured query timeout")


class AdHocBody(BaseModel):
    query_text: str = Field(..., description="Untrusted query text; sanitised and validated before use")
    connection_id: str = Field(..., min_length=1)
    context: SecurityContext
    tables: list[str] | None = Field(None, description="Tables the query reads; selects row-level policies")
    timeout_seconds: float | None = Field(None, gt=0)


class GenerateBody(BaseModel):
    question: str = Field(..., min_length=3, max_length=1000, description="Natural-language question")
    connection_id: str = Field(..., min_length=1)
    context: SecurityContext
    execute: bool = Field(True, description="If false, return the validated query without running it")
    provider: str | None = Field(None, description="mock | openai | anthropic")
    tables: list[str] | None = None


def _respond(response: QueryResponse) -> QueryResponseModel:
    if response.error and response.error["code"] == ConnectionNotFoundError.code:
        raise HTTPException(status_code=404, detail=response.error)
    return QueryResponseModel(**response.to_dict())


@router.post("/aggregate", response_model=QueryResponseModel)
def aggregate_endpoint(body: AggregateBody, service: QueryService = Depends(get_service)):
    """Compile and run a structured aggregation under the caller's row-level policies."""
    return _respond(service.execute_aggregation(body.request, body.context, timeout=body.timeout_seconds))


@router.post("/adhoc", response_model=QueryResponseModel)
def adhoc_endpoint(body: AdHocBody, service: QueryService = Depends(get_service)):
    """Validate, policy-wrap and run untrusted query text."""
    return _respond(service.execute_ad_hoc_query(
        body.query_text, body.connection_id, body.context,
        tables=body.tables, timeout=body.timeout_seconds,
    ))


@router.post("/generate", response_model=QueryResponseModel)
def generate_endpoint(body: GenerateBody, service: QueryService = Depends(get_service)):
    """Natural-language question -> generated query -> governed execution."""
    return _respond(generate_query(
        body.question, body.connection_id, body.context, service,
        execute=body.execute, provider=body.provider, tables=body.tables,
    ))
