"""/connections/{id}/* -- schema, config validation and connectivity checks."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from querygate.api.routers.models import (
    ConfigCheckModel,
    ConnectionTestModel,
    SchemaResponseModel,
)
from querygate.core.errors import ConnectionNotFoundError
from querygate.engine.service import QueryService, get_service

router = APIRouter()


@router.get("/{connection_id}/schema", response_model=SchemaResponseModel, response_model_by_alias=True)
def schema_endpoint(
    connection_id: str,
    use_mock: bool = Query(False, description="Return the canned schema for this connection kind"),
    fallback: bool = Query(False, description="Fall back to the canned schema if the live fetch fails"),
    service: QueryService = Depends(get_service),
):
    """Live schema of a connection (tables, columns, normalised types)."""
    response = service.fetch_schema(connection_id, use_mock=use_mock, fallback_to_mock=fallback)
    if response.error and response.error["code"] == ConnectionNotFoundError.code:
        raise HTTPException(status_code=404, detail=response.error)
    return SchemaResponseModel(**response.to_dict())


@router.post("/{connection_id}/validate", response_model=ConfigCheckModel)
def validate_endpoint(connection_id: str, service: QueryService = Depends(get_service)):
    """Structural config check.  No network I/O."""
    try:
        check = service.validate_connection(connection_id)
    except ConnectionNotFoundError as exc:
        raise HTTPException(status_code=404, detail=exc.to_dict())
    return ConfigCheckModel(connection_id=connection_id, valid=check.valid, errors=check.errors)


@router.post("/{connection_id}/test", response_model=ConnectionTestModel)
def test_endpoint(connection_id: str, service: QueryService = Depends(get_service)):
    """Ping the backend with the connection-test timeout."""
    try:
        outcome = service.test_connection(connection_id)
    except ConnectionNotFoundError as exc:
        raise HTTPException(status_code=404, detail=exc.to_dict())
    return ConnectionTestModel(connection_id=connection_id, **outcome.to_dict())
