"""
FastAPI application entry-point.

Pooled connector handles live in the process-wide service; they are
released when the application shuts down.
"""
from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from querygate.api.routers import connections, query
from querygate.core.logging import get_logger
from querygate.engine.service import get_service

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    yield
    if get_service.cache_info().currsize:
        logger.info("Shutting down: closing pooled connectors")
        get_service().registry.close_all()


app = FastAPI(
    title="QueryGate",
    version="0.1.0",
    description="Federated query gateway with row-level security and AI query validation",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

app.include_router(query.router, prefix="/query", tags=["Query"])
app.include_router(connections.router, prefix="/connections", tags=["Connections"])


@app.get("/health")
def health():
    return {"status": "ok", "service": "querygate"}
