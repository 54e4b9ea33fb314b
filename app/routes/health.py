"""
Health endpoint: database, schema and embedding provider status.
"""

from __future__ import annotations

import os

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from core.db import check_db_health

router = APIRouter()


def _embedding_status(request: Request) -> dict:
    pipeline = getattr(request.app.state, "embedding_pipeline", None)
    if pipeline is None:
        return {"status": "not_initialized"}
    settings = pipeline.settings
    return {
        "status": "disabled" if settings.provider == "none" else "ready",
        "provider": settings.provider,
        "model": settings.model,
        "dimensions": settings.dimensions,
    }


@router.get("/health")
async def health(request: Request):
    db_health = check_db_health()
    embedding_status = _embedding_status(request)
    body = {
        "status": "healthy" if db_health.get("ok") else "unhealthy",
        "service": "MessageVault",
        "version": "0.1.0",
        "instance_id": os.environ.get("MESSAGEVAULT_INSTANCE_ID", "messagevault-1"),
        "database": db_health,
        "embedding_provider": embedding_status,
    }
    return JSONResponse(status_code=200 if db_health.get("ok") else 503, content=body)
