"""
Map service errors to JSON error responses.
"""

from __future__ import annotations

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

import core.config as config
from core.errors import EmbeddingProviderError, NotFound, ValidationIssue


async def validation_issue_handler(request: Request, exc: ValidationIssue) -> JSONResponse:
    config.logger.info(
        "request_validation_error",
        extra={"path": request.url.path, "field": exc.field, "error_type": exc.error_type},
    )
    return JSONResponse(status_code=400, content={"error": str(exc)})


async def not_found_handler(request: Request, exc: NotFound) -> JSONResponse:
    return JSONResponse(status_code=404, content={"error": str(exc)})


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part not in {"query", "body"})
        message = f"{location}: {first.get('msg')}" if location else str(first.get("msg"))
    else:
        message = "invalid request"
    return JSONResponse(status_code=400, content={"error": message})


async def embedding_provider_handler(request: Request, exc: EmbeddingProviderError) -> JSONResponse:
    config.logger.warning(
        f"Embedding provider error on {request.url.path}: {exc}",
        extra={"upstream_status": exc.status_code},
    )
    return JSONResponse(status_code=503, content={"error": str(exc)})


async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    config.logger.error(f"Unhandled error on {request.method} {request.url.path}", exc_info=exc)
    return JSONResponse(status_code=500, content={"error": str(exc)})


def configure_exception_handlers(app) -> None:
    app.add_exception_handler(ValidationIssue, validation_issue_handler)
    app.add_exception_handler(NotFound, not_found_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(EmbeddingProviderError, embedding_provider_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)
