"""Error envelope rendering for API responses."""
from __future__ import annotations

import logging

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .domain_errors import DomainError

logger = logging.getLogger(__name__)


def build_error_response(exc: DomainError) -> JSONResponse:
    """Render DomainError as the `{"error", "details"}` envelope with a stable code."""
    payload: dict[str, object] = {
        "error": exc.message,
        "code": exc.code,
    }
    if exc.details is not None:
        payload["details"] = exc.details
    if exc.unavailable_elements is not None:
        payload["unavailable_elements"] = exc.unavailable_elements

    return JSONResponse(status_code=exc.http_status, content=jsonable_encoder(payload))


async def handle_domain_error(_: Request, exc: DomainError) -> JSONResponse:
    return build_error_response(exc)


async def handle_http_exception(_: Request, exc: StarletteHTTPException) -> JSONResponse:
    detail = exc.detail if isinstance(exc.detail, str) else jsonable_encoder(exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": detail},
        headers=getattr(exc, "headers", None),
    )


async def handle_validation_error(_: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid JSON input", "details": jsonable_encoder(exc.errors())},
    )


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "details": str(exc)},
    )
