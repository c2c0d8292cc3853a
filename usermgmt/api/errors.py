from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from usermgmt.domain.models import ResponseStatusInfo
from usermgmt.services.errors import ServiceError

logger = logging.getLogger(__name__)


def error_envelope(status_code: int, message: str, headers: dict[str, str] | None = None) -> JSONResponse:
    if status_code < 500:
        logger.warning("request failed with %s: %s", status_code, message)
    body: dict[str, Any] = {
        "items": [],
        "status_info": ResponseStatusInfo(err_msg=message).model_dump(),
    }
    return JSONResponse(status_code=status_code, content=body, headers=headers)


def _validation_message(exc: RequestValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ()) if item != "body")
        parts.append(f"[{location}] {error.get('msg', 'is invalid')}" if location else str(error.get("msg")))
    return ", ".join(parts) or "Invalid request"


async def service_error_handler(_request: Request, exc: ServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("service error", exc_info=exc)
    return error_envelope(exc.status_code, str(exc))


async def http_error_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return error_envelope(exc.status_code, detail, getattr(exc, "headers", None))


async def validation_error_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_envelope(status.HTTP_400_BAD_REQUEST, _validation_message(exc))


async def unexpected_error_handler(_request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled error", exc_info=exc)
    return error_envelope(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc) or exc.__class__.__name__)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ServiceError, service_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, http_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, unexpected_error_handler)
