"""FastAPI exception handlers producing the ``{"error", "message", "detail"}`` payload."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple, Type

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ...errors import (
    ConflictOnCreateError,
    NotFoundError,
    ParseError,
    ProbeNotImplementedError,
    SyncError,
    TransportError,
    TypeMismatchError,
)

logger = logging.getLogger(__name__)

DEFAULT_ERRORS: Dict[int, Tuple[str, str]] = {
    status.HTTP_400_BAD_REQUEST: ("validation_error", "Invalid request payload"),
    status.HTTP_404_NOT_FOUND: ("not_found", "Resource not found"),
    status.HTTP_409_CONFLICT: ("conflict", "Resource already exists"),
    status.HTTP_500_INTERNAL_SERVER_ERROR: ("internal_error", "Internal server error"),
    status.HTTP_501_NOT_IMPLEMENTED: ("not_implemented", "Operation not implemented"),
    status.HTTP_502_BAD_GATEWAY: ("transport_error", "Backing store unavailable"),
}

SYNC_ERROR_STATUS: Tuple[Tuple[Type[SyncError], int], ...] = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictOnCreateError, status.HTTP_409_CONFLICT),
    (TypeMismatchError, status.HTTP_400_BAD_REQUEST),
    (ProbeNotImplementedError, status.HTTP_501_NOT_IMPLEMENTED),
    (TransportError, status.HTTP_502_BAD_GATEWAY),
    (ParseError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def status_for(exc: SyncError) -> int:
    for error_cls, status_code in SYNC_ERROR_STATUS:
        if isinstance(exc, error_cls):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def _normalize_error(
    status_code: int, detail: Any
) -> Tuple[str, str, Optional[Dict[str, Any]]]:
    default_error, default_message = DEFAULT_ERRORS.get(
        status_code, DEFAULT_ERRORS[status.HTTP_500_INTERNAL_SERVER_ERROR]
    )
    if isinstance(detail, dict):
        error = detail.get("error", default_error)
        message = detail.get("message", default_message)
        detail_payload = detail.get("detail")
        if detail_payload is None:
            remainder = {
                k: v for k, v in detail.items() if k not in {"error", "message", "detail"}
            }
            detail_payload = remainder or None
        return error, message, detail_payload
    if isinstance(detail, str) and detail:
        return default_error, detail, None
    return default_error, default_message, None


def _response(status_code: int, detail: Any) -> JSONResponse:
    error, message, extra = _normalize_error(status_code, detail)
    return JSONResponse(
        status_code=status_code, content={"error": error, "message": message, "detail": extra}
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    detail = {"detail": {"errors": exc.errors()}}
    return _response(status.HTTP_400_BAD_REQUEST, detail)


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    return _response(exc.status_code, exc.detail)


async def sync_exception_handler(request: Request, exc: SyncError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error(f"{exc.code} while handling {request.url.path}: {exc.message}")
    return _response(
        status_code,
        {"error": exc.code.lower(), "message": exc.message, "detail": exc.details or None},
    )


async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    return _response(status.HTTP_400_BAD_REQUEST, str(exc))


async def internal_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception: %s", exc)
    return _response(status.HTTP_500_INTERNAL_SERVER_ERROR, exc.args[0] if exc.args else None)


def register_error_handlers(app: FastAPI) -> None:
    """Attach shared exception handlers to the FastAPI application."""
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(SyncError, sync_exception_handler)
    app.add_exception_handler(ValueError, value_error_handler)
    app.add_exception_handler(Exception, internal_exception_handler)


__all__ = [
    "register_error_handlers",
    "status_for",
    "validation_exception_handler",
    "http_exception_handler",
    "sync_exception_handler",
    "value_error_handler",
    "internal_exception_handler",
]
