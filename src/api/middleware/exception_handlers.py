"""
Exception handlers that turn every failure into the ErrorResponse envelope.

Session-level failures (bad session ids, escaping paths, unsupported
languages, spawn errors) arrive as AppException subclasses and keep their
own code and status. Anything unexpected becomes a generic 500 without
leaking internals unless debug mode is on.
"""

from __future__ import annotations

import traceback

from collections.abc import Iterable
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from api.middleware.request_context import get_request_context, get_request_id
from core.constants import get_settings
from core.exceptions import AppException
from models.error_models import ErrorCode, ErrorDetail, ErrorResponse, get_status_code
from utils.logger import logger

# Status codes raised through HTTPException (framework 404/405, explicit raises)
_HTTP_STATUS_TO_CODE: dict[int, ErrorCode] = {
    400: ErrorCode.VALIDATION_ERROR,
    403: ErrorCode.FILE_PERMISSION_DENIED,
    404: ErrorCode.RESOURCE_NOT_FOUND,
    409: ErrorCode.RESOURCE_CONFLICT,
    413: ErrorCode.FILE_TOO_LARGE,
    422: ErrorCode.VALIDATION_ERROR,
}


def _error_json(
    request: Request,
    status_code: int,
    code: ErrorCode,
    message: str,
    details: list[ErrorDetail] | None = None,
    debug: dict[str, Any] | None = None,
) -> JSONResponse:
    include_debug = get_settings().debug
    body = ErrorResponse(
        code=code,
        message=message,
        request_id=get_request_id(),
        path=request.url.path,
        details=details or None,
        debug=debug if include_debug else None,
    )
    return JSONResponse(status_code=status_code, content=body.to_dict(include_debug=include_debug))


def _log_client_or_server_error(error: Exception, code: ErrorCode, status_code: int) -> None:
    ctx = get_request_context()
    fields = ctx.to_log_context() if ctx else {}
    fields.update(error_code=code.value, status_code=status_code)

    if status_code >= 500:
        logger.error(f"Server error: {code.value} - {error}", exc_info=True, **fields)
    else:
        logger.warning(f"Client error: {code.value} - {error}", **fields)


def _field_errors(errors: Iterable[Any]) -> list[ErrorDetail]:
    return [
        ErrorDetail(field=".".join(str(part) for part in err["loc"]), message=err["msg"], code=err["type"])
        for err in errors
    ]


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """AppException: status from the error code, details from exc.details."""
    status_code = get_status_code(exc.code)
    _log_client_or_server_error(exc, exc.code, status_code)

    details = [
        ErrorDetail(field=key, message=str(value)) for key, value in (exc.details or {}).items() if value is not None
    ]
    debug = {"exception_type": type(exc).__name__, "cause": str(exc.cause) if exc.cause else None}
    return _error_json(request, status_code, exc.code, exc.message, details=details, debug=debug)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    code = _HTTP_STATUS_TO_CODE.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    _log_client_or_server_error(exc, code, exc.status_code)
    return _error_json(request, exc.status_code, code, message, debug={"original_status": exc.status_code})


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed path, query or body parameters."""
    _log_client_or_server_error(exc, ErrorCode.VALIDATION_ERROR, 422)
    details = _field_errors(exc.errors())
    return _error_json(request, 422, ErrorCode.VALIDATION_ERROR, "Request validation failed", details)


async def pydantic_exception_handler(request: Request, exc: ValidationError) -> JSONResponse:
    """Model validation that failed inside a handler rather than at parsing."""
    _log_client_or_server_error(exc, ErrorCode.VALIDATION_ERROR, 422)
    details = _field_errors(exc.errors())
    return _error_json(request, 422, ErrorCode.VALIDATION_ERROR, "Data validation failed", details)


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        f"Unhandled exception: {type(exc).__name__}: {exc}",
        exc_info=True,
        request_id=get_request_id(),
        path=request.url.path,
    )
    debug = {
        "exception_type": type(exc).__name__,
        "exception_message": str(exc),
        "traceback": traceback.format_exc(),
    }
    return _error_json(request, 500, ErrorCode.INTERNAL_UNEXPECTED, "An unexpected error occurred", debug=debug)


def register_exception_handlers(app: FastAPI) -> None:
    """Install every handler on app; call once right after creating it."""
    # Starlette types handlers as taking Exception; narrower handlers work at runtime
    app.add_exception_handler(AppException, app_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(HTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(ValidationError, pydantic_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, generic_exception_handler)


__all__ = [
    "app_exception_handler",
    "generic_exception_handler",
    "http_exception_handler",
    "pydantic_exception_handler",
    "register_exception_handlers",
    "validation_exception_handler",
]
