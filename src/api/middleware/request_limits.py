"""Reject oversized uploads from their Content-Length before reading the body."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import JSONResponse

from api.middleware.request_context import get_request_id
from core.constants import get_settings
from models.error_models import ErrorCode, ErrorResponse
from utils.logger import logger

_BODYLESS_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "DELETE"})


def _declared_length(request: Request) -> int:
    try:
        return int(request.headers.get("content-length", "0"))
    except ValueError:
        return 0


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """413 for any request that announces a body larger than the limit.

    The limit defaults to MAX_REQUEST_BODY_SIZE. Chunked bodies without a
    Content-Length pass through; the file API applies its own size cap.
    """

    def __init__(self, app: Callable[..., Any], max_body_size: int | None = None) -> None:
        super().__init__(app)
        self._max_body_size = max_body_size or get_settings().max_request_body_size

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        size = 0 if request.method in _BODYLESS_METHODS else _declared_length(request)
        if size <= self._max_body_size:
            return await call_next(request)

        logger.warning(
            f"Rejected {size}-byte body (limit {self._max_body_size})",
            path=request.url.path,
        )
        body = ErrorResponse(
            code=ErrorCode.FILE_TOO_LARGE,
            message=f"Request body exceeds maximum size of {self._max_body_size} bytes",
            request_id=get_request_id(),
            path=request.url.path,
        )
        return JSONResponse(status_code=413, content=body.to_dict())
