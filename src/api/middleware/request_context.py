"""
Per-request tracing context.

Every HTTP request and every session channel gets a RequestContext stored in
a ContextVar, so the logger and the error handlers can stamp records with the
request id and session id without threading them through call signatures.
"""

from __future__ import annotations

import re
import secrets
import time

from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_PREFIX = "req_"
WEBSOCKET_ID_PREFIX = "ws_"

#: Header used to accept and echo a caller-supplied request id
REQUEST_ID_HEADER = "X-Request-ID"

# Session-scoped REST paths look like /api/v1/sessions/<id>/...
_SESSION_PATH_RE = re.compile(r"/sessions/(?P<session_id>[^/]+)")

_request_context: ContextVar[RequestContext | None] = ContextVar("request_context", default=None)


@dataclass
class RequestContext:
    """Tracing data for one HTTP request or one session channel."""

    request_id: str
    path: str = ""
    method: str = ""
    client_ip: str | None = None
    session_id: str | None = None
    start_time: float = field(default_factory=time.monotonic)
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.start_time) * 1000

    def to_log_context(self) -> dict[str, Any]:
        """Fields merged into every log record emitted under this context."""
        ctx: dict[str, Any] = {
            "request_id": self.request_id,
            "method": self.method,
            "path": self.path,
            "elapsed_ms": round(self.elapsed_ms, 2),
        }
        for key in ("client_ip", "session_id"):
            value = getattr(self, key)
            if value:
                ctx[key] = value
        return ctx


def generate_request_id(prefix: str = REQUEST_ID_PREFIX) -> str:
    """Prefixed id with 64 random bits, e.g. req_3f9a0c1d2b4e5f60."""
    return prefix + secrets.token_hex(8)


def get_request_context() -> RequestContext | None:
    return _request_context.get()


def get_request_id() -> str | None:
    ctx = _request_context.get()
    return ctx.request_id if ctx is not None else None


def set_request_context(context: RequestContext) -> None:
    _request_context.set(context)


def clear_request_context() -> None:
    _request_context.set(None)


def update_request_context(**kwargs: Any) -> None:
    """Set known fields on the current context; unknown keys land in extra.

    No-op outside a request, so routes can call it unconditionally.
    """
    ctx = _request_context.get()
    if ctx is None:
        return
    for key, value in kwargs.items():
        if key in ctx.__dataclass_fields__ and key != "extra":
            setattr(ctx, key, value)
        else:
            ctx.extra[key] = value


def session_id_from_path(path: str) -> str | None:
    match = _SESSION_PATH_RE.search(path)
    return match.group("session_id") if match else None


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Install a RequestContext for each HTTP request.

    Responses carry the request id and the handling time as headers.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        context = RequestContext(
            request_id=request.headers.get(REQUEST_ID_HEADER) or generate_request_id(),
            path=request.url.path,
            method=request.method,
            client_ip=_client_ip(request),
            session_id=session_id_from_path(request.url.path),
        )
        token = _request_context.set(context)
        try:
            response = await call_next(request)
        finally:
            _request_context.reset(token)

        response.headers[REQUEST_ID_HEADER] = context.request_id
        response.headers["X-Response-Time"] = f"{context.elapsed_ms:.2f}ms"
        return response


def create_websocket_context(
    session_id: str | None = None,
    client_ip: str | None = None,
    path: str = "/ws/terminal",
) -> RequestContext:
    """Install a context for a session channel; it lives as long as the socket."""
    context = RequestContext(
        request_id=generate_request_id(WEBSOCKET_ID_PREFIX),
        path=path,
        method="WEBSOCKET",
        client_ip=client_ip,
        session_id=session_id,
    )
    _request_context.set(context)
    return context


__all__ = [
    "REQUEST_ID_HEADER",
    "REQUEST_ID_PREFIX",
    "WEBSOCKET_ID_PREFIX",
    "RequestContext",
    "RequestContextMiddleware",
    "clear_request_context",
    "create_websocket_context",
    "generate_request_id",
    "get_request_context",
    "get_request_id",
    "set_request_context",
    "session_id_from_path",
    "update_request_context",
]
