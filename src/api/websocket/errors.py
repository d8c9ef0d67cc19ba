"""
Error frames and close codes for the session channel.

A failed message gets a WebSocketError frame and the channel stays open;
only session-level failures (bad session id, server fault) also close the
socket, with a 4xxx code that mirrors the HTTP status of the same error.
"""

from __future__ import annotations

import contextlib

from typing import Any

from fastapi import WebSocket

from api.middleware.request_context import get_request_id
from core.exceptions import AppException
from models.error_models import ErrorCode, WebSocketError
from utils.logger import logger

# Close reasons are limited to 123 bytes of UTF-8
MAX_CLOSE_REASON_BYTES = 123


class WSCloseCode:
    """Close codes used by the channel: RFC 6455 ones plus 4000-4999 app codes."""

    NORMAL = 1000
    GOING_AWAY = 1001
    TRY_AGAIN_LATER = 1013

    IDLE_TIMEOUT = 4000
    SESSION_INVALID = 4400
    TOO_MANY_CONNECTIONS = 4429
    SERVER_ERROR = 4500


ERROR_CODE_TO_WS_CLOSE: dict[ErrorCode, int] = {
    ErrorCode.SESSION_INVALID: WSCloseCode.SESSION_INVALID,
    ErrorCode.WS_CONNECTION_FAILED: WSCloseCode.TOO_MANY_CONNECTIONS,
    ErrorCode.INTERNAL_ERROR: WSCloseCode.SERVER_ERROR,
}

# Resending the same frame cannot help with these
_FATAL_CODES = frozenset(
    {
        ErrorCode.SESSION_INVALID,
        ErrorCode.INTERNAL_ERROR,
        ErrorCode.INTERNAL_UNEXPECTED,
    }
)


def _close_reason(message: str) -> str:
    return message.encode("utf-8")[:MAX_CLOSE_REASON_BYTES].decode("utf-8", errors="ignore")


async def send_ws_error(
    websocket: WebSocket,
    code: ErrorCode,
    message: str,
    session_id: str | None = None,
    recoverable: bool = True,
    details: dict[str, Any] | None = None,
) -> None:
    """Send an error frame; a socket that is already gone is only logged."""
    frame = WebSocketError(
        code=code,
        message=message,
        request_id=get_request_id(),
        session_id=session_id,
        recoverable=recoverable,
        details=details,
    ).to_dict()

    try:
        await websocket.send_json(frame)
    except Exception as e:
        logger.warning(f"Could not deliver error frame {code.value}: {e}", session_id=session_id)


async def send_app_error(websocket: WebSocket, exc: AppException, session_id: str | None = None) -> None:
    await send_ws_error(
        websocket,
        code=exc.code,
        message=exc.message,
        session_id=session_id,
        recoverable=exc.code not in _FATAL_CODES,
        details=exc.details,
    )


async def close_with_error(
    websocket: WebSocket,
    code: ErrorCode,
    message: str,
    session_id: str | None = None,
) -> None:
    """Send a non-recoverable error frame, then close with the mapped code.

    Codes without a mapping close with SERVER_ERROR.
    """
    await send_ws_error(websocket, code, message, session_id=session_id, recoverable=False)

    close_code = ERROR_CODE_TO_WS_CLOSE.get(code, WSCloseCode.SERVER_ERROR)
    with contextlib.suppress(Exception):
        await websocket.close(code=close_code, reason=_close_reason(message))


async def validate_ws_message(
    websocket: WebSocket,
    data: dict[str, Any],
    required_fields: list[str],
    session_id: str | None = None,
) -> bool:
    """Check that a frame has every required key.

    On a miss, an error frame listing the absent keys is sent and False is
    returned; the caller just drops the frame.
    """
    missing = [name for name in required_fields if name not in data]
    if not missing:
        return True

    await send_ws_error(
        websocket,
        code=ErrorCode.WS_MESSAGE_INVALID,
        message=f"Missing required fields: {', '.join(missing)}",
        session_id=session_id,
        details={"missing_fields": missing},
    )
    return False


__all__ = [
    "ERROR_CODE_TO_WS_CLOSE",
    "MAX_CLOSE_REASON_BYTES",
    "WSCloseCode",
    "close_with_error",
    "send_app_error",
    "send_ws_error",
    "validate_ws_message",
]
