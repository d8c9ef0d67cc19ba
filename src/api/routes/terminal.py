from __future__ import annotations

import asyncio
import json
import secrets

from typing import Any

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from api.middleware.request_context import create_websocket_context
from api.websocket.errors import WSCloseCode, close_with_error, send_app_error, send_ws_error
from api.websocket.manager import WebSocketManager
from core.constants import (
    CONNECTION_SESSION_PREFIX,
    MSG_TYPE_CREATE_TERMINAL,
    MSG_TYPE_PING,
    MSG_TYPE_PONG,
    MSG_TYPE_TERMINAL_INPUT,
    MSG_TYPE_TERMINAL_RESIZE,
    WS_KEEPALIVE_INTERVAL,
)
from core.exceptions import AppException
from core.session_registry import validate_session_id
from core.terminal import TerminalMultiplexer
from models.error_models import ErrorCode
from models.schemas.terminal import CreateTerminalMessage, TerminalInputMessage, TerminalResizeMessage
from utils.logger import logger

router = APIRouter()


@router.websocket("/terminal")
async def terminal_websocket(
    websocket: WebSocket,
    session_id: str | None = Query(default=None),
) -> None:
    """Session channel: terminal creation, keystrokes, resizes and shell output."""
    ws_manager: WebSocketManager = websocket.app.state.ws_manager
    terminals: TerminalMultiplexer = websocket.app.state.terminals

    # Channels without an explicit session get one of their own
    if not session_id:
        session_id = f"{CONNECTION_SESSION_PREFIX}{secrets.token_hex(8)}"

    client_ip = websocket.client.host if websocket.client else None
    create_websocket_context(session_id=session_id, client_ip=client_ip)
    logger.info(f"WebSocket upgrade request received for session {session_id}")

    try:
        validate_session_id(session_id)
    except AppException as exc:
        await websocket.accept()
        await close_with_error(websocket, exc.code, exc.message, session_id=session_id)
        return

    # Connect with limits checking - returns False if connection rejected
    if not await ws_manager.connect(websocket, session_id):
        # The socket was never accepted; accept so the close code reaches the client
        await websocket.accept()
        await websocket.close(code=WSCloseCode.TRY_AGAIN_LATER, reason="Connection limit reached")
        return

    try:
        keepalive_task = asyncio.create_task(_keepalive(websocket, ws_manager))
        try:
            async for text in websocket.iter_text():
                await ws_manager.touch(websocket)
                await _handle_frame(text, websocket, session_id, terminals)
        finally:
            keepalive_task.cancel()
    except WebSocketDisconnect:
        pass  # Normal client disconnect
    except RuntimeError as e:
        # Handle "WebSocket is not connected" errors gracefully
        if "not connected" not in str(e).lower():
            raise
        logger.warning(
            f"[{ErrorCode.WS_CONNECTION_FAILED.value}] Channel transport failed: {e}",
            session_id=session_id,
            error_code=ErrorCode.WS_CONNECTION_FAILED.value,
        )
    finally:
        await ws_manager.disconnect(websocket, session_id)
        logger.info(f"Channel closed for session {session_id}", session_id=session_id)


async def _handle_frame(
    text: str,
    websocket: WebSocket,
    session_id: str,
    terminals: TerminalMultiplexer,
) -> None:
    """Dispatch one client frame. Bad frames are answered with an error frame."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        await send_ws_error(websocket, ErrorCode.WS_MESSAGE_INVALID, "Frame is not valid JSON", session_id=session_id)
        return
    if not isinstance(data, dict):
        await send_ws_error(
            websocket, ErrorCode.WS_MESSAGE_INVALID, "Frame must be a JSON object", session_id=session_id
        )
        return

    msg_type = data.get("type")
    try:
        if msg_type == MSG_TYPE_TERMINAL_INPUT:
            message = TerminalInputMessage.model_validate(data)
            await terminals.input(message.term_id, message.input, session_id=session_id)

        elif msg_type == MSG_TYPE_TERMINAL_RESIZE:
            resize = TerminalResizeMessage.model_validate(data)
            terminals.resize(resize.term_id, resize.cols, resize.rows, session_id=session_id)

        elif msg_type == MSG_TYPE_CREATE_TERMINAL:
            create = CreateTerminalMessage.model_validate(data)
            await _create_terminal(create, websocket, session_id, terminals)

        elif msg_type == MSG_TYPE_PONG:
            pass  # Activity already recorded

        else:
            await send_ws_error(
                websocket,
                ErrorCode.WS_MESSAGE_INVALID,
                f"Unknown message type: {msg_type}",
                session_id=session_id,
                details={"type": msg_type},
            )
    except ValidationError as e:
        await send_ws_error(
            websocket,
            ErrorCode.WS_MESSAGE_INVALID,
            f"Invalid {msg_type} message",
            session_id=session_id,
            details={"errors": _error_fields(e)},
        )


async def _create_terminal(
    message: CreateTerminalMessage,
    websocket: WebSocket,
    session_id: str,
    terminals: TerminalMultiplexer,
) -> None:
    if message.session_id is not None and message.session_id != session_id:
        logger.warning(
            f"create-terminal for session {message.session_id} on channel bound to {session_id}",
            session_id=session_id,
        )
        await send_ws_error(
            websocket,
            ErrorCode.SESSION_INVALID,
            "sessionId does not match this channel's session",
            session_id=session_id,
            details={"sessionId": message.session_id},
        )
        return

    try:
        await terminals.create(session_id)
    except AppException as exc:
        await send_app_error(websocket, exc, session_id=session_id)


def _error_fields(error: ValidationError) -> list[dict[str, Any]]:
    return [{"field": ".".join(str(p) for p in e["loc"]), "message": e["msg"]} for e in error.errors()]


async def _keepalive(websocket: WebSocket, ws_manager: WebSocketManager) -> None:
    """Send periodic ping frames."""
    while True:
        await asyncio.sleep(WS_KEEPALIVE_INTERVAL)
        if not await ws_manager.send_to(websocket, {"type": MSG_TYPE_PING}):
            break
