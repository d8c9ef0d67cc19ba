"""Tests for the /ws/terminal session channel."""

from __future__ import annotations

from unittest.mock import AsyncMock, Mock

import pytest

from fastapi import FastAPI
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from api.routes import terminal
from api.websocket.errors import WSCloseCode
from api.websocket.manager import WebSocketManager
from core.exceptions import TerminalSpawnError


@pytest.fixture
def terminals() -> Mock:
    multiplexer = Mock()
    multiplexer.create = AsyncMock()
    multiplexer.input = AsyncMock(return_value=False)
    multiplexer.resize = Mock(return_value=True)
    return multiplexer


@pytest.fixture
def ws_manager() -> WebSocketManager:
    return WebSocketManager()


@pytest.fixture
def client(terminals: Mock, ws_manager: WebSocketManager) -> TestClient:
    app = FastAPI()
    app.include_router(terminal.router, prefix="/ws")
    app.state.ws_manager = ws_manager
    app.state.terminals = terminals
    return TestClient(app)


class TestChannelFrames:
    """Frame dispatch on an open channel."""

    def test_create_terminal(self, client: TestClient, terminals: Mock) -> None:
        with client.websocket_connect("/ws/terminal?session_id=demo") as ws:
            ws.send_json({"type": "create-terminal", "sessionId": "demo"})
            ws.send_text("not json")
            ws.receive_json()

        terminals.create.assert_awaited_once_with("demo")

    def test_invalid_json_keeps_channel_open(self, client: TestClient) -> None:
        with client.websocket_connect("/ws/terminal?session_id=demo") as ws:
            ws.send_text("{not json")
            first = ws.receive_json()
            ws.send_text("[1, 2]")
            second = ws.receive_json()

        assert first["type"] == "error"
        assert first["code"] == "WS_6002"
        assert first["session_id"] == "demo"
        assert second["message"] == "Frame must be a JSON object"

    def test_unknown_type(self, client: TestClient) -> None:
        with client.websocket_connect("/ws/terminal?session_id=demo") as ws:
            ws.send_json({"type": "launch-missiles"})
            frame = ws.receive_json()

        assert frame["code"] == "WS_6002"
        assert frame["details"] == {"type": "launch-missiles"}

    def test_session_mismatch(self, client: TestClient, terminals: Mock) -> None:
        with client.websocket_connect("/ws/terminal?session_id=demo") as ws:
            ws.send_json({"type": "create-terminal", "sessionId": "other"})
            frame = ws.receive_json()

        assert frame["code"] == "SES_4003"
        assert frame["details"] == {"sessionId": "other"}
        terminals.create.assert_not_awaited()

    def test_spawn_failure_reported(self, client: TestClient, terminals: Mock) -> None:
        terminals.create.side_effect = TerminalSpawnError("demo")

        with client.websocket_connect("/ws/terminal?session_id=demo") as ws:
            ws.send_json({"type": "create-terminal"})
            frame = ws.receive_json()

        assert frame["code"] == "EXEC_10004"

    def test_input_for_unknown_terminal_is_dropped(self, client: TestClient, terminals: Mock) -> None:
        with client.websocket_connect("/ws/terminal?session_id=demo") as ws:
            ws.send_json({"type": "terminal-input", "termId": "term_missing", "input": "ls\r"})
            ws.send_json({"type": "pong"})
            ws.send_text("oops")
            frame = ws.receive_json()

        # The first frame back is the reply to "oops"
        assert frame["message"] == "Frame is not valid JSON"
        terminals.input.assert_awaited_once_with("term_missing", "ls\r", session_id="demo")

    def test_resize(self, client: TestClient, terminals: Mock) -> None:
        with client.websocket_connect("/ws/terminal?session_id=demo") as ws:
            ws.send_json({"type": "terminal-resize", "termId": "term_1", "cols": 132, "rows": 40})
            ws.send_text("sync")
            ws.receive_json()

        terminals.resize.assert_called_once_with("term_1", 132, 40, session_id="demo")

    def test_invalid_resize(self, client: TestClient, terminals: Mock) -> None:
        with client.websocket_connect("/ws/terminal?session_id=demo") as ws:
            ws.send_json({"type": "terminal-resize", "termId": "term_1", "cols": "wide", "rows": 40})
            frame = ws.receive_json()

        assert frame["code"] == "WS_6002"
        assert frame["details"]["errors"][0]["field"] == "cols"
        terminals.resize.assert_not_called()


class TestChannelLifecycle:
    def test_channel_registered(self, client: TestClient, ws_manager: WebSocketManager) -> None:
        with client.websocket_connect("/ws/terminal?session_id=demo") as ws:
            ws.send_text("sync")
            ws.receive_json()
            assert ws_manager.has_connections("demo")
            assert ws_manager.connection_count == 1

    def test_anonymous_channel_gets_own_session(self, client: TestClient) -> None:
        with client.websocket_connect("/ws/terminal") as ws:
            ws.send_text("sync")
            frame = ws.receive_json()

        assert frame["session_id"].startswith("conn_")

    def test_invalid_session_closes(self, client: TestClient) -> None:
        with client.websocket_connect("/ws/terminal?session_id=..") as ws:
            frame = ws.receive_json()
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_text()

        assert frame["code"] == "SES_4003"
        assert exc_info.value.code == WSCloseCode.SESSION_INVALID

    def test_connection_limit(self, terminals: Mock) -> None:
        app = FastAPI()
        app.include_router(terminal.router, prefix="/ws")
        app.state.ws_manager = WebSocketManager(max_connections=0)
        app.state.terminals = terminals

        with TestClient(app).websocket_connect("/ws/terminal?session_id=demo") as ws:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_text()

        assert exc_info.value.code == WSCloseCode.TRY_AGAIN_LATER
