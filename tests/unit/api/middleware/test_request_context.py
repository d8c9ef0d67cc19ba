"""Tests for request context propagation."""

from __future__ import annotations

import pytest

from fastapi import FastAPI
from fastapi.testclient import TestClient

from api.middleware.request_context import (
    RequestContext,
    RequestContextMiddleware,
    clear_request_context,
    create_websocket_context,
    generate_request_id,
    get_request_context,
    get_request_id,
    session_id_from_path,
    set_request_context,
    update_request_context,
)


@pytest.fixture
def client() -> TestClient:
    app = FastAPI()
    app.add_middleware(RequestContextMiddleware)

    @app.get("/api/v1/sessions/{session_id}/files")
    async def files(session_id: str) -> dict:
        ctx = get_request_context()
        assert ctx is not None
        return {"request_id": ctx.request_id, "session_id": ctx.session_id, "client_ip": ctx.client_ip}

    return TestClient(app)


class TestMiddleware:
    def test_generates_request_id(self, client: TestClient) -> None:
        response = client.get("/api/v1/sessions/demo/files")

        body = response.json()
        assert body["request_id"].startswith("req_")
        assert response.headers["X-Request-ID"] == body["request_id"]
        assert response.headers["X-Response-Time"].endswith("ms")
        assert body["session_id"] == "demo"

    def test_reuses_upstream_request_id(self, client: TestClient) -> None:
        response = client.get("/api/v1/sessions/demo/files", headers={"X-Request-ID": "req_proxy"})

        assert response.json()["request_id"] == "req_proxy"
        assert response.headers["X-Request-ID"] == "req_proxy"

    def test_forwarded_client_ip(self, client: TestClient) -> None:
        response = client.get("/api/v1/sessions/demo/files", headers={"X-Forwarded-For": "10.0.0.7, 10.0.0.1"})

        assert response.json()["client_ip"] == "10.0.0.7"


class TestContextHelpers:
    def setup_method(self) -> None:
        clear_request_context()

    def teardown_method(self) -> None:
        clear_request_context()

    def test_no_context(self) -> None:
        assert get_request_id() is None
        update_request_context(session_id="ignored")

    def test_update_known_and_extra_fields(self) -> None:
        set_request_context(RequestContext(request_id="req_1"))

        update_request_context(session_id="demo", language="python")

        ctx = get_request_context()
        assert ctx is not None
        assert ctx.session_id == "demo"
        assert ctx.extra == {"language": "python"}

    def test_log_context_omits_empty_fields(self) -> None:
        ctx = RequestContext(request_id="req_1", path="/x", method="GET")

        assert set(ctx.to_log_context()) == {"request_id", "method", "path", "elapsed_ms"}

    def test_websocket_context(self) -> None:
        ctx = create_websocket_context(session_id="demo", client_ip="1.2.3.4")

        assert ctx.request_id.startswith("ws_")
        assert ctx.method == "WEBSOCKET"
        assert get_request_id() == ctx.request_id

    def test_generate_request_id(self) -> None:
        assert len(generate_request_id()) == len("req_") + 16
        assert generate_request_id() != generate_request_id()

    @pytest.mark.parametrize(
        ("path", "expected"),
        [
            ("/api/v1/sessions/demo/files", "demo"),
            ("/api/v1/sessions/demo", "demo"),
            ("/api/v1/health", None),
        ],
    )
    def test_session_id_from_path(self, path: str, expected: str | None) -> None:
        assert session_id_from_path(path) == expected
