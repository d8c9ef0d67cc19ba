"""Tests for the request body size limit middleware."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from api.middleware.request_limits import RequestSizeLimitMiddleware


def build_client(limit: int) -> TestClient:
    app = FastAPI()
    app.add_middleware(RequestSizeLimitMiddleware, max_body_size=limit)

    @app.put("/upload")
    async def upload(request: Request) -> dict:
        return {"size": len(await request.body())}

    @app.get("/ping")
    async def ping() -> dict:
        return {"ok": True}

    return TestClient(app)


class TestRequestSizeLimit:
    def test_small_body_passes(self) -> None:
        response = build_client(100).put("/upload", content=b"x" * 10)

        assert response.status_code == 200
        assert response.json() == {"size": 10}

    def test_large_body_rejected(self) -> None:
        response = build_client(100).put("/upload", content=b"x" * 101)

        assert response.status_code == 413
        error = response.json()["error"]
        assert error["code"] == "FILE_5002"
        assert error["path"] == "/upload"

    def test_get_is_not_checked(self) -> None:
        assert build_client(1).get("/ping").status_code == 200

    def test_limit_from_settings(self, monkeypatch) -> None:  # type: ignore[no-untyped-def]
        monkeypatch.setenv("MAX_REQUEST_BODY_SIZE", "5")

        middleware = RequestSizeLimitMiddleware(FastAPI())

        assert middleware._max_body_size == 5
