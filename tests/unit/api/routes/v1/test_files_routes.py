"""Tests for the workspace file endpoints."""

from __future__ import annotations

from pathlib import Path

import pytest

from fastapi import FastAPI
from fastapi.testclient import TestClient

from api.dependencies import get_file_service
from api.middleware.exception_handlers import register_exception_handlers
from api.routes.v1.files import router
from api.services.workspace_files import WorkspaceFileService
from core.session_registry import SessionRegistry


@pytest.fixture
def client(registry: SessionRegistry) -> TestClient:
    app = FastAPI()
    register_exception_handlers(app)
    app.include_router(router, prefix="/api/v1/sessions")
    app.dependency_overrides[get_file_service] = lambda: WorkspaceFileService(registry, max_file_size=1024)
    return TestClient(app, raise_server_exceptions=False)


BASE = "/api/v1/sessions/demo/files"


class TestSaveAndReadEndpoints:
    """PUT then GET through the HTTP layer."""

    def test_save_then_read(self, client: TestClient, workspaces_root: Path) -> None:
        response = client.put(f"{BASE}/content", json={"filepath": "a.py", "content": "x=1"})

        assert response.status_code == 200
        assert response.json() == {"success": True, "filepath": "a.py", "size": 3}
        assert (workspaces_root / "demo" / "a.py").read_text() == "x=1"

        response = client.get(f"{BASE}/content", params={"filepath": "a.py"})

        assert response.status_code == 200
        assert response.json() == {"filepath": "a.py", "content": "x=1"}

    def test_save_escape_is_403(self, client: TestClient, workspaces_root: Path) -> None:
        response = client.put(f"{BASE}/content", json={"filepath": "../../etc/passwd", "content": "x"})

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "FILE_5004"
        assert not (workspaces_root / "etc").exists()

    def test_read_escape_is_403(self, client: TestClient) -> None:
        response = client.get(f"{BASE}/content", params={"filepath": "../other/a.py"})

        assert response.status_code == 403

    def test_read_missing_is_404(self, client: TestClient) -> None:
        response = client.get(f"{BASE}/content", params={"filepath": "nope.py"})

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "FILE_5001"

    def test_read_too_large_is_413(self, client: TestClient) -> None:
        client.put(f"{BASE}/content", json={"filepath": "big.txt", "content": "x" * 2048})

        assert client.get(f"{BASE}/content", params={"filepath": "big.txt"}).status_code == 413

    def test_missing_filepath_is_422(self, client: TestClient) -> None:
        assert client.get(f"{BASE}/content").status_code == 422
        assert client.put(f"{BASE}/content", json={"content": "x"}).status_code == 422

    def test_invalid_session_is_400(self, client: TestClient) -> None:
        response = client.get("/api/v1/sessions/bad%20id/files")

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "SES_4003"


class TestListAndDeleteEndpoints:
    def test_list(self, client: TestClient) -> None:
        client.put(f"{BASE}/content", json={"filepath": "src/main.py", "content": "print(1)"})
        client.put(f"{BASE}/content", json={"filepath": "README.md", "content": ""})

        response = client.get(BASE)

        assert response.status_code == 200
        assert response.json() == {
            "files": [
                {
                    "name": "src",
                    "path": "src",
                    "type": "directory",
                    "children": [{"name": "main.py", "path": "src/main.py", "type": "file", "size": 8}],
                },
                {"name": "README.md", "path": "README.md", "type": "file", "size": 0},
            ],
            "count": 2,
        }

    def test_list_fresh_session(self, client: TestClient, workspaces_root: Path) -> None:
        response = client.get("/api/v1/sessions/fresh/files")

        assert response.json() == {"files": [], "count": 0}
        assert (workspaces_root / "fresh").is_dir()

    def test_delete(self, client: TestClient, workspaces_root: Path) -> None:
        client.put(f"{BASE}/content", json={"filepath": "a.py", "content": "x"})

        response = client.delete(f"{BASE}/content", params={"filepath": "a.py"})

        assert response.status_code == 200
        assert response.json() == {"success": True, "filepath": "a.py"}
        assert not (workspaces_root / "demo" / "a.py").exists()

    def test_delete_missing_is_404(self, client: TestClient) -> None:
        assert client.delete(f"{BASE}/content", params={"filepath": "a.py"}).status_code == 404

    def test_delete_root_is_403(self, client: TestClient) -> None:
        assert client.delete(f"{BASE}/content", params={"filepath": "."}).status_code == 403

    def test_delete_sibling_workspace_is_403(self, client: TestClient, workspaces_root: Path) -> None:
        keep = workspaces_root / "other" / "keep.txt"
        keep.parent.mkdir()
        keep.write_text("keep")

        response = client.delete(f"{BASE}/content", params={"filepath": "../other/keep.txt"})

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "FILE_5004"
        assert keep.read_text() == "keep"

    def test_delete_absolute_path_is_403(self, client: TestClient, tmp_path: Path) -> None:
        keep = tmp_path / "etc" / "hosts"
        keep.parent.mkdir()
        keep.write_text("127.0.0.1 localhost")

        response = client.delete(f"{BASE}/content", params={"filepath": str(keep)})

        assert response.status_code == 403
        assert keep.exists()

    def test_delete_through_symlink_is_403(self, client: TestClient, workspaces_root: Path, tmp_path: Path) -> None:
        outside = tmp_path / "outside"
        outside.mkdir()
        (outside / "keep.txt").write_text("keep")
        client.put(f"{BASE}/content", json={"filepath": "a.py", "content": "x"})
        (workspaces_root / "demo" / "link").symlink_to(outside)

        response = client.delete(f"{BASE}/content", params={"filepath": "link/keep.txt"})

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "FILE_5004"
        assert (outside / "keep.txt").read_text() == "keep"
