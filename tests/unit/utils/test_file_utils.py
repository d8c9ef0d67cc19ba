"""Tests for workspace path containment and async file operations."""

from __future__ import annotations

import os

from pathlib import Path

import pytest

from core.constants import (
    ERROR_NULL_BYTE_IN_PATH,
    ERROR_PATH_IS_WORKSPACE_ROOT,
    ERROR_PATH_OUTSIDE_WORKSPACE,
    ERROR_SYMLINK_ESCAPE,
)
from core.exceptions import AccessDeniedError
from utils.file_utils import (
    count_tree_files,
    delete_path,
    list_directory_tree,
    read_file_content,
    relative_to_workspace,
    resolve_workspace_path,
    validate_workspace_path,
    write_file_content,
    write_temp_script,
)


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    ws = tmp_path / "workspaces" / "demo"
    ws.mkdir(parents=True)
    return ws


class TestValidateWorkspacePath:
    """Tests for the workspace guard."""

    @pytest.mark.parametrize(
        ("file_path", "expected"),
        [
            ("a.py", "a.py"),
            ("src/main.py", "src/main.py"),
            ("./src/../a.py", "a.py"),
            ("new/dir/file.txt", "new/dir/file.txt"),
        ],
    )
    def test_contained_paths(self, workspace: Path, file_path: str, expected: str) -> None:
        target, error = validate_workspace_path(file_path, workspace)

        assert error is None
        assert target == workspace / expected

    @pytest.mark.parametrize("file_path", ["../other/a.py", "../../etc/passwd", "/etc/passwd", "src/../../x"])
    def test_escaping_paths(self, workspace: Path, file_path: str) -> None:
        _, error = validate_workspace_path(file_path, workspace)

        assert error == ERROR_PATH_OUTSIDE_WORKSPACE

    def test_sibling_prefix_is_not_contained(self, workspace: Path) -> None:
        (workspace.parent / "demo2").mkdir()

        _, error = validate_workspace_path("../demo2/a.py", workspace)

        assert error == ERROR_PATH_OUTSIDE_WORKSPACE

    def test_null_byte(self, workspace: Path) -> None:
        _, error = validate_workspace_path("a\0.py", workspace)

        assert error == ERROR_NULL_BYTE_IN_PATH

    @pytest.mark.parametrize("file_path", ["", ".", "src/.."])
    def test_workspace_root(self, workspace: Path, file_path: str) -> None:
        _, error = validate_workspace_path(file_path, workspace)

        assert error == ERROR_PATH_IS_WORKSPACE_ROOT

    def test_workspace_root_allowed_for_listing(self, workspace: Path) -> None:
        target, error = validate_workspace_path(".", workspace, allow_root=True)

        assert error is None
        assert target == workspace

    def test_symlink_escape(self, workspace: Path, tmp_path: Path) -> None:
        outside = tmp_path / "secret"
        outside.mkdir()
        (workspace / "link").symlink_to(outside)

        _, error = validate_workspace_path("link/key.pem", workspace)

        assert error == ERROR_SYMLINK_ESCAPE

    def test_symlink_inside_workspace(self, workspace: Path) -> None:
        (workspace / "real").mkdir()
        (workspace / "alias").symlink_to(workspace / "real")

        _, error = validate_workspace_path("alias/a.py", workspace)

        assert error is None

    def test_resolve_raises_access_denied(self, workspace: Path) -> None:
        with pytest.raises(AccessDeniedError) as exc_info:
            resolve_workspace_path("../x", workspace)

        assert exc_info.value.details == {"filepath": "../x"}

    def test_relative_to_workspace(self, workspace: Path) -> None:
        assert relative_to_workspace(workspace / "src" / "a.py", workspace) == "src/a.py"


class TestFileOperations:
    """Tests for async read/write/delete."""

    @pytest.mark.asyncio
    async def test_write_then_read(self, workspace: Path) -> None:
        target = workspace / "nested" / "a.py"

        size = await write_file_content(target, "x=1")

        assert size == 3
        assert await read_file_content(target) == "x=1"

    @pytest.mark.asyncio
    async def test_write_counts_bytes(self, workspace: Path) -> None:
        assert await write_file_content(workspace / "u.txt", "héllo") == 6

    @pytest.mark.asyncio
    async def test_overwrite(self, workspace: Path) -> None:
        target = workspace / "a.txt"
        await write_file_content(target, "first version")
        await write_file_content(target, "v2")

        assert await read_file_content(target) == "v2"

    @pytest.mark.asyncio
    async def test_read_replaces_invalid_utf8(self, workspace: Path) -> None:
        target = workspace / "bin.dat"
        target.write_bytes(b"ok\xff")

        assert await read_file_content(target) == "ok�"

    @pytest.mark.asyncio
    async def test_temp_script_world_readable(self, workspace: Path) -> None:
        target = workspace / ".script_1.py"

        await write_temp_script(target, "print(1)")

        assert target.read_text() == "print(1)"
        assert target.stat().st_mode & 0o777 == 0o644

    @pytest.mark.asyncio
    async def test_delete_file(self, workspace: Path) -> None:
        target = workspace / "a.txt"
        target.write_text("x")

        await delete_path(target)

        assert not target.exists()

    @pytest.mark.asyncio
    async def test_delete_directory_tree(self, workspace: Path) -> None:
        (workspace / "d" / "e").mkdir(parents=True)
        (workspace / "d" / "e" / "f.txt").write_text("x")

        await delete_path(workspace / "d")

        assert not (workspace / "d").exists()

    @pytest.mark.asyncio
    async def test_delete_symlink_keeps_target(self, workspace: Path) -> None:
        (workspace / "real").mkdir()
        (workspace / "real" / "keep.txt").write_text("x")
        (workspace / "alias").symlink_to(workspace / "real")

        await delete_path(workspace / "alias")

        assert (workspace / "real" / "keep.txt").exists()
        assert not os.path.lexists(workspace / "alias")

    @pytest.mark.asyncio
    async def test_delete_missing(self, workspace: Path) -> None:
        with pytest.raises(FileNotFoundError):
            await delete_path(workspace / "missing.txt")


class TestDirectoryTree:
    """Tests for recursive listings."""

    @pytest.mark.asyncio
    async def test_tree_shape(self, workspace: Path) -> None:
        (workspace / "src").mkdir()
        (workspace / "src" / "main.py").write_text("print(1)\n")
        (workspace / "README.md").write_text("hi")
        (workspace / ".script_1.py").write_text("hidden")
        (workspace / ".git").mkdir()

        tree = await list_directory_tree(workspace)

        assert tree == [
            {
                "name": "src",
                "path": "src",
                "type": "directory",
                "children": [{"name": "main.py", "path": "src/main.py", "type": "file", "size": 9}],
            },
            {"name": "README.md", "path": "README.md", "type": "file", "size": 2},
        ]
        assert count_tree_files(tree) == 2

    @pytest.mark.asyncio
    async def test_empty_workspace(self, workspace: Path) -> None:
        assert await list_directory_tree(workspace) == []

    @pytest.mark.asyncio
    async def test_symlinked_directory_not_followed(self, workspace: Path, tmp_path: Path) -> None:
        outside = tmp_path / "outside"
        outside.mkdir()
        (outside / "secret.txt").write_text("x")
        (workspace / "link").symlink_to(outside)

        tree = await list_directory_tree(workspace)

        assert tree[0]["name"] == "link"
        assert tree[0]["type"] == "file"
        assert "children" not in tree[0]
