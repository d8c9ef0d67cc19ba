"""
File operation utilities for session workspaces.
Provides path containment checks and async file and directory operations.
"""

from __future__ import annotations

import asyncio
import os
import shutil

from pathlib import Path
from typing import Any

import aiofiles

from core.constants import (
    ERROR_NULL_BYTE_IN_PATH,
    ERROR_PATH_IS_WORKSPACE_ROOT,
    ERROR_PATH_OUTSIDE_WORKSPACE,
    ERROR_SYMLINK_ESCAPE,
    MAX_TREE_DEPTH,
)
from core.exceptions import AccessDeniedError


def validate_workspace_path(
    file_path: str, workspace: Path, allow_root: bool = False
) -> tuple[Path, str | None]:
    """
    Validate a client-supplied path against a session workspace.

    Validation Strategy:
    1. Reject null bytes
    2. Join onto the workspace and normalize lexically (no filesystem access)
    3. Require the normalized path to stay strictly inside the workspace
    4. Resolve symlinks and require the real path to stay inside the real workspace

    Args:
        file_path: Path to validate (relative to the workspace)
        workspace: Absolute workspace directory
        allow_root: Accept a path naming the workspace itself (listings only)

    Returns:
        Tuple of (normalized_path, error_message)
        If error_message is None, validation passed
    """
    try:
        if "\0" in file_path:
            return Path(), ERROR_NULL_BYTE_IN_PATH

        root = Path(os.path.normpath(workspace))
        candidate = Path(os.path.normpath(os.path.join(root, file_path)))

        if candidate == root:
            if allow_root:
                return candidate, None
            return Path(), ERROR_PATH_IS_WORKSPACE_ROOT

        if not candidate.is_relative_to(root):
            return Path(), ERROR_PATH_OUTSIDE_WORKSPACE

        # A shell user can plant symlinks, so the real location must also be contained
        real_root = root.resolve()
        real_candidate = candidate.resolve()
        if real_candidate != real_root and not real_candidate.is_relative_to(real_root):
            return Path(), ERROR_SYMLINK_ESCAPE

        return candidate, None

    except (ValueError, OSError) as e:
        # ValueError: invalid path components
        # OSError: filesystem errors while resolving (loops, too long, etc.)
        return Path(), f"Path validation failed: {e!s}"


def resolve_workspace_path(file_path: str, workspace: Path, allow_root: bool = False) -> Path:
    """Validate a path and raise AccessDeniedError when it escapes the workspace."""
    target, error = validate_workspace_path(file_path, workspace, allow_root=allow_root)
    if error:
        raise AccessDeniedError(error, filepath=file_path)
    return target


def relative_to_workspace(path: Path, workspace: Path) -> str:
    """Workspace-relative POSIX path used in API responses."""
    return path.relative_to(Path(os.path.normpath(workspace))).as_posix()


async def read_file_content(target_path: Path) -> str:
    """Read a UTF-8 text file asynchronously.

    Undecodable bytes are replaced rather than failing the read.
    """
    async with aiofiles.open(target_path, encoding="utf-8", errors="replace") as f:
        return await f.read()


async def write_file_content(target_path: Path, content: str) -> int:
    """Write text to a file, creating parent directories as needed.

    Returns:
        Number of bytes written
    """
    await asyncio.to_thread(target_path.parent.mkdir, parents=True, exist_ok=True)
    data = content.encode("utf-8")
    async with aiofiles.open(target_path, "wb") as f:
        await f.write(data)
    return len(data)


async def write_temp_script(target_path: Path, content: str) -> None:
    """Write an ad hoc script, readable by the unprivileged sandbox user."""
    async with aiofiles.open(target_path, "w", encoding="utf-8") as f:
        await f.write(content)
    await asyncio.to_thread(os.chmod, target_path, 0o644)


def _remove_path(target_path: Path) -> None:
    if target_path.is_dir() and not target_path.is_symlink():
        shutil.rmtree(target_path)
    else:
        target_path.unlink()


async def delete_path(target_path: Path) -> None:
    """Delete a file, symlink or directory tree.

    Raises:
        FileNotFoundError: If nothing exists at target_path
    """
    if not target_path.exists() and not target_path.is_symlink():
        raise FileNotFoundError(str(target_path))
    await asyncio.to_thread(_remove_path, target_path)


def _build_tree(directory: Path, root: Path, depth: int) -> list[dict[str, Any]]:
    entries: list[dict[str, Any]] = []
    try:
        children = sorted(directory.iterdir(), key=lambda p: (not p.is_dir(), p.name.lower()))
    except OSError:
        return entries

    for child in children:
        if child.name.startswith("."):
            continue
        node: dict[str, Any] = {"name": child.name, "path": child.relative_to(root).as_posix()}
        if child.is_dir() and not child.is_symlink():
            node["type"] = "directory"
            node["children"] = _build_tree(child, root, depth + 1) if depth < MAX_TREE_DEPTH else []
        else:
            node["type"] = "file"
            try:
                node["size"] = child.lstat().st_size
            except OSError:
                node["size"] = 0
        entries.append(node)
    return entries


async def list_directory_tree(directory: Path, root: Path | None = None) -> list[dict[str, Any]]:
    """List a directory recursively, skipping hidden entries.

    Directories come first. Each node is {name, path, type, size?, children?}
    with paths relative to root (defaults to directory).
    """
    base = Path(os.path.normpath(root or directory))
    return await asyncio.to_thread(_build_tree, Path(os.path.normpath(directory)), base, 1)


def count_tree_files(tree: list[dict[str, Any]]) -> int:
    """Count file nodes in a tree returned by list_directory_tree."""
    total = 0
    for node in tree:
        if node["type"] == "file":
            total += 1
        else:
            total += count_tree_files(node.get("children", []))
    return total
