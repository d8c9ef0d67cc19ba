from __future__ import annotations

import asyncio

from typing import Any

from core.constants import MAX_FILE_SIZE
from core.exceptions import AppException, FileTooLargeError, WorkspaceFileNotFoundError
from core.session_registry import SessionRegistry
from models.error_models import ErrorCode
from utils.file_utils import (
    count_tree_files,
    delete_path,
    list_directory_tree,
    read_file_content,
    relative_to_workspace,
    resolve_workspace_path,
    write_file_content,
)
from utils.logger import logger


class WorkspaceFileService:
    """Read, write and delete files inside a session workspace.

    Every client-supplied path passes the workspace guard before the
    filesystem is touched.
    """

    def __init__(self, registry: SessionRegistry, max_file_size: int = MAX_FILE_SIZE):
        self.registry = registry
        self.max_file_size = max_file_size

    async def list_tree(self, session_id: str) -> tuple[list[dict[str, Any]], int]:
        """Recursive workspace listing and its file count."""
        workspace = await self.registry.get_or_create_workspace(session_id)
        tree = await list_directory_tree(workspace)
        return tree, count_tree_files(tree)

    async def read(self, session_id: str, filepath: str) -> str:
        workspace = await self.registry.get_or_create_workspace(session_id)
        target = resolve_workspace_path(filepath, workspace)

        if not target.is_file():
            raise WorkspaceFileNotFoundError(filepath)
        size = (await asyncio.to_thread(target.stat)).st_size
        if size > self.max_file_size:
            raise FileTooLargeError(filepath, size, self.max_file_size)

        return await read_file_content(target)

    async def save(self, session_id: str, filepath: str, content: str) -> tuple[str, int]:
        """Create or overwrite a file, creating parent directories.

        Returns:
            Tuple of (workspace-relative path, bytes written)
        """
        workspace = await self.registry.get_or_create_workspace(session_id)
        target = resolve_workspace_path(filepath, workspace)

        try:
            size = await write_file_content(target, content)
        except OSError as e:
            logger.error(f"Failed to write {filepath}: {e}", session_id=session_id)
            raise AppException(
                ErrorCode.FILE_WRITE_FAILED,
                f"Could not write file: {filepath}",
                details={"filepath": filepath},
                cause=e,
            ) from e
        path = relative_to_workspace(target, workspace)
        logger.info(f"Saved {path} ({size} bytes)", session_id=session_id)
        return path, size

    async def delete(self, session_id: str, filepath: str) -> str:
        """Delete a file or directory tree; returns its workspace-relative path."""
        workspace = await self.registry.get_or_create_workspace(session_id)
        target = resolve_workspace_path(filepath, workspace)

        try:
            await delete_path(target)
        except FileNotFoundError as e:
            raise WorkspaceFileNotFoundError(filepath) from e

        path = relative_to_workspace(target, workspace)
        logger.info(f"Deleted {path}", session_id=session_id)
        return path


__all__ = ["WorkspaceFileService"]
