"""
Workspace file endpoints (v1).

Every filepath is checked against the session workspace before the
filesystem is touched; escaping paths are answered with 403.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Path, Query

from api.dependencies import Files
from api.middleware.request_context import update_request_context
from models.schemas.files import (
    DeleteFileResponse,
    FileContentResponse,
    FileListResponse,
    FileNode,
    SaveFileRequest,
    SaveFileResponse,
)

router = APIRouter()


# =============================================================================
# Parameter Types
# =============================================================================

SessionIdPath = Annotated[
    str,
    Path(
        ...,
        description="Session identifier",
        examples=["sess_abc123"],
    ),
]

FilepathQuery = Annotated[
    str,
    Query(
        ...,
        min_length=1,
        description="Path relative to the session workspace",
        examples=["src/main.py"],
    ),
]


# =============================================================================
# Endpoints
# =============================================================================


@router.get(
    "/{session_id}/files",
    response_model=FileListResponse,
    response_model_exclude_none=True,
    summary="List workspace files",
    description="Recursive listing of the session workspace. Hidden entries are skipped.",
    responses={
        200: {
            "description": "Workspace tree",
            "content": {
                "application/json": {
                    "example": {
                        "files": [{"name": "main.py", "path": "main.py", "type": "file", "size": 42}],
                        "count": 1,
                    }
                }
            },
        },
        400: {"description": "Invalid session id"},
    },
)
async def list_files(session_id: SessionIdPath, files: Files) -> FileListResponse:
    """List the session workspace."""
    update_request_context(session_id=session_id)

    tree, count = await files.list_tree(session_id)

    return FileListResponse(files=[FileNode.model_validate(node) for node in tree], count=count)


@router.get(
    "/{session_id}/files/content",
    response_model=FileContentResponse,
    summary="Read file",
    description="Return the UTF-8 content of a workspace file.",
    responses={
        403: {"description": "Path escapes the workspace"},
        404: {"description": "File not found"},
        413: {"description": "File too large"},
    },
)
async def read_file(session_id: SessionIdPath, filepath: FilepathQuery, files: Files) -> FileContentResponse:
    """Read a workspace file."""
    update_request_context(session_id=session_id)

    content = await files.read(session_id, filepath)

    return FileContentResponse(filepath=filepath, content=content)


@router.put(
    "/{session_id}/files/content",
    response_model=SaveFileResponse,
    summary="Save file",
    description="Create or overwrite a workspace file. Parent directories are created.",
    responses={
        200: {
            "description": "File saved",
            "content": {"application/json": {"example": {"success": True, "filepath": "a.py", "size": 6}}},
        },
        403: {"description": "Path escapes the workspace"},
    },
)
async def save_file(session_id: SessionIdPath, request: SaveFileRequest, files: Files) -> SaveFileResponse:
    """Save a workspace file."""
    update_request_context(session_id=session_id)

    path, size = await files.save(session_id, request.filepath, request.content)

    return SaveFileResponse(success=True, filepath=path, size=size)


@router.delete(
    "/{session_id}/files/content",
    response_model=DeleteFileResponse,
    summary="Delete file",
    description="Delete a workspace file or directory tree.",
    responses={
        403: {"description": "Path escapes the workspace"},
        404: {"description": "File not found"},
    },
)
async def delete_file(session_id: SessionIdPath, filepath: FilepathQuery, files: Files) -> DeleteFileResponse:
    """Delete a workspace file."""
    update_request_context(session_id=session_id)

    path = await files.delete(session_id, filepath)

    return DeleteFileResponse(success=True, filepath=path)
