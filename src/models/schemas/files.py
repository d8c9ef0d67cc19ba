"""
Workspace file API schemas.

Provides request/response models for listing, reading, saving and deleting
files inside a session workspace.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class FileNode(BaseModel):
    """File or directory in a workspace tree."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "name": "main.py",
                "path": "src/main.py",
                "type": "file",
                "size": 128,
            }
        }
    )

    name: str = Field(..., description="File or directory name")
    path: str = Field(..., description="Path relative to the workspace root")
    type: Literal["file", "directory"] = Field(..., description="Item type")
    size: int | None = Field(default=None, ge=0, description="Size in bytes (files only)")
    children: list[FileNode] | None = Field(default=None, description="Entries (directories only)")


class FileListResponse(BaseModel):
    """Recursive listing of a session workspace."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "files": [
                    {
                        "name": "src",
                        "path": "src",
                        "type": "directory",
                        "children": [{"name": "main.py", "path": "src/main.py", "type": "file", "size": 128}],
                    }
                ],
                "count": 1,
            }
        }
    )

    files: list[FileNode] = Field(default_factory=list, description="Top-level workspace entries")
    count: int = Field(default=0, ge=0, description="Number of files in the tree")


class FileContentResponse(BaseModel):
    """Text content of a workspace file."""

    filepath: str = Field(..., description="Path relative to the workspace root")
    content: str = Field(..., description="UTF-8 file content")


class SaveFileRequest(BaseModel):
    """Create or overwrite a workspace file."""

    model_config = ConfigDict(json_schema_extra={"example": {"filepath": "a.py", "content": "x = 1\n"}})

    filepath: str = Field(..., min_length=1, description="Path relative to the workspace root")
    content: str = Field(default="", description="UTF-8 file content")


class SaveFileResponse(BaseModel):
    """Result of saving a workspace file."""

    success: bool = Field(default=True, description="File was written")
    filepath: str = Field(..., description="Path relative to the workspace root")
    size: int = Field(..., ge=0, description="Bytes written")


class DeleteFileResponse(BaseModel):
    """Result of deleting a workspace file or directory."""

    success: bool = Field(default=True, description="Entry was deleted")
    filepath: str = Field(..., description="Path relative to the workspace root")
