"""
Centralized API schemas for the Sandbox IDE.

Request/response models organized by domain, with OpenAPI examples.
"""

from models.error_models import ErrorDetail, ErrorResponse
from models.schemas.execution import (
    CompileRequest,
    CompileResponse,
    ExecuteRequest,
    ExecuteResponse,
)
from models.schemas.files import (
    DeleteFileResponse,
    FileContentResponse,
    FileListResponse,
    FileNode,
    SaveFileRequest,
    SaveFileResponse,
)
from models.schemas.health import (
    HealthResponse,
    LivenessResponse,
    ReadinessResponse,
    SandboxHealth,
    SessionHealth,
    WebSocketHealth,
)
from models.schemas.terminal import (
    CreateTerminalMessage,
    TerminalInputMessage,
    TerminalResizeMessage,
)

__all__ = [
    "CompileRequest",
    "CompileResponse",
    "CreateTerminalMessage",
    "DeleteFileResponse",
    "ErrorDetail",
    "ErrorResponse",
    "ExecuteRequest",
    "ExecuteResponse",
    "FileContentResponse",
    "FileListResponse",
    "FileNode",
    "HealthResponse",
    "LivenessResponse",
    "ReadinessResponse",
    "SandboxHealth",
    "SaveFileRequest",
    "SaveFileResponse",
    "SessionHealth",
    "TerminalInputMessage",
    "TerminalResizeMessage",
    "WebSocketHealth",
]
