"""
Error payloads shared by the REST API and the session channel.

REST failures are wrapped as {"error": ErrorResponse}; channel failures are
sent as a WebSocketError frame with type="error". Both carry an ErrorCode,
whose prefix names the failing area and whose HTTP status comes from
ERROR_CODE_TO_STATUS.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


def _utc_now() -> str:
    return datetime.now(UTC).isoformat()


class ErrorCode(str, Enum):
    """Stable machine-readable error codes."""

    # Request validation
    VALIDATION_ERROR = "VAL_2001"
    VALIDATION_MISSING_FIELD = "VAL_2002"

    # Generic resources
    RESOURCE_NOT_FOUND = "RES_3001"
    RESOURCE_CONFLICT = "RES_3003"

    # Sessions
    SESSION_INVALID = "SES_4003"

    # Workspace files
    FILE_NOT_FOUND = "FILE_5001"
    FILE_TOO_LARGE = "FILE_5002"
    FILE_PERMISSION_DENIED = "FILE_5004"
    FILE_WRITE_FAILED = "FILE_5005"

    # Session channel
    WS_CONNECTION_FAILED = "WS_6001"
    WS_MESSAGE_INVALID = "WS_6002"

    # Server faults
    INTERNAL_ERROR = "INT_9001"
    INTERNAL_UNEXPECTED = "INT_9999"

    # Processes (execution, compilation, terminals)
    EXEC_UNSUPPORTED_LANGUAGE = "EXEC_10001"
    EXEC_TIMEOUT = "EXEC_10002"
    EXEC_SPAWN_FAILED = "EXEC_10003"
    EXEC_TERMINAL_FAILED = "EXEC_10004"


class ErrorDetail(BaseModel):
    """One field-level problem attached to an error."""

    field: str | None = None
    message: str
    code: str | None = None
    # Offending input is kept for logging only, never echoed to clients
    value: Any | None = Field(default=None, exclude=True)


class ErrorResponse(BaseModel):
    """Body of every non-2xx REST response.

    Example:
    {
        "error": {
            "code": "FILE_5004",
            "message": "Access denied: path is outside the workspace",
            "request_id": "req_3f9a0c1d2b4e5f60",
            "timestamp": "2025-01-15T10:30:00+00:00",
            "path": "/api/v1/sessions/demo/files/content"
        }
    }
    """

    code: ErrorCode
    message: str
    request_id: str | None = None
    timestamp: str = Field(default_factory=_utc_now)
    details: list[ErrorDetail] | None = None
    path: str | None = None
    debug: dict[str, Any] | None = Field(default=None, exclude=True)

    def to_dict(self, include_debug: bool = False) -> dict[str, Any]:
        """JSON-ready {"error": {...}} envelope; debug data only on request."""
        data = self.model_dump(mode="json", exclude_none=True)
        if include_debug and self.debug:
            data["debug"] = self.debug
        return {"error": data}


class WebSocketError(BaseModel):
    """Error frame on the session channel.

    recoverable tells the client whether resending (or reconnecting) can
    succeed; the channel itself stays open unless it is closed explicitly.
    """

    type: str = "error"
    code: ErrorCode
    message: str
    request_id: str | None = None
    session_id: str | None = None
    timestamp: str = Field(default_factory=_utc_now)
    recoverable: bool = True
    details: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


ERROR_CODE_TO_STATUS: dict[ErrorCode, int] = {
    ErrorCode.SESSION_INVALID: 400,
    ErrorCode.FILE_PERMISSION_DENIED: 403,
    ErrorCode.RESOURCE_NOT_FOUND: 404,
    ErrorCode.FILE_NOT_FOUND: 404,
    ErrorCode.RESOURCE_CONFLICT: 409,
    ErrorCode.FILE_TOO_LARGE: 413,
    ErrorCode.VALIDATION_ERROR: 422,
    ErrorCode.VALIDATION_MISSING_FIELD: 422,
    # An unusable language is a request problem, not a server fault
    ErrorCode.EXEC_UNSUPPORTED_LANGUAGE: 422,
}


def get_status_code(error_code: ErrorCode) -> int:
    """HTTP status for an error code; anything unmapped is a 500."""
    return ERROR_CODE_TO_STATUS.get(error_code, 500)


__all__ = [
    "ERROR_CODE_TO_STATUS",
    "ErrorCode",
    "ErrorDetail",
    "ErrorResponse",
    "WebSocketError",
    "get_status_code",
]
