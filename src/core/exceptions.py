"""
Application exception hierarchy.

Every session-level failure the API reports to a client is raised as an
AppException carrying an ErrorCode. The HTTP layer maps the code onto a
status and the standard error envelope.
"""

from __future__ import annotations

from typing import Any

from models.error_models import ErrorCode


class AppException(Exception):
    """Base application exception with error code support.

    Example:
        raise AppException(
            code=ErrorCode.SESSION_INVALID,
            message="Session id is required",
            details={"session_id": session_id}
        )
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ):
        self.code = code
        self.message = message
        self.details = details
        self.cause = cause
        super().__init__(message)


class InvalidSessionError(AppException):
    """Session id is empty or cannot name a workspace."""

    def __init__(self, message: str, session_id: str | None = None):
        super().__init__(
            code=ErrorCode.SESSION_INVALID,
            message=message,
            details={"session_id": session_id} if session_id else None,
        )


class ResourceNotFoundError(AppException):
    """Resource not found errors."""

    def __init__(
        self,
        resource: str,
        resource_id: str | None = None,
        code: ErrorCode = ErrorCode.RESOURCE_NOT_FOUND,
    ):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} '{resource_id}' not found"
        super().__init__(code=code, message=message, details={"resource": resource, "id": resource_id})


class WorkspaceFileNotFoundError(ResourceNotFoundError):
    """File or directory missing from a session workspace."""

    def __init__(self, filepath: str):
        super().__init__(resource="File", resource_id=filepath, code=ErrorCode.FILE_NOT_FOUND)


class AccessDeniedError(AppException):
    """Client-supplied path escapes the session workspace."""

    def __init__(self, message: str, filepath: str | None = None):
        super().__init__(
            code=ErrorCode.FILE_PERMISSION_DENIED,
            message=message,
            details={"filepath": filepath} if filepath is not None else None,
        )


class FileTooLargeError(AppException):
    """Workspace file exceeds the readable size limit."""

    def __init__(self, filepath: str, size: int, limit: int):
        super().__init__(
            code=ErrorCode.FILE_TOO_LARGE,
            message=f"File '{filepath}' is {size} bytes, limit is {limit} bytes",
            details={"filepath": filepath},
        )


class UnsupportedLanguageError(AppException):
    """No interpreter or compiler could be resolved for a language."""

    def __init__(self, language: str, reason: str | None = None):
        message = f"Unsupported language: {language}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(
            code=ErrorCode.EXEC_UNSUPPORTED_LANGUAGE,
            message=message,
            details={"language": language},
        )


class ExecutionSpawnError(AppException):
    """The OS refused to start a guest process."""

    def __init__(self, command: str, cause: Exception | None = None):
        super().__init__(
            code=ErrorCode.EXEC_SPAWN_FAILED,
            message=f"Failed to start process: {command}",
            cause=cause,
        )


class TerminalSpawnError(AppException):
    """The OS refused to start an interactive shell."""

    def __init__(self, session_id: str, cause: Exception | None = None):
        super().__init__(
            code=ErrorCode.EXEC_TERMINAL_FAILED,
            message=f"Failed to start terminal for session '{session_id}'",
            details={"session_id": session_id},
            cause=cause,
        )


__all__ = [
    "AccessDeniedError",
    "AppException",
    "ExecutionSpawnError",
    "FileTooLargeError",
    "InvalidSessionError",
    "ResourceNotFoundError",
    "TerminalSpawnError",
    "UnsupportedLanguageError",
    "WorkspaceFileNotFoundError",
]
