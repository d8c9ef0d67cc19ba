"""
Code execution endpoints (v1).

A timed-out run is a normal 200 response with timedOut=true and a null
exitCode; only spawn failures and bad requests are errors.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Path

from api.dependencies import Dispatcher
from api.middleware.request_context import update_request_context
from models.schemas.execution import CompileRequest, CompileResponse, ExecuteRequest, ExecuteResponse

router = APIRouter()

SessionIdPath = Annotated[str, Path(..., description="Session identifier", examples=["sess_abc123"])]


@router.post(
    "/{session_id}/execute",
    response_model=ExecuteResponse,
    summary="Execute code",
    description="Run submitted code or a workspace file in the sandbox and return its output.",
    responses={
        200: {
            "description": "Execution finished (possibly timed out)",
            "content": {
                "application/json": {
                    "example": {
                        "stdout": "2\n",
                        "stderr": "",
                        "exitCode": 0,
                        "timedOut": False,
                        "executionTimeMs": 38.2,
                        "error": None,
                    }
                }
            },
        },
        403: {"description": "filepath escapes the workspace"},
        404: {"description": "filepath not found"},
        422: {"description": "Unsupported language or invalid request"},
        500: {"description": "Process could not be started"},
    },
)
async def execute_code(session_id: SessionIdPath, request: ExecuteRequest, dispatcher: Dispatcher) -> ExecuteResponse:
    """Run code for a session."""
    update_request_context(session_id=session_id)

    result = await dispatcher.execute(
        session_id,
        request.language,
        code=request.code,
        filepath=request.filepath,
    )

    return ExecuteResponse(
        stdout=result.stdout,
        stderr=result.stderr,
        exit_code=result.exit_code,
        timed_out=result.timed_out,
        execution_time_ms=round(result.execution_time_ms, 2),
        error=result.error,
    )


@router.post(
    "/{session_id}/compile",
    response_model=CompileResponse,
    response_model_exclude_none=True,
    summary="Compile file",
    description="Compile a workspace C or C++ file to a binary beside it.",
    responses={
        200: {
            "description": "Compilation finished",
            "content": {"application/json": {"example": {"success": True, "outputPath": "main"}}},
        },
        404: {"description": "Source file not found"},
        422: {"description": "Not a compiled language"},
    },
)
async def compile_file(session_id: SessionIdPath, request: CompileRequest, dispatcher: Dispatcher) -> CompileResponse:
    """Compile a workspace file."""
    update_request_context(session_id=session_id)

    result = await dispatcher.compile(session_id, request.filepath, request.language)

    if result.success:
        return CompileResponse(success=True, output_path=result.output_path)
    return CompileResponse(
        success=False,
        stdout=result.stdout,
        stderr=result.stderr,
        exit_code=result.exit_code,
        timed_out=result.timed_out,
        error=result.error,
    )
