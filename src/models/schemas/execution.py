"""
Code execution API schemas.

Wire format is camelCase (exitCode, timedOut, ...); Python attributes stay
snake_case through alias generation.
"""

from __future__ import annotations

from typing import Self

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serialized with camelCase field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ExecuteRequest(CamelModel):
    """Run submitted code or a saved workspace file."""

    model_config = ConfigDict(
        json_schema_extra={"example": {"language": "python", "code": "print(1 + 1)"}},
    )

    language: str = Field(..., min_length=1, description="python, javascript, bash, c or cpp")
    code: str | None = Field(default=None, description="Source to run from a temporary file")
    filepath: str | None = Field(default=None, description="Workspace file to run instead of code")

    @model_validator(mode="after")
    def require_source(self) -> Self:
        """filepath wins when both are given."""
        if self.code is None and self.filepath is None:
            raise ValueError("Either code or filepath is required")
        return self


class ExecuteResponse(CamelModel):
    """Captured output of a one-shot execution."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "stdout": "2\n",
                "stderr": "",
                "exitCode": 0,
                "timedOut": False,
                "executionTimeMs": 41.7,
            }
        },
    )

    stdout: str = Field(default="", description="Captured standard output")
    stderr: str = Field(default="", description="Captured standard error")
    exit_code: int | None = Field(default=None, description="Exit status; null when the process was killed")
    timed_out: bool = Field(default=False, description="Process was killed by the execution timeout")
    execution_time_ms: float = Field(default=0.0, ge=0, description="Wall-clock run time")
    error: str | None = Field(default=None, description="Why the run did not complete normally")


class CompileRequest(CamelModel):
    """Compile a workspace file."""

    model_config = ConfigDict(json_schema_extra={"example": {"filepath": "main.c", "language": "c"}})

    filepath: str = Field(..., min_length=1, description="Workspace source file")
    language: str = Field(..., min_length=1, description="c or cpp")


class CompileResponse(CamelModel):
    """Result of compiling a workspace file."""

    success: bool = Field(..., description="Compiler exited with status 0")
    output_path: str | None = Field(default=None, description="Workspace path of the produced binary")
    stdout: str | None = Field(default=None, description="Compiler output (failures only)")
    stderr: str | None = Field(default=None, description="Compiler diagnostics (failures only)")
    exit_code: int | None = Field(default=None, description="Compiler exit status (failures only)")
    timed_out: bool | None = Field(default=None, description="Compiler was killed by the timeout")
    error: str | None = Field(default=None, description="Failure summary")
