"""Tests for API schemas."""

from __future__ import annotations

import pytest

from pydantic import ValidationError

from models.schemas import (
    CompileResponse,
    CreateTerminalMessage,
    ExecuteRequest,
    ExecuteResponse,
    FileListResponse,
    FileNode,
    SaveFileRequest,
    TerminalInputMessage,
    TerminalResizeMessage,
)


class TestExecuteRequest:
    def test_code(self) -> None:
        request = ExecuteRequest.model_validate({"language": "python", "code": "print(1+1)"})

        assert request.code == "print(1+1)"
        assert request.filepath is None

    def test_filepath(self) -> None:
        request = ExecuteRequest.model_validate({"language": "python", "filepath": "a.py"})

        assert request.filepath == "a.py"

    def test_empty_code_is_a_source(self) -> None:
        assert ExecuteRequest(language="bash", code="").code == ""

    def test_requires_code_or_filepath(self) -> None:
        with pytest.raises(ValidationError, match="Either code or filepath is required"):
            ExecuteRequest.model_validate({"language": "python"})

    def test_requires_language(self) -> None:
        with pytest.raises(ValidationError):
            ExecuteRequest.model_validate({"language": "", "code": "x"})


class TestExecuteResponse:
    def test_camel_case_wire_format(self) -> None:
        response = ExecuteResponse(stdout="2\n", exit_code=0, execution_time_ms=3.5)

        assert response.model_dump(by_alias=True) == {
            "stdout": "2\n",
            "stderr": "",
            "exitCode": 0,
            "timedOut": False,
            "executionTimeMs": 3.5,
            "error": None,
        }

    def test_populate_by_alias(self) -> None:
        response = ExecuteResponse.model_validate({"exitCode": None, "timedOut": True})

        assert response.timed_out is True
        assert response.exit_code is None

    def test_compile_response_excludes_unset(self) -> None:
        response = CompileResponse(success=True, output_path="main")

        assert response.model_dump(by_alias=True, exclude_none=True) == {"success": True, "outputPath": "main"}


class TestFileSchemas:
    def test_recursive_tree(self) -> None:
        listing = FileListResponse.model_validate(
            {
                "files": [
                    {
                        "name": "src",
                        "path": "src",
                        "type": "directory",
                        "children": [{"name": "a.py", "path": "src/a.py", "type": "file", "size": 3}],
                    }
                ],
                "count": 1,
            }
        )

        child = listing.files[0].children[0]  # type: ignore[index]
        assert isinstance(child, FileNode)
        assert child.size == 3

    def test_node_type_is_restricted(self) -> None:
        with pytest.raises(ValidationError):
            FileNode(name="x", path="x", type="socket")  # type: ignore[arg-type]

    def test_save_request_defaults_to_empty_content(self) -> None:
        assert SaveFileRequest(filepath="a.py").content == ""

    def test_save_request_requires_filepath(self) -> None:
        with pytest.raises(ValidationError):
            SaveFileRequest(filepath="")


class TestChannelMessages:
    def test_input_alias(self) -> None:
        message = TerminalInputMessage.model_validate({"type": "terminal-input", "termId": "term_1", "input": "ls\r"})

        assert message.term_id == "term_1"

    def test_resize_requires_integers(self) -> None:
        with pytest.raises(ValidationError):
            TerminalResizeMessage.model_validate({"type": "terminal-resize", "termId": "t", "cols": "wide", "rows": 2})

    def test_create_ignores_extra_fields(self) -> None:
        message = CreateTerminalMessage.model_validate({"type": "create-terminal", "sessionId": "demo", "x": 1})

        assert message.session_id == "demo"

    def test_wrong_type_rejected(self) -> None:
        with pytest.raises(ValidationError):
            CreateTerminalMessage.model_validate({"type": "terminal-input"})
