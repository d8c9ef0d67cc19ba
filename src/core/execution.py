"""
One-shot code execution against a session workspace.

Every run goes through the sandbox launcher, in its own process group, with
stdout and stderr captured in memory. A hard timeout stops the whole group and
a watchdog re-issues it after the grace period unless the process has been
reaped by then, so a request is always answered within timeout + grace.
Sandboxed guests run under another uid; the isolation helper receives the
same deadline and kills them itself.
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import signal
import time

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from core.constants import (
    ERROR_EXECUTION_TIMEOUT,
    LANGUAGE_ALIASES,
    LANGUAGE_COMPILERS,
    LANGUAGE_EXTENSIONS,
    LANGUAGE_INTERPRETERS,
    MAX_OUTPUT_SIZE,
    OUTPUT_TRUNCATED_MARKER,
    PIPE_READ_CHUNK_SIZE,
    TEMP_BINARY_PREFIX,
    TEMP_SCRIPT_PREFIX,
)
from core.exceptions import (
    AppException,
    ExecutionSpawnError,
    UnsupportedLanguageError,
    WorkspaceFileNotFoundError,
)
from core.session_registry import SessionRegistry
from models.error_models import ErrorCode
from sandbox.launcher import SandboxLauncher
from utils.file_utils import relative_to_workspace, resolve_workspace_path, write_temp_script
from utils.logger import logger


@dataclass
class ExecutionResult:
    """Outcome of a one-shot execution.

    exit_code is None when the process was forcibly killed.
    """

    stdout: str = ""
    stderr: str = ""
    exit_code: int | None = None
    timed_out: bool = False
    execution_time_ms: float = 0.0
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.exit_code == 0 and not self.timed_out

    def to_dict(self) -> dict[str, Any]:
        return {
            "stdout": self.stdout,
            "stderr": self.stderr,
            "exitCode": self.exit_code,
            "timedOut": self.timed_out,
            "executionTimeMs": round(self.execution_time_ms, 2),
            "error": self.error,
        }


@dataclass
class CompileResult:
    """Outcome of compiling a workspace file."""

    success: bool
    output_path: str | None = None
    stdout: str = ""
    stderr: str = ""
    exit_code: int | None = None
    timed_out: bool = False
    error: str | None = None


@dataclass
class _CappedBuffer:
    limit: int
    data: bytearray = field(default_factory=bytearray)
    truncated: bool = False

    def append(self, chunk: bytes) -> None:
        room = self.limit - len(self.data)
        if room <= 0:
            self.truncated = True
            return
        if len(chunk) > room:
            self.truncated = True
            chunk = chunk[:room]
        self.data.extend(chunk)

    def text(self) -> str:
        text = self.data.decode("utf-8", errors="replace")
        return text + OUTPUT_TRUNCATED_MARKER if self.truncated else text


def signal_process_group(process: asyncio.subprocess.Process, sig: int = signal.SIGKILL) -> None:
    """Signal the process group led by process; no-op once it is gone.

    Falls back to the leader alone when the group holds processes this uid
    may not signal.
    """
    try:
        os.killpg(process.pid, sig)
    except ProcessLookupError:
        return
    except PermissionError:
        with contextlib.suppress(ProcessLookupError, PermissionError):
            process.send_signal(sig)


def _watchdog(process: asyncio.subprocess.Process, sig: int) -> None:
    # A reaped pid may already belong to someone else
    if process.returncode is None:
        signal_process_group(process, sig)


class ExecutionDispatcher:
    """Run interpreter and compiler invocations for sessions."""

    def __init__(
        self,
        registry: SessionRegistry,
        launcher: SandboxLauncher,
        timeout: float = 30.0,
        kill_grace: float = 1.0,
        max_output_size: int = MAX_OUTPUT_SIZE,
        interpreters: Mapping[str, Sequence[str]] | None = None,
        compilers: Mapping[str, Sequence[str]] | None = None,
    ) -> None:
        self.registry = registry
        self.launcher = launcher
        self.timeout = timeout
        self.kill_grace = kill_grace
        self.max_output_size = max_output_size
        self.interpreters = dict(LANGUAGE_INTERPRETERS if interpreters is None else interpreters)
        self.compilers = dict(LANGUAGE_COMPILERS if compilers is None else compilers)
        self._last_stamp = 0

    # ------------------------------------------------------------------
    # Language resolution
    # ------------------------------------------------------------------

    @staticmethod
    def normalize_language(language: str) -> str:
        key = language.strip().lower()
        return LANGUAGE_ALIASES.get(key, key)

    def resolve_interpreter(self, language: str) -> str:
        """First existing interpreter for language.

        Raises:
            UnsupportedLanguageError: Unknown language or no candidate installed
        """
        lang = self.normalize_language(language)
        candidates = self.interpreters.get(lang)
        if not candidates:
            raise UnsupportedLanguageError(language)
        interpreter = self.launcher.first_available(candidates)
        if interpreter is None:
            raise UnsupportedLanguageError(language, "no interpreter installed")
        return interpreter

    def resolve_compiler(self, language: str) -> str:
        lang = self.normalize_language(language)
        candidates = self.compilers.get(lang)
        if not candidates:
            raise UnsupportedLanguageError(language, "not a compiled language")
        compiler = self.launcher.first_available(candidates)
        if compiler is None:
            raise UnsupportedLanguageError(language, "no compiler installed")
        return compiler

    def available_languages(self) -> dict[str, bool]:
        """Which known languages currently resolve to an installed tool."""
        languages: dict[str, bool] = {}
        for lang, candidates in {**self.interpreters, **self.compilers}.items():
            languages[lang] = self.launcher.first_available(candidates) is not None
        return languages

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def _next_stamp(self) -> int:
        self._last_stamp = max(time.time_ns(), self._last_stamp + 1)
        return self._last_stamp

    async def execute(
        self,
        session_id: str,
        language: str,
        code: str | None = None,
        filepath: str | None = None,
    ) -> ExecutionResult:
        """Run code (or a saved workspace file) and return its captured output.

        Raises:
            InvalidSessionError: Session id is empty or unsafe
            UnsupportedLanguageError: No interpreter/compiler resolves; nothing is spawned
            AccessDeniedError: filepath escapes the workspace
            WorkspaceFileNotFoundError: filepath does not exist
            ExecutionSpawnError: The process could not be started
        """
        lang = self.normalize_language(language)
        compiled = lang in self.compilers
        tool = self.resolve_compiler(lang) if compiled else self.resolve_interpreter(lang)

        if filepath is None and code is None:
            raise AppException(ErrorCode.VALIDATION_MISSING_FIELD, "Either code or filepath is required")

        workspace = await self.registry.get_or_create_workspace(session_id)
        temp_files: list[Path] = []
        try:
            if filepath is not None:
                source = resolve_workspace_path(filepath, workspace)
                if not source.is_file():
                    raise WorkspaceFileNotFoundError(filepath)
            else:
                source = workspace / f"{TEMP_SCRIPT_PREFIX}{self._next_stamp()}{LANGUAGE_EXTENSIONS.get(lang, '')}"
                temp_files.append(source)
                await write_temp_script(source, code or "")

            if compiled:
                binary = workspace / f"{TEMP_BINARY_PREFIX}{self._next_stamp()}"
                temp_files.append(binary)
                result = await self._run(session_id, tool, [source, "-o", binary], workspace)
                if result.success:
                    result = await self._run(session_id, self.launcher.inner_path(binary), [], workspace)
                elif not result.timed_out:
                    result.error = "Compilation failed"
            else:
                result = await self._run(session_id, tool, [source], workspace)
        finally:
            for temp in temp_files:
                try:
                    await asyncio.to_thread(temp.unlink, missing_ok=True)
                except OSError as e:
                    logger.warning(f"Failed to remove temporary file {temp.name}: {e}", session_id=session_id)

        logger.log_execution(
            session_id=session_id,
            language=lang,
            exit_code=result.exit_code,
            timed_out=result.timed_out,
            duration_ms=result.execution_time_ms,
            code=code if filepath is None else None,
            filepath=filepath,
        )
        return result

    async def compile(self, session_id: str, filepath: str, language: str) -> CompileResult:
        """Compile a workspace file to a binary beside it (same name, no extension)."""
        compiler = self.resolve_compiler(language)
        workspace = await self.registry.get_or_create_workspace(session_id)

        source = resolve_workspace_path(filepath, workspace)
        if not source.is_file():
            raise WorkspaceFileNotFoundError(filepath)
        output = source.with_suffix("")
        if output == source:
            output = source.with_name(f"{source.name}.out")

        result = await self._run(session_id, compiler, [source, "-o", output], workspace)
        if result.success:
            output_path = relative_to_workspace(output, workspace)
            logger.info(f"Compiled {filepath} -> {output_path}", session_id=session_id)
            return CompileResult(success=True, output_path=output_path)

        return CompileResult(
            success=False,
            stdout=result.stdout,
            stderr=result.stderr,
            exit_code=result.exit_code,
            timed_out=result.timed_out,
            error=result.error or "Compilation failed",
        )

    async def shutdown(self) -> None:
        """Kill every in-flight execution."""
        processes = self.registry.all_executions()
        if processes:
            logger.info(f"Killing {len(processes)} in-flight execution(s)")
        for process in processes:
            signal_process_group(process, self.launcher.stop_signal)

    # ------------------------------------------------------------------
    # Process supervision
    # ------------------------------------------------------------------

    async def _drain(self, stream: asyncio.StreamReader | None, buffer: _CappedBuffer) -> None:
        if stream is None:
            return
        while chunk := await stream.read(PIPE_READ_CHUNK_SIZE):
            buffer.append(chunk)

    async def _run(
        self,
        session_id: str,
        command: str,
        args: Sequence[str | Path],
        workspace: Path,
    ) -> ExecutionResult:
        argv = self.launcher.build_command(
            command, args, cwd=workspace, timeout=self.timeout, kill_grace=self.kill_grace
        )
        stop = self.launcher.stop_signal
        loop = asyncio.get_running_loop()
        start = time.monotonic()

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(workspace),
                start_new_session=True,
            )
        except OSError as e:
            logger.error(f"Failed to start {command}: {e}", session_id=session_id)
            raise ExecutionSpawnError(command, cause=e) from e

        await self.registry.track_execution(session_id, process)
        stdout = _CappedBuffer(self.max_output_size)
        stderr = _CappedBuffer(self.max_output_size)
        readers = [
            asyncio.create_task(self._drain(process.stdout, stdout)),
            asyncio.create_task(self._drain(process.stderr, stderr)),
        ]
        watchdog: asyncio.TimerHandle | None = None
        timed_out = False

        try:
            try:
                await asyncio.wait_for(process.wait(), timeout=self.timeout)
            except asyncio.TimeoutError:
                timed_out = True
                logger.warning(
                    f"[{ErrorCode.EXEC_TIMEOUT.value}] Execution exceeded {self.timeout:g}s, "
                    f"stopping process group {process.pid}",
                    session_id=session_id,
                    error_code=ErrorCode.EXEC_TIMEOUT.value,
                )
                signal_process_group(process, stop)
                # Watchdog: one more stop after the grace period, skipped once reaped
                watchdog = loop.call_later(self.kill_grace, _watchdog, process, stop)
                with contextlib.suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(process.wait(), timeout=self.kill_grace)

            _, pending = await asyncio.wait(readers, timeout=self.kill_grace)
            if pending:
                # Stragglers in the group still hold the pipes, so the group id is still theirs
                signal_process_group(process, stop)
                await asyncio.wait(pending, timeout=self.kill_grace)
        finally:
            if process.returncode is None:
                signal_process_group(process, stop)
            elif watchdog is not None:
                watchdog.cancel()
            for task in readers:
                if not task.done():
                    task.cancel()
            await self.registry.untrack_execution(session_id, process)

        elapsed_ms = (time.monotonic() - start) * 1000
        return ExecutionResult(
            stdout=stdout.text(),
            stderr=stderr.text(),
            exit_code=None if timed_out else process.returncode,
            timed_out=timed_out,
            execution_time_ms=elapsed_ms,
            error=ERROR_EXECUTION_TIMEOUT.format(timeout=self.timeout) if timed_out else None,
        )


__all__ = ["CompileResult", "ExecutionDispatcher", "ExecutionResult", "signal_process_group"]
