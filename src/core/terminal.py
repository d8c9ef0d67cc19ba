"""
Terminal multiplexer: one interactive pty shell per session.

Shell output is read from the pty master by an event loop reader callback,
queued, and drained by a single pump task per terminal, so chunks reach the
session channel in production order. Keystrokes are written back to the pty
master under a per-terminal lock.
"""

from __future__ import annotations

import asyncio
import codecs
import contextlib
import fcntl
import os
import secrets
import signal
import struct
import subprocess
import termios
import time

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from core.constants import (
    MSG_TYPE_TERMINAL_CREATED,
    MSG_TYPE_TERMINAL_EXIT,
    MSG_TYPE_TERMINAL_OUTPUT,
    PTY_READ_CHUNK_SIZE,
    TERMINAL_FALLBACK_SHELLS,
    TERMINAL_ID_PREFIX,
    TERMINAL_KILL_GRACE,
    TERMINAL_TERM,
)
from core.exceptions import TerminalSpawnError
from core.session_registry import SessionRegistry
from sandbox.launcher import SandboxLauncher
from utils.logger import logger

#: Delivers one JSON message to every channel bound to a session
Emitter = Callable[[str, dict[str, Any]], Awaitable[None]]

# Output still buffered in the pty after the shell exits gets this long to drain
EXIT_DRAIN_DELAY = 0.2


class TerminalState(str, Enum):
    """Lifecycle of a session terminal."""

    NONE = "none"
    STARTING = "starting"
    RUNNING = "running"
    EXITED = "exited"


@dataclass
class TerminalHandle:
    """A live shell process attached to a pty."""

    term_id: str
    session_id: str
    process: asyncio.subprocess.Process
    master_fd: int
    cols: int
    rows: int
    state: TerminalState = TerminalState.STARTING
    created_at: float = field(default_factory=time.time)
    exit_code: int | None = None
    output: asyncio.Queue[bytes | None] = field(default_factory=asyncio.Queue)
    write_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    closed: asyncio.Event = field(default_factory=asyncio.Event)
    tasks: set[asyncio.Task[Any]] = field(default_factory=set)

    @property
    def pid(self) -> int:
        return self.process.pid

    def to_dict(self) -> dict[str, Any]:
        return {
            "termId": self.term_id,
            "sessionId": self.session_id,
            "pid": self.pid,
            "state": self.state.value,
            "cols": self.cols,
            "rows": self.rows,
        }


def generate_terminal_id() -> str:
    return f"{TERMINAL_ID_PREFIX}{secrets.token_hex(8)}"


def set_window_size(fd: int, cols: int, rows: int) -> None:
    """Apply a terminal size to a pty; the kernel signals SIGWINCH to the foreground job."""
    fcntl.ioctl(fd, termios.TIOCSWINSZ, struct.pack("HHHH", rows, cols, 0, 0))


def _acquire_controlling_tty() -> None:
    # Runs in the child after setsid(); stdin is the pty slave
    fcntl.ioctl(0, termios.TIOCSCTTY, 0)


def _signal_group(process: asyncio.subprocess.Process, sig: signal.Signals) -> None:
    """Signal the process group led by process, falling back to the process itself."""
    try:
        os.killpg(process.pid, sig)
    except ProcessLookupError:
        return
    except PermissionError:
        with contextlib.suppress(ProcessLookupError, PermissionError):
            process.send_signal(sig)


class TerminalMultiplexer:
    """Spawn and drive one interactive shell per session."""

    def __init__(
        self,
        registry: SessionRegistry,
        emit: Emitter,
        launcher: SandboxLauncher,
        shell: str = "/bin/bash",
        cols: int = 80,
        rows: int = 24,
        kill_grace: float = TERMINAL_KILL_GRACE,
    ) -> None:
        self.registry = registry
        self.emit = emit
        self.launcher = launcher
        self.shell = shell
        self.cols = cols
        self.rows = rows
        self.kill_grace = kill_grace

    def state(self, session_id: str) -> TerminalState:
        handle = self.registry.terminal_for(session_id)
        return handle.state if handle is not None else TerminalState.NONE

    def resolve_shell(self) -> str:
        """Configured shell, or the first fallback available to the guest."""
        shell = self.launcher.first_available((self.shell, *TERMINAL_FALLBACK_SHELLS))
        return shell or self.shell

    async def create(self, session_id: str) -> TerminalHandle:
        """Return the session's running terminal, spawning a shell if there is none.

        Emits terminal-created on the session channel either way.

        Raises:
            InvalidSessionError: If the session id is empty or unsafe
            TerminalSpawnError: If the shell could not be started
        """
        workspace = await self.registry.get_or_create_workspace(session_id)

        async with self.registry.session_lock(session_id):
            existing = self.registry.terminal_for(session_id)
            if existing is not None and existing.state is not TerminalState.RUNNING:
                # Previous shell is exiting; let it report before replacing it
                with contextlib.suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(existing.closed.wait(), timeout=self.kill_grace * 2)
                await self.registry.detach_terminal(session_id, existing)
                existing = self.registry.terminal_for(session_id)

            if existing is not None and existing.state is TerminalState.RUNNING:
                handle = existing
            else:
                handle = await self._spawn(session_id, workspace)
                try:
                    await self.registry.attach_terminal(session_id, handle)
                except RuntimeError as e:
                    await self._discard(handle)
                    raise TerminalSpawnError(session_id, cause=e) from e
                self._start_relay(handle)
                logger.info(
                    f"Terminal {handle.term_id} started for session {session_id} (pid {handle.pid})",
                    session_id=session_id,
                )

        await self._safe_emit(
            session_id,
            {"type": MSG_TYPE_TERMINAL_CREATED, "termId": handle.term_id, "sessionId": session_id},
        )
        return handle

    async def _spawn(self, session_id: str, workspace: Path) -> TerminalHandle:
        master_fd, slave_fd = os.openpty()
        try:
            set_window_size(master_fd, self.cols, self.rows)
            argv = self.launcher.build_command(self.resolve_shell(), ["-i"], cwd=workspace, limit_cpu=False)
            env = {**os.environ, "TERM": TERMINAL_TERM}
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                cwd=str(workspace),
                env=env,
                start_new_session=True,
                preexec_fn=_acquire_controlling_tty,
            )
        except (OSError, subprocess.SubprocessError) as e:
            os.close(master_fd)
            os.close(slave_fd)
            logger.error(f"Failed to start terminal for session {session_id}: {e}", session_id=session_id)
            raise TerminalSpawnError(session_id, cause=e) from e

        # The child holds its own copy; EOF on the master requires every slave copy closed
        os.close(slave_fd)
        os.set_blocking(master_fd, False)

        return TerminalHandle(
            term_id=generate_terminal_id(),
            session_id=session_id,
            process=process,
            master_fd=master_fd,
            cols=self.cols,
            rows=self.rows,
        )

    async def _discard(self, handle: TerminalHandle) -> None:
        """Kill a shell that was spawned but never attached, and release its pty."""
        _signal_group(handle.process, self.launcher.stop_signal)
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(handle.process.wait(), timeout=self.kill_grace)
        with contextlib.suppress(OSError):
            os.close(handle.master_fd)
        logger.warning(f"Discarded unattached terminal {handle.term_id}", session_id=handle.session_id)

    def _start_relay(self, handle: TerminalHandle) -> None:
        loop = asyncio.get_running_loop()
        loop.add_reader(handle.master_fd, self._on_readable, handle)
        handle.state = TerminalState.RUNNING
        for coro in (self._pump(handle), self._watch_exit(handle)):
            task = asyncio.create_task(coro)
            handle.tasks.add(task)
            task.add_done_callback(handle.tasks.discard)

    def _on_readable(self, handle: TerminalHandle) -> None:
        try:
            data = os.read(handle.master_fd, PTY_READ_CHUNK_SIZE)
        except BlockingIOError:
            return
        except OSError:
            # EIO once the last slave descriptor is closed
            data = b""

        if data:
            handle.output.put_nowait(data)
            return

        with contextlib.suppress(ValueError, OSError):
            asyncio.get_running_loop().remove_reader(handle.master_fd)
        handle.output.put_nowait(None)

    async def _watch_exit(self, handle: TerminalHandle) -> None:
        """End the relay when the shell exits, even if a background job keeps the pty open."""
        await handle.process.wait()
        await asyncio.sleep(EXIT_DRAIN_DELAY)
        handle.output.put_nowait(None)

    async def _pump(self, handle: TerminalHandle) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            while True:
                chunk = await handle.output.get()
                if chunk is None:
                    break
                text = decoder.decode(chunk)
                if text:
                    await self._emit_output(handle, text)
            tail = decoder.decode(b"", final=True)
            if tail:
                await self._emit_output(handle, tail)
        finally:
            await self._finalize(handle)

    async def _emit_output(self, handle: TerminalHandle, text: str) -> None:
        await self._safe_emit(
            handle.session_id,
            {"type": MSG_TYPE_TERMINAL_OUTPUT, "termId": handle.term_id, "data": text},
        )

    async def _finalize(self, handle: TerminalHandle) -> None:
        """Reap the shell, release the pty and report the exit exactly once."""
        if handle.state is TerminalState.EXITED:
            return
        handle.state = TerminalState.EXITED

        with contextlib.suppress(ValueError, OSError):
            asyncio.get_running_loop().remove_reader(handle.master_fd)

        try:
            await asyncio.wait_for(handle.process.wait(), timeout=self.kill_grace)
        except asyncio.TimeoutError:
            _signal_group(handle.process, self.launcher.stop_signal)
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(handle.process.wait(), timeout=self.kill_grace)
        handle.exit_code = handle.process.returncode

        with contextlib.suppress(OSError):
            os.close(handle.master_fd)

        await self.registry.detach_terminal(handle.session_id, handle)
        logger.info(
            f"Terminal {handle.term_id} exited with code {handle.exit_code}",
            session_id=handle.session_id,
        )
        try:
            await self._safe_emit(
                handle.session_id,
                {"type": MSG_TYPE_TERMINAL_EXIT, "termId": handle.term_id, "exitCode": handle.exit_code},
            )
        finally:
            handle.closed.set()

    async def _safe_emit(self, session_id: str, message: dict[str, Any]) -> None:
        try:
            await self.emit(session_id, message)
        except Exception as e:
            # A dead channel must not take the terminal down with it
            logger.warning(f"Failed to deliver {message.get('type')} to session {session_id}: {e}")

    async def input(self, term_id: str, data: str | bytes, session_id: str | None = None) -> bool:
        """Forward input verbatim to a live terminal.

        Unknown terminals, exited terminals and terminals owned by a different
        session are ignored. Never raises.

        Returns:
            True if the input was written
        """
        handle = self.registry.find_terminal(term_id)
        if handle is None or handle.state is not TerminalState.RUNNING:
            logger.debug(f"Dropping input for unknown terminal {term_id}")
            return False
        if session_id is not None and handle.session_id != session_id:
            logger.warning(f"Dropping input for terminal {term_id} from session {session_id}")
            return False

        payload = data.encode("utf-8") if isinstance(data, str) else data
        async with handle.write_lock:
            try:
                await self._write_all(handle.master_fd, payload)
            except OSError as e:
                logger.debug(f"Write to terminal {term_id} failed: {e}")
                return False
        return True

    async def _write_all(self, fd: int, payload: bytes) -> None:
        view = memoryview(payload)
        while view:
            try:
                written = os.write(fd, view)
            except BlockingIOError:
                await self._wait_writable(fd)
                continue
            view = view[written:]

    async def _wait_writable(self, fd: int) -> None:
        loop = asyncio.get_running_loop()
        ready = loop.create_future()

        def _ready() -> None:
            if not ready.done():
                ready.set_result(None)

        loop.add_writer(fd, _ready)
        try:
            await ready
        finally:
            loop.remove_writer(fd)

    def resize(self, term_id: str, cols: int, rows: int, session_id: str | None = None) -> bool:
        """Resize a live terminal. Unknown terminals and non-positive sizes are ignored."""
        if cols <= 0 or rows <= 0:
            return False
        handle = self.registry.find_terminal(term_id)
        if handle is None or handle.state is not TerminalState.RUNNING:
            return False
        if session_id is not None and handle.session_id != session_id:
            return False
        try:
            set_window_size(handle.master_fd, cols, rows)
        except OSError as e:
            logger.debug(f"Resize of terminal {term_id} failed: {e}")
            return False
        handle.cols, handle.rows = cols, rows
        return True

    async def close(self, session_id: str) -> None:
        """Hang up a session's terminal, escalating to a kill after the grace period."""
        handle = self.registry.terminal_for(session_id)
        if handle is None:
            return
        await self._hangup(handle)

    async def _hangup(self, handle: TerminalHandle) -> None:
        if handle.process.returncode is None:
            _signal_group(handle.process, signal.SIGHUP)
            try:
                await asyncio.wait_for(handle.process.wait(), timeout=self.kill_grace)
            except asyncio.TimeoutError:
                _signal_group(handle.process, self.launcher.stop_signal)
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(handle.closed.wait(), timeout=self.kill_grace * 2)
        if not handle.closed.is_set():
            # The pump never observed the exit; end the relay explicitly
            handle.output.put_nowait(None)
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(handle.closed.wait(), timeout=self.kill_grace)

    async def shutdown(self) -> None:
        """Close every live terminal."""
        handles = self.registry.all_terminals()
        if not handles:
            return
        logger.info(f"Closing {len(handles)} terminal(s)")
        await asyncio.gather(*(self._hangup(h) for h in handles), return_exceptions=True)


__all__ = [
    "Emitter",
    "TerminalHandle",
    "TerminalMultiplexer",
    "TerminalState",
    "generate_terminal_id",
    "set_window_size",
]
