"""
Session registry: the single owner of session state.

Maps a session id to its workspace directory, its live terminal (at most one)
and its in-flight execution processes. All mutation happens through the
registry's async methods on the event loop. An entry lives only while a
terminal or an execution is attached; workspace directories outlive it.
"""

from __future__ import annotations

import asyncio
import re

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from core.constants import (
    ERROR_SESSION_ID_INVALID,
    ERROR_SESSION_ID_REQUIRED,
    SESSION_ID_PATTERN,
)
from core.exceptions import InvalidSessionError
from utils.logger import logger

if TYPE_CHECKING:
    from asyncio.subprocess import Process

    from core.terminal import TerminalHandle

_SESSION_ID_RE = re.compile(SESSION_ID_PATTERN)


def validate_session_id(session_id: str | None) -> str:
    """Return session_id if it can safely name a workspace directory.

    Raises:
        InvalidSessionError: If the id is empty or not a single safe path component
    """
    if not session_id:
        raise InvalidSessionError(ERROR_SESSION_ID_REQUIRED)
    if session_id in (".", "..") or not _SESSION_ID_RE.match(session_id):
        raise InvalidSessionError(ERROR_SESSION_ID_INVALID, session_id=session_id)
    return session_id


@dataclass
class Session:
    """State tracked for one session."""

    session_id: str
    workspace: Path
    terminal: TerminalHandle | None = None
    executions: set[Process] = field(default_factory=set)

    @property
    def idle(self) -> bool:
        return self.terminal is None and not self.executions


@dataclass
class _KeyedLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class SessionRegistry:
    """Owns the session id to workspace/terminal/executions mapping."""

    def __init__(self, workspaces_root: Path, workspace_mode: int = 0o777) -> None:
        self.workspaces_root = workspaces_root
        self.workspace_mode = workspace_mode
        self._sessions: dict[str, Session] = {}
        self._lock = asyncio.Lock()
        self._session_locks: dict[str, _KeyedLock] = {}

    def workspace_path(self, session_id: str) -> Path:
        """Workspace directory for a session (not created)."""
        return self.workspaces_root / validate_session_id(session_id)

    def _create_workspace(self, workspace: Path) -> None:
        workspace.mkdir(parents=True, exist_ok=True)
        # mkdir applies the umask; guest processes run as a different uid
        workspace.chmod(self.workspace_mode)

    async def get_or_create_workspace(self, session_id: str) -> Path:
        """Return the session's workspace, creating the directory tree if absent.

        Idempotent and never deletes existing content. Only the directory is
        created; a session entry exists while a terminal or an execution is
        attached to it.

        Raises:
            InvalidSessionError: If the session id is empty or unsafe
        """
        workspace = self.workspace_path(session_id)
        if not workspace.is_dir():
            await asyncio.to_thread(self._create_workspace, workspace)
            logger.info(f"Workspace created for session {session_id}", session_id=session_id)
        return workspace

    def _entry(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            session = Session(session_id=session_id, workspace=self.workspace_path(session_id))
            self._sessions[session_id] = session
        return session

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    @asynccontextmanager
    async def session_lock(self, session_id: str) -> AsyncIterator[None]:
        """Hold the per-session lock serializing terminal creation.

        The lock stays registered while anyone holds or waits for it, so two
        callers can never end up with different locks for one session.
        """
        keyed = self._session_locks.get(session_id)
        if keyed is None:
            keyed = self._session_locks[session_id] = _KeyedLock()
        keyed.users += 1
        try:
            async with keyed.lock:
                yield
        finally:
            keyed.users -= 1
            if keyed.users == 0 and self._session_locks.get(session_id) is keyed:
                del self._session_locks[session_id]

    @property
    def lock_count(self) -> int:
        return len(self._session_locks)

    def terminal_for(self, session_id: str) -> TerminalHandle | None:
        session = self._sessions.get(session_id)
        return session.terminal if session else None

    def find_terminal(self, term_id: str) -> TerminalHandle | None:
        """Look up a live terminal by its id."""
        for session in self._sessions.values():
            if session.terminal is not None and session.terminal.term_id == term_id:
                return session.terminal
        return None

    def all_terminals(self) -> list[TerminalHandle]:
        return [s.terminal for s in self._sessions.values() if s.terminal is not None]

    def all_executions(self) -> list[Process]:
        return [proc for s in self._sessions.values() for proc in s.executions]

    async def attach_terminal(self, session_id: str, handle: TerminalHandle) -> None:
        """Bind a terminal to its session; a session holds at most one."""
        await self.get_or_create_workspace(session_id)
        async with self._lock:
            session = self._entry(session_id)
            if session.terminal is not None and session.terminal is not handle:
                raise RuntimeError(f"Session {session_id} already has terminal {session.terminal.term_id}")
            session.terminal = handle

    async def detach_terminal(self, session_id: str, handle: TerminalHandle) -> bool:
        """Unbind an exited terminal, dropping the session entry once it is idle.

        Returns:
            True if handle was the session's terminal
        """
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None or session.terminal is not handle:
                return False
            session.terminal = None
            if session.idle:
                del self._sessions[session_id]
            return True

    async def track_execution(self, session_id: str, process: Process) -> None:
        await self.get_or_create_workspace(session_id)
        async with self._lock:
            session = self._entry(session_id)
            session.executions.add(process)

    async def untrack_execution(self, session_id: str, process: Process) -> None:
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return
            session.executions.discard(process)
            if session.idle:
                del self._sessions[session_id]

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    def get_stats(self) -> dict[str, Any]:
        """Get registry statistics."""
        return {
            "sessions": self.session_count,
            "terminals": len(self.all_terminals()),
            "executions": len(self.all_executions()),
        }


__all__ = ["Session", "SessionRegistry", "validate_session_id"]
