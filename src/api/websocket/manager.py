"""
Registry of open session channels.

Several browser tabs may share one session; every terminal-output frame for
that session is fanned out to all of them. Each channel carries its own send
lock so fan-out, keepalive pings and direct replies never interleave on the
same socket.
"""

from __future__ import annotations

import asyncio
import contextlib
import time

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from fastapi import WebSocket

from utils.logger import logger

#: Called with a session id once its last channel is gone
SessionEmptyCallback = Callable[[str], Awaitable[None]]

IDLE_CLOSE_CODE = 4000
SHUTDOWN_CLOSE_CODE = 1001
SHUTDOWN_NOTICE = {"type": "server_shutdown", "message": "Server is shutting down"}


@dataclass
class _ChannelState:
    session_id: str
    last_activity: float = field(default_factory=time.monotonic)
    send_lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class WebSocketManager:
    """Connection limits, idle expiry and per-session fan-out for channels."""

    def __init__(
        self,
        idle_timeout_seconds: float = 600.0,
        max_connections: int = 100,
        max_connections_per_session: int = 3,
        on_session_empty: SessionEmptyCallback | None = None,
    ) -> None:
        self.connections: dict[str, set[WebSocket]] = {}
        self.idle_timeout = idle_timeout_seconds
        self.max_connections = max_connections
        self.max_connections_per_session = max_connections_per_session
        self.on_session_empty = on_session_empty
        self._channels: dict[WebSocket, _ChannelState] = {}
        self._lock = asyncio.Lock()
        self._idle_checker_task: asyncio.Task[None] | None = None
        self._shutting_down = False

    @property
    def connection_count(self) -> int:
        return len(self._channels)

    @property
    def session_count(self) -> int:
        return len(self.connections)

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def has_connections(self, session_id: str) -> bool:
        return bool(self.connections.get(session_id))

    def _rejection_reason(self, session_id: str) -> str | None:
        if self._shutting_down:
            return "server is shutting down"
        if self.connection_count >= self.max_connections:
            return f"max connections ({self.max_connections}) reached"
        if len(self.connections.get(session_id, ())) >= self.max_connections_per_session:
            return f"session at limit ({self.max_connections_per_session})"
        return None

    async def connect(self, websocket: WebSocket, session_id: str) -> bool:
        """Accept the socket and bind it to session_id.

        Returns False without accepting when a limit is hit or the server is
        shutting down; the caller closes the socket.
        """
        async with self._lock:
            reason = self._rejection_reason(session_id)
            if reason:
                logger.warning(f"Rejecting channel: {reason}", session_id=session_id)
                return False

            await websocket.accept()
            self._channels[websocket] = _ChannelState(session_id=session_id)
            self.connections.setdefault(session_id, set()).add(websocket)

        logger.info(
            f"Channel connected (total: {self.connection_count}, "
            f"session: {len(self.connections.get(session_id, ()))})",
            session_id=session_id,
        )
        return True

    async def disconnect(self, websocket: WebSocket, session_id: str) -> None:
        """Drop a channel. Unknown sockets are ignored.

        When the session loses its last channel, on_session_empty runs,
        except during shutdown where the lifespan owns cleanup.
        """
        async with self._lock:
            self._channels.pop(websocket, None)
            bound = self.connections.get(session_id)
            if bound is None or websocket not in bound:
                return
            bound.discard(websocket)
            emptied = not bound
            if emptied:
                del self.connections[session_id]

        if not emptied or self.on_session_empty is None or self._shutting_down:
            return
        try:
            await self.on_session_empty(session_id)
        except Exception as e:
            logger.error(f"Session cleanup failed: {e}", exc_info=True, session_id=session_id)

    async def touch(self, websocket: WebSocket) -> None:
        state = self._channels.get(websocket)
        if state is not None:
            state.last_activity = time.monotonic()

    async def _deliver(self, websocket: WebSocket, message: dict[str, Any]) -> bool:
        state = self._channels.get(websocket)
        if state is None:
            return False
        try:
            async with state.send_lock:
                await websocket.send_json(message)
        except Exception as e:
            logger.debug(f"Send failed: {e}", session_id=state.session_id)
            return False
        return True

    async def send(self, session_id: str, message: dict[str, Any]) -> None:
        """Fan a frame out to every channel of a session.

        A channel that fails is disconnected; the others still get the frame.
        """
        for websocket in list(self.connections.get(session_id, ())):
            if websocket not in self._channels:
                continue
            if not await self._deliver(websocket, message):
                await self.disconnect(websocket, session_id)

    async def send_to(self, websocket: WebSocket, message: dict[str, Any]) -> bool:
        """Send to one registered channel; False if unknown or the send failed."""
        return await self._deliver(websocket, message)

    async def broadcast(self, message: dict[str, Any]) -> None:
        for session_id in list(self.connections):
            await self.send(session_id, message)

    async def start_idle_checker(self) -> None:
        if self._idle_checker_task is not None:
            return
        self._idle_checker_task = asyncio.create_task(self._idle_loop())
        logger.info(f"Channel idle checker started (timeout: {self.idle_timeout}s)")

    async def stop_idle_checker(self) -> None:
        task, self._idle_checker_task = self._idle_checker_task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Channel idle checker stopped")

    async def _idle_loop(self) -> None:
        interval = min(60.0, self.idle_timeout / 2)
        while True:
            await asyncio.sleep(interval)
            await self._close_idle_connections()

    async def _close_idle_connections(self) -> None:
        cutoff = time.monotonic() - self.idle_timeout
        async with self._lock:
            expired = [
                (websocket, state.session_id)
                for websocket, state in self._channels.items()
                if state.last_activity < cutoff
            ]

        for websocket, session_id in expired:
            logger.info("Closing idle channel", session_id=session_id)
            with contextlib.suppress(Exception):
                await websocket.close(code=IDLE_CLOSE_CODE, reason="Idle timeout")
            await self.disconnect(websocket, session_id)

    async def graceful_shutdown(self, timeout: float = 10.0) -> None:
        """Refuse new channels, tell every client, then close all sockets.

        Args:
            timeout: Upper bound on waiting for the closes to finish
        """
        self._shutting_down = True
        logger.info(f"Draining channels (timeout: {timeout}s)")

        await self.stop_idle_checker()
        await self.broadcast(SHUTDOWN_NOTICE)

        async with self._lock:
            remaining = [(websocket, state.session_id) for websocket, state in self._channels.items()]

        async def close_one(websocket: WebSocket, session_id: str) -> None:
            with contextlib.suppress(Exception):
                await websocket.close(code=SHUTDOWN_CLOSE_CODE, reason="Server shutdown")
            await self.disconnect(websocket, session_id)

        if remaining:
            try:
                await asyncio.wait_for(
                    asyncio.gather(*(close_one(ws, sid) for ws, sid in remaining)),
                    timeout=timeout,
                )
            except asyncio.TimeoutError:
                logger.warning(f"Timed out closing {len(remaining)} channels")

        logger.info(f"Channel drain complete ({len(remaining)} closed)")

    def get_stats(self) -> dict[str, Any]:
        return {
            "total_connections": self.connection_count,
            "total_sessions": self.session_count,
            "max_connections": self.max_connections,
            "max_per_session": self.max_connections_per_session,
            "idle_timeout": self.idle_timeout,
            "shutting_down": self._shutting_down,
        }
