from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from api.services.workspace_files import WorkspaceFileService
from api.websocket.manager import WebSocketManager
from core.constants import Settings, get_settings
from core.execution import ExecutionDispatcher
from core.session_registry import SessionRegistry
from core.terminal import TerminalMultiplexer
from sandbox.launcher import SandboxLauncher


def get_app_settings() -> Settings:
    """Provide application settings via dependency injection.

    Settings are validated at startup and cached.

    Usage in routes:
        @router.get("/example")
        async def example(settings: AppSettings):
            return {"debug": settings.debug}
    """
    return get_settings()


def get_registry(request: Request) -> SessionRegistry:
    """Get the session registry from application state."""
    return request.app.state.registry


def get_launcher(request: Request) -> SandboxLauncher:
    return request.app.state.launcher


def get_dispatcher(request: Request) -> ExecutionDispatcher:
    """Get the execution dispatcher from application state."""
    return request.app.state.dispatcher


def get_terminals(request: Request) -> TerminalMultiplexer:
    return request.app.state.terminals


def get_ws_manager(request: Request) -> WebSocketManager:
    """Get WebSocket manager from application state."""
    return request.app.state.ws_manager


def get_file_service(
    registry: Annotated[SessionRegistry, Depends(get_registry)],
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> WorkspaceFileService:
    """Provide the workspace file service bound to the session registry."""
    return WorkspaceFileService(registry, max_file_size=settings.max_file_size)


# Type aliases for cleaner route signatures
AppSettings = Annotated[Settings, Depends(get_app_settings)]
Registry = Annotated[SessionRegistry, Depends(get_registry)]
Launcher = Annotated[SandboxLauncher, Depends(get_launcher)]
Dispatcher = Annotated[ExecutionDispatcher, Depends(get_dispatcher)]
Terminals = Annotated[TerminalMultiplexer, Depends(get_terminals)]
WSManager = Annotated[WebSocketManager, Depends(get_ws_manager)]
Files = Annotated[WorkspaceFileService, Depends(get_file_service)]
