from __future__ import annotations

import argparse

from collections.abc import AsyncGenerator, Sequence
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.middleware.exception_handlers import register_exception_handlers
from api.middleware.request_context import RequestContextMiddleware
from api.middleware.request_limits import RequestSizeLimitMiddleware
from api.routes import terminal
from api.routes.v1 import router as v1_router
from api.websocket.manager import WebSocketManager
from core.constants import APP_VERSION, get_settings
from core.execution import ExecutionDispatcher
from core.session_registry import SessionRegistry
from core.terminal import TerminalMultiplexer
from sandbox.launcher import SandboxLauncher, verify_sandbox
from utils.logger import configure_uvicorn_logging, logger

settings = get_settings()

# uvicorn workers import this module, so their loggers are set up here
configure_uvicorn_logging()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build the session services on startup; drain channels, terminals and runs on exit."""
    # Refuse to serve sessions without a working sandbox
    verify_sandbox(settings)

    registry = SessionRegistry(settings.workspaces_root, workspace_mode=settings.workspace_mode)
    registry.workspaces_root.mkdir(parents=True, exist_ok=True)
    launcher = SandboxLauncher.from_settings(settings)

    async def on_session_empty(session_id: str) -> None:
        logger.info(f"Last channel gone, closing terminal for session {session_id}", session_id=session_id)
        await app.state.terminals.close(session_id)

    ws_manager = WebSocketManager(
        idle_timeout_seconds=settings.ws_idle_timeout,
        max_connections=settings.ws_max_connections,
        max_connections_per_session=settings.ws_max_connections_per_session,
        on_session_empty=on_session_empty if settings.terminal_close_on_disconnect else None,
    )

    app.state.registry = registry
    app.state.launcher = launcher
    app.state.ws_manager = ws_manager
    app.state.terminals = TerminalMultiplexer(
        registry,
        emit=ws_manager.send,
        launcher=launcher,
        shell=settings.terminal_shell,
        cols=settings.terminal_cols,
        rows=settings.terminal_rows,
    )
    app.state.dispatcher = ExecutionDispatcher(
        registry,
        launcher,
        timeout=settings.execution_timeout,
        kill_grace=settings.execution_kill_grace,
    )
    await ws_manager.start_idle_checker()

    logger.info(f"Sandbox IDE started (workspaces: {registry.workspaces_root})")

    try:
        yield
    finally:
        logger.info("Shutting down")

        # Phase 1: Stop accepting new channels and close existing ones
        await ws_manager.graceful_shutdown(timeout=settings.shutdown_connection_drain_timeout)

        # Phase 2: Hang up terminals
        await app.state.terminals.shutdown()

        # Phase 3: Kill in-flight executions
        await app.state.dispatcher.shutdown()

        logger.info("Shutdown complete")


app = FastAPI(
    title="Sandbox IDE API",
    description="""
## Sandbox IDE API

Backend for a browser IDE. Each session gets a private workspace, an
interactive shell and one-shot code execution, all confined to a sandbox.

### Features
- **Terminal**: One pty shell per session over the `/ws/terminal` channel
- **Execution**: Run Python, JavaScript, Bash, C and C++ with a hard timeout
- **Files**: List, read, save and delete workspace files

### Versioning
API uses URL path versioning: `/api/v1/...`
""",
    version=APP_VERSION,
    lifespan=lifespan,
    openapi_tags=[
        {
            "name": "Health",
            "description": "Liveness, readiness and service status",
        },
        {
            "name": "Files",
            "description": "Workspace file management",
        },
        {
            "name": "Execution",
            "description": "One-shot code execution and compilation",
        },
        {
            "name": "WebSocket",
            "description": "Interactive terminal channel",
        },
    ],
    openapi_url="/api/v1/openapi.json",
    docs_url="/api/v1/docs",
    redoc_url="/api/v1/redoc",
)

register_exception_handlers(app)

# Last added runs first: size limit, then CORS, then request context
app.add_middleware(RequestContextMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestSizeLimitMiddleware)

# Routes - API v1
app.include_router(v1_router, prefix="/api/v1")

# The channel is not versioned
app.include_router(terminal.router, prefix="/ws", tags=["WebSocket"])


def main(argv: Sequence[str] | None = None) -> None:
    """Run the API server with uvicorn."""
    import uvicorn

    parser = argparse.ArgumentParser(prog="sandbox-ide", description="Sandbox IDE backend server")
    parser.add_argument("--host", default=settings.api_host, help="Bind address")
    parser.add_argument("--port", type=int, default=settings.api_port, help="Listen port")
    parser.add_argument("--reload", action="store_true", help="Reload on source changes (development)")
    args = parser.parse_args(argv)

    uvicorn.run(
        "api.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_config=None,
    )


if __name__ == "__main__":
    main()
