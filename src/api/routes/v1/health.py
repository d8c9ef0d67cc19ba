"""
Health, readiness and liveness probes.

Overall status: unhealthy while channels are draining for shutdown, degraded
when no language toolchain was found, healthy otherwise.
"""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from api.dependencies import AppSettings, Dispatcher, Registry, WSManager
from core.constants import APP_VERSION
from models.schemas.health import (
    HealthResponse,
    LivenessResponse,
    ReadinessResponse,
    SandboxHealth,
    SessionHealth,
    WebSocketHealth,
)

router = APIRouter()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Channel, session and sandbox status.",
    tags=["Health"],
)
async def health_check(
    settings: AppSettings,
    ws_manager: WSManager,
    registry: Registry,
    dispatcher: Dispatcher,
) -> HealthResponse:
    ws_health = WebSocketHealth(
        active_connections=ws_manager.connection_count,
        active_sessions=ws_manager.session_count,
        shutting_down=ws_manager.shutting_down,
    )

    stats = registry.get_stats()
    session_health = SessionHealth(
        sessions=stats["sessions"],
        terminals=stats["terminals"],
        executions=stats["executions"],
    )

    sandbox_health = SandboxHealth(
        enabled=settings.sandbox_enabled,
        rootfs=str(settings.sandbox_rootfs),
        languages=dispatcher.available_languages(),
    )

    if ws_health.shutting_down:
        status = "unhealthy"
    elif not any(sandbox_health.languages.values()):
        status = "degraded"
    else:
        status = "healthy"

    return HealthResponse(
        status=status,
        version=APP_VERSION,
        websocket=ws_health,
        sessions=session_health,
        sandbox=sandbox_health,
    )


@router.get(
    "/health/ready",
    response_model=ReadinessResponse,
    summary="Readiness probe",
    description="Ready when the workspaces directory is usable and the server is not shutting down.",
    responses={503: {"description": "Service not ready"}},
    tags=["Health"],
)
async def readiness_check(ws_manager: WSManager, registry: Registry) -> ReadinessResponse | JSONResponse:
    error = None
    if ws_manager.shutting_down:
        error = "Server is shutting down"
    elif not registry.workspaces_root.is_dir():
        error = f"Workspaces directory missing: {registry.workspaces_root}"

    if error:
        return JSONResponse(status_code=503, content=ReadinessResponse(ready=False, error=error).model_dump())
    return ReadinessResponse(ready=True)


@router.get(
    "/health/live",
    response_model=LivenessResponse,
    summary="Liveness probe",
    tags=["Health"],
)
async def liveness_check() -> LivenessResponse:
    """The process answers; nothing else is checked."""
    return LivenessResponse(alive=True)
