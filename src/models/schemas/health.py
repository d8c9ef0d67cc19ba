"""
Health check API schemas.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class WebSocketHealth(BaseModel):
    """Session channel manager health."""

    active_connections: int = Field(default=0, ge=0, description="Open channels")
    active_sessions: int = Field(default=0, ge=0, description="Sessions with an open channel")
    shutting_down: bool = Field(default=False, description="Shutdown in progress")


class SessionHealth(BaseModel):
    """Session registry counters."""

    sessions: int = Field(default=0, ge=0, description="Tracked sessions")
    terminals: int = Field(default=0, ge=0, description="Live terminals")
    executions: int = Field(default=0, ge=0, description="In-flight executions")


class SandboxHealth(BaseModel):
    """Sandbox configuration and tool availability."""

    enabled: bool = Field(..., description="Guest processes run through the isolation helper")
    rootfs: str = Field(..., description="Sandbox root image")
    languages: dict[str, bool] = Field(default_factory=dict, description="Language to tool availability")


class HealthResponse(BaseModel):
    """Comprehensive health status."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "status": "healthy",
                "version": "1.0.0",
                "websocket": {"active_connections": 2, "active_sessions": 1, "shutting_down": False},
                "sessions": {"sessions": 1, "terminals": 1, "executions": 0},
                "sandbox": {"enabled": True, "rootfs": "/srv/rootfs", "languages": {"python": True}},
            }
        }
    )

    status: Literal["healthy", "degraded", "unhealthy"] = Field(..., description="Overall status")
    version: str = Field(..., description="Application version")
    websocket: WebSocketHealth | None = None
    sessions: SessionHealth | None = None
    sandbox: SandboxHealth | None = None


class ReadinessResponse(BaseModel):
    """Readiness probe result."""

    ready: bool = Field(..., description="Service can accept sessions")
    error: str | None = Field(default=None, description="Why the service is not ready")


class LivenessResponse(BaseModel):
    """Liveness probe result."""

    alive: bool = Field(default=True, description="Process is running")
