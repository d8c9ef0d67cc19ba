"""
API v1 Router - Aggregates all v1 endpoints.

Usage in main.py:
    from api.routes.v1 import router as v1_router
    app.include_router(v1_router, prefix="/api/v1")
"""

from fastapi import APIRouter

from api.routes.v1 import execution, files, health

# Create the v1 API router
router = APIRouter()

# Health endpoints
router.include_router(
    health.router,
    tags=["Health"],
)

# Workspace files (nested under sessions)
router.include_router(
    files.router,
    prefix="/sessions",
    tags=["Files"],
)

# Code execution (nested under sessions)
router.include_router(
    execution.router,
    prefix="/sessions",
    tags=["Execution"],
)

__all__ = ["router"]
