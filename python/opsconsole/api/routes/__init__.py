"""API route definitions.

Uses a factory pattern to avoid import-time settings loading.
This allows tests to import modules without requiring all environment
variables to be configured upfront.
"""

from fastapi import APIRouter

from opsconsole.api.routes.cosmos import router as cosmos_router
from opsconsole.api.routes.health import router as health_router
from opsconsole.api.routes.sessions import router as sessions_router
from opsconsole.api.routes.topics import router as topics_router


def create_api_router() -> APIRouter:
    """Create and configure the API router.

    Returns:
        Configured APIRouter with all routes registered.
    """
    api_router = APIRouter()
    api_router.include_router(health_router, tags=["health"])
    api_router.include_router(cosmos_router, tags=["cosmos"])
    api_router.include_router(topics_router, tags=["topics"])
    api_router.include_router(sessions_router, tags=["sessions"])
    return api_router


__all__ = ["create_api_router"]
