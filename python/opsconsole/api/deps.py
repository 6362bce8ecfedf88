"""FastAPI dependencies for route handlers.

The gateway and the session registry are created once in the application
lifespan and read from app.state here.
"""

from typing import Annotated
from zoneinfo import ZoneInfo

from fastapi import Depends, Request

from opsconsole.config import Settings, get_settings
from opsconsole.gateway import RemoteGateway
from opsconsole.services.sessions import SessionRegistry

__all__ = ["get_display_zone", "get_gateway", "get_session_registry", "get_settings"]


def get_gateway(request: Request) -> RemoteGateway:
    """Get the shared RemoteGateway from app state.

    Args:
        request: The incoming request (provides access to app.state)

    Returns:
        The process-wide gateway.
    """
    return request.app.state.gateway


def get_session_registry(request: Request) -> SessionRegistry:
    """Get the registry of open browsing sessions from app state."""
    return request.app.state.sessions


def get_display_zone(settings: Annotated[Settings, Depends(get_settings)]) -> ZoneInfo:
    """Time zone used for display timestamps."""
    return settings.display_zone
