"""API module - cross-domain FastAPI routes."""

from .routes_notifications import router as notifications_router
from .routes_system import router as system_router

__all__ = [
    "notifications_router",
    "system_router",
]
