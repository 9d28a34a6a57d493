"""API routers for the dream journal."""

from dreamjournal.app.api.csrf import router as csrf_router
from dreamjournal.app.api.dreams import router as dreams_router
from dreamjournal.app.api.health import router as health_router

__all__ = [
    "csrf_router",
    "dreams_router",
    "health_router",
]
