"""HTTP API for sitesync."""

from .health import router as health_router
from .trigger import router as trigger_router

__all__ = [
    "health_router",
    "trigger_router",
]
