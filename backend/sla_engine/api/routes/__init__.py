# API Routes
from .sla_routes import router as sla_router
from .pause_routes import router as pause_router

__all__ = [
    "sla_router",
    "pause_router",
]
