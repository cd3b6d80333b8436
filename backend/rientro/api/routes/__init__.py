# API Routes
from .hook_routes import router as hook_router
from .trip_routes import router as trip_router
from .job_routes import router as job_router

__all__ = [
    "hook_router",
    "trip_router",
    "job_router"
]
