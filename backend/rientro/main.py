"""
FastAPI Main Application Entry Point for Rientro.

This is the trip-monitoring engine that handles:
- Database webhooks for trip creation and updates
- Traveler actions (check-in, SOS, complete, cancel)
- Periodic escalation sweep and daily retention cleanup
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from rientro.core.config import settings
from rientro.core.exceptions import RientroException
from rientro.api.routes import hook_router, trip_router, job_router


# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
    - Log configuration
    - Start background scheduler (one instance only)

    Shutdown:
    - Stop scheduler gracefully
    - Close the push transport
    """
    logger.info(f"🚀 Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Debug mode: {settings.debug}")
    logger.info(f"Push enabled: {settings.push_enabled}")
    logger.info(f"Scheduler enabled: {settings.enable_scheduler}")
    logger.info(f"Run scheduler (this instance): {settings.run_scheduler}")

    app.state.scheduler = None

    # Several workers each running the sweep would race on the same trips
    if settings.enable_scheduler and settings.run_scheduler:
        try:
            from rientro.services.scheduler import get_scheduler
            app.state.scheduler = get_scheduler()
            app.state.scheduler.start()
            logger.info("✅ Background scheduler started")
        except Exception as e:
            logger.error(f"❌ Failed to start scheduler: {e}")

    yield

    if app.state.scheduler and app.state.scheduler.is_running:
        app.state.scheduler.stop()
        logger.info("✅ Scheduler stopped")

    from rientro.services.engine import get_engine
    if get_engine.cache_info().currsize:
        await get_engine().aclose()

    logger.info("👋 Shutting down...")


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    # Rientro - Trip Monitoring Engine

    Watches trips in progress and escalates when the traveler stops checking in.

    ## Escalation ladder
    - **SOFT**: reminder to the traveler
    - **URGENT**: second reminder to the traveler
    - **EMERGENCY**: critical alert to every emergency contact
    - **SOS**: manual emergency raised by the traveler

    Emergency and SOS alerts are delivered even when silent mode is on.
    """,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Global exception handler for RientroExceptions
@app.exception_handler(RientroException)
async def rientro_exception_handler(request, exc: RientroException):
    """Handle all RientroException subclasses."""
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
    )


# Include API routers
app.include_router(hook_router)
app.include_router(trip_router)
app.include_router(job_router)


# Health check endpoint
@app.get("/health", tags=["System"])
async def health_check():
    """
    Health check endpoint for monitoring.

    Returns service status, scheduler health, and configuration.
    """
    scheduler = getattr(app.state, 'scheduler', None)

    scheduler_status = {"is_running": False, "status": "disabled"}
    if scheduler is not None:
        scheduler_status = scheduler.get_health_status()

    return {
        "status": scheduler_status.get("status", "healthy") if scheduler else "healthy",
        "service": settings.app_name,
        "version": settings.app_version,
        "debug": settings.debug,
        "store_configured": settings.store_configured,
        "push_enabled": settings.push_enabled,
        "scheduler": scheduler_status,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


# Root endpoint
@app.get("/", tags=["System"])
async def root():
    """Root endpoint with API information."""
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "docs": "/docs" if settings.debug else "Docs disabled in production",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "rientro.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
