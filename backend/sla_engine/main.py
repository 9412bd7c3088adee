"""
FastAPI Main Application Entry Point for the SLA engine.

Serves the SLA Lifecycle & Escalation Engine of the maintenance back office:
- Deadline computation (calendar and working-hours accounting)
- Live SLA status reads
- Job pause / resume with deadline extension
- Periodic SLA sweep with threshold escalation
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from sla_engine.core.config import settings
from sla_engine.core.exceptions import SLAEngineException
from sla_engine.api.routes import sla_router, pause_router


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
    - Validate calendar and threshold configuration
    - Start the SLA sweep scheduler on the designated worker

    Shutdown:
    - Stop scheduler gracefully
    """
    logger.info(f"🚀 Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Debug mode: {settings.debug}")
    logger.info(f"Calendar timezone: {settings.calendar_tz}")
    logger.info(f"SLA thresholds: {settings.sla_thresholds}")
    logger.info(f"Scheduler enabled: {settings.enable_scheduler}")
    logger.info(f"Run scheduler (this instance): {settings.run_scheduler}")

    app.state.scheduler = None

    # Only one worker may run the sweep; set RUN_SCHEDULER=true on exactly one
    should_run_scheduler = settings.enable_scheduler and settings.run_scheduler

    if should_run_scheduler:
        from sla_engine.services.scheduler import get_scheduler
        app.state.scheduler = get_scheduler()
        try:
            app.state.scheduler.start()
            logger.info("✅ Background scheduler started")
        except Exception as e:
            logger.error(f"❌ Failed to start scheduler: {e}")

    yield

    if app.state.scheduler and app.state.scheduler.is_running:
        app.state.scheduler.stop()
        logger.info("✅ Scheduler stopped")

    logger.info("👋 Shutting down...")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    # SLA Lifecycle & Escalation Engine

    Computes ticket deadlines, classifies urgency, freezes the SLA clock
    while a job is paused, and escalates each threshold crossing once.

    ## Status lattice
    `no_sla` | `on_track` → `warning` (75%) → `critical` (90%) → `breached` (100%),
    with `completed` overriding all once a ticket is done or cancelled.

    ## Time accounting
    - **calendar**: continuous wall clock
    - **working_hours**: branch opening hours, closed days and holidays
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


@app.exception_handler(SLAEngineException)
async def sla_engine_exception_handler(request, exc: SLAEngineException):
    """Handle all SLAEngineException subclasses."""
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
    )


app.include_router(sla_router)
app.include_router(pause_router)


@app.get("/health", tags=["System"])
async def health_check():
    """
    Health check endpoint for monitoring.

    Returns service status and scheduler health.
    """
    scheduler = getattr(app.state, 'scheduler', None)

    if scheduler is not None:
        scheduler_status = scheduler.get_health_status()
    else:
        scheduler_status = {
            "status": "disabled",
            "is_running": False,
            "jobs": [],
            "failures": {},
            "paused_jobs": [],
        }

    overall_status = "degraded" if scheduler_status["status"] == "degraded" else "healthy"

    return {
        "status": overall_status,
        "service": settings.app_name,
        "version": settings.app_version,
        "debug": settings.debug,
        "scheduler": scheduler_status,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


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
        "sla_engine.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
