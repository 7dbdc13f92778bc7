"""
FastAPI application entry point.

Run with:
    uvicorn crowdwatch.app.main:app --reload --port 8000

Or from the project root:
    python -m crowdwatch.app.main
"""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# ── Core infrastructure ──
from crowdwatch.app.core.config import settings
from crowdwatch.app.core.logging_config import setup_logging
from crowdwatch.app.core.errors import register_error_handlers
from crowdwatch.app.core.middleware import RequestLoggingMiddleware
from crowdwatch.app.core.health import HealthStatus, run_health_check
from crowdwatch.app.services import ServiceContainer, get_services, set_services

# ── API routers ──
from crowdwatch.app.api.v1.density import router as density_router
from crowdwatch.app.api.v1.triggers import router as trigger_router

# ── Initialise logging ──
setup_logging()
logger = logging.getLogger(__name__)


# ── Application lifespan (startup / shutdown) ──

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build services, start the scheduler; tear both down on exit."""
    logger.info(
        "Starting %s v%s [%s]",
        settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
    )
    services = get_services()
    await services.start(run_scheduler=settings.SCHEDULER_ENABLED)
    yield
    logger.info("Shutting down %s", settings.APP_NAME)
    await services.close()
    if settings.ALERT_DEDUP_DISTRIBUTED:
        from crowdwatch.app.core.cache import close_redis

        await close_redis()
    set_services(None)


# ── Create application ──

app = FastAPI(
    title=settings.APP_NAME,
    description=(
        "Crowd density aggregation and alert fan-out. "
        "Classifies attendee location samples into venue zones, "
        "computes per-zone density and occupancy, raises deduplicated "
        "congestion alerts, and fans alerts and incidents out to "
        "role-based push topics and per-user notification records."
    ),
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# ── Middleware stack (order matters — outermost first) ──

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS if not settings.CORS_ALLOW_ALL else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)

# ── Error handlers ──
register_error_handlers(app)

# ── Register routers ──
app.include_router(density_router)
app.include_router(trigger_router)


# ── Root & health endpoints ──

@app.get("/", tags=["root"])
async def root():
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "modules": [
            "zone-classification",
            "density-evaluation",
            "alert-deduplication",
            "notification-fan-out",
            "aggregation-scheduler",
        ],
        "docs": "/docs",
    }


@app.get("/health", tags=["health"])
async def health_check(services: ServiceContainer = Depends(get_services)):
    """Deep health probe — checks all subsystems."""
    report = await run_health_check(services)
    return report.to_dict()


@app.get("/health/live", tags=["health"])
async def liveness():
    """Kubernetes liveness probe — is the process alive?"""
    return {"status": "alive"}


@app.get("/health/ready", tags=["health"])
async def readiness(services: ServiceContainer = Depends(get_services)):
    """Kubernetes readiness probe — can we serve traffic?"""
    report = await run_health_check(services)
    if report.status == HealthStatus.UNHEALTHY:
        return JSONResponse(status_code=503, content=report.to_dict())
    return report.to_dict()


def run() -> None:
    import uvicorn

    uvicorn.run(
        "crowdwatch.app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.RELOAD and settings.is_development,
        workers=settings.WORKERS,
        log_config=None,
    )


if __name__ == "__main__":
    run()
