"""
FastAPI application entry point.

Run with:
    uvicorn backend.app.main:app --reload --port 8000

Or from the project root:
    python -m uvicorn backend.app.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# ── Core infrastructure ──
from backend.app.core.config import settings
from backend.app.core.logging_config import setup_logging
from backend.app.core.errors import register_error_handlers
from backend.app.core.middleware import RequestLoggingMiddleware
from backend.app.core.health import HealthStatus, run_health_check
from backend.app.alerts.alert_service import build_alert_service

# ── API routers ──
from backend.app.api.v1.threads import router as thread_router
from backend.app.api.v1.notifications import router as notification_router
from backend.app.api.v1.geo import router as geo_router

# ── Initialise logging ──
setup_logging()
logger = logging.getLogger(__name__)


# ── Application lifespan (startup / shutdown) ──

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the alert service on startup; drain and close it on shutdown."""
    logger.info(
        "Starting %s v%s [%s]",
        settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
    )
    service = build_alert_service(settings)
    await service.start()
    app.state.alert_service = service
    yield
    logger.info("Shutting down %s", settings.APP_NAME)
    await service.close()
    app.state.alert_service = None


# ── Create application ──

app = FastAPI(
    title=settings.APP_NAME,
    description=(
        "Geo-scoped incident reporting and notification engine. "
        "Citizens submit location-tagged reports, nearby citizens receive "
        "radius-targeted alerts, government desks respond in threads, and "
        "each recipient tracks their own read state."
    ),
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# ── Middleware stack (outermost first) ──

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
app.include_router(thread_router)
app.include_router(notification_router)
app.include_router(geo_router)


# ── Root & health endpoints ──

@app.get("/", tags=["root"])
async def root():
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "modules": [
            "incident-reports",
            "geo-notifications",
            "read-state",
            "conversations",
        ],
        "alert_radius_km": settings.DEFAULT_ALERT_RADIUS_KM,
        "docs": "/docs",
    }


@app.get("/health", tags=["health"])
async def health_check():
    """Deep health probe — storage, event bus, fan-out."""
    report = await run_health_check(app.state.alert_service)
    return report.to_dict()


@app.get("/health/live", tags=["health"])
async def liveness():
    """Kubernetes liveness probe — is the process alive?"""
    return {"status": "alive"}


@app.get("/health/ready", tags=["health"])
async def readiness():
    """Kubernetes readiness probe — can we serve traffic?"""
    report = await run_health_check(app.state.alert_service)
    if report.status == HealthStatus.UNHEALTHY:
        return JSONResponse(status_code=503, content=report.to_dict())
    return report.to_dict()
