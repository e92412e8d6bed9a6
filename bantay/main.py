"""
FastAPI application entry point.

Run with:
    uvicorn bantay.main:app --reload --port 8000
"""

from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# ── Core infrastructure ──
from bantay.core.config import settings
from bantay.core.logging_config import setup_logging, get_logger
from bantay.core.errors import register_error_handlers
from bantay.core.middleware import RequestLoggingMiddleware
from bantay.core.health import HealthStatus, run_health_check
from bantay.core.timeutil import format_timestamp, utc_now
from bantay.store.base import VersionedRecordStore
from bantay.store.factory import close_record_store, get_record_store
from bantay.threats.readings import close_readings_source, get_readings_source
from bantay.threats.reconciler import build_reconciler
from bantay.threats.scheduler import ReconcileScheduler

# ── API routers ──
from bantay.api.v1.status import router as status_router
from bantay.api.v1.users import router as user_router
from bantay.api.v1.threats import router as threat_router

# ── Initialise logging ──
setup_logging()
logger = get_logger(__name__)


# ── Application lifespan (startup / shutdown) ──

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Validate configuration, optionally start the reconcile loop, clean up."""
    logger.info(
        "Starting %s v%s [%s]",
        settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
    )
    settings.validate_store()

    scheduler = None
    if settings.RECONCILE_SCHEDULE_ENABLED:
        reconciler = build_reconciler(get_record_store(), get_readings_source(), settings)
        scheduler = ReconcileScheduler(reconciler, settings.RECONCILE_INTERVAL_MINUTES * 60)
        await scheduler.start()
    app.state.reconcile_scheduler = scheduler

    yield

    if scheduler is not None:
        await scheduler.stop()
    await close_readings_source()
    await close_record_store()
    logger.info("Shutting down %s", settings.APP_NAME)


# ── Create application ──

app = FastAPI(
    title=settings.APP_NAME,
    description=(
        "Flood threat status propagation. Classifies weather and "
        "water-level readings into safe / warning / danger, publishes "
        "the result to a versioned record store with compare-and-swap "
        "writes, serves it to polling clients, and records users' "
        "safe acknowledgments."
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
app.include_router(status_router)
app.include_router(user_router)
app.include_router(threat_router)


# ── Root & health endpoints ──

@app.get("/", tags=["root"])
async def root():
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "store_backend": settings.STORE_BACKEND,
        "docs": "/docs",
    }


@app.get("/health", tags=["health"])
async def health_check():
    """Liveness — the process is up and serving."""
    return {"status": "ok", "timestamp": format_timestamp(utc_now())}


@app.get("/health/ready", tags=["health"])
async def readiness(store: VersionedRecordStore = Depends(get_record_store)):
    """Readiness — configuration valid and record store reachable."""
    report = await run_health_check(settings, store)
    if report.status == HealthStatus.UNHEALTHY:
        return JSONResponse(status_code=503, content=report.to_dict())
    return report.to_dict()
