"""engage - gamified employee engagement backend."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from engage.core.config import Constants, settings
from engage.core.db_client import close_connection, init_db
from engage.core.errors import EngageError
from engage.core.logging import configure_logfire, instrument_fastapi
from engage.core.redis_client import redis_client
from engage.core.scheduler import start_scheduler, stop_scheduler
from engage.core.scheduler_tracker import job_tracker
from engage.interface.api_router import engage_error_handler
from engage.interface.api_router import router as api_router
from engage.interface.webhook import router as webhook_router


logger = logging.getLogger(__name__)

# Consecutive tick failures before the scheduler is reported critical
CRITICAL_FAILURE_THRESHOLD = 3


async def check_redis_connectivity() -> None:
    """Verify Redis connectivity (optional service).

    Only checks if Redis is configured. Logs warning if unavailable but doesn't fail.
    """
    if not redis_client.is_available:
        logger.info("startup_validation", extra={"service": "redis", "status": "disabled"})
        return

    if await redis_client.ping():
        logger.info("startup_validation", extra={"service": "redis", "status": "ok"})
    else:
        logger.warning("startup_validation", extra={"service": "redis", "status": "unavailable"})


async def validate_startup_configuration() -> None:
    """Validate configuration and optional service connectivity.

    Problems are logged; none of them prevents startup.
    """
    logger.info("startup_validation_begin")

    if settings.dispatch_lease_ttl_seconds < settings.dispatch_interval_seconds:
        logger.warning(
            "startup_validation",
            extra={
                "stage": "dispatch",
                "status": "lease_shorter_than_interval",
                "lease_ttl": settings.dispatch_lease_ttl_seconds,
                "interval": settings.dispatch_interval_seconds,
            },
        )

    await check_redis_connectivity()

    logger.info("startup_validation_complete", extra={"status": "ok"})


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan context manager."""
    # Startup
    # Configure logging first so validation logs are captured
    configure_logfire()

    await validate_startup_configuration()

    await init_db()
    logger.info("Database initialized")

    start_scheduler()
    yield
    # Shutdown
    stop_scheduler()
    await redis_client.close()
    await close_connection()


app = FastAPI(
    title="engage",
    description="Gamified employee engagement: daily challenges, rankings and scheduled messaging",
    version="0.1.0",
    lifespan=lifespan,
)

# Instrument FastAPI with Logfire
instrument_fastapi(app)

# Register routers and domain error mapping
app.include_router(api_router)
app.include_router(webhook_router)
app.add_exception_handler(EngageError, engage_error_handler)  # type: ignore[arg-type]


@app.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(content={"status": "healthy"}, status_code=200)


@app.get("/health/scheduler")
async def scheduler_health_check() -> JSONResponse:
    """Scheduler health check endpoint with job statuses."""
    job_names = [Constants.DISPATCH_JOB_NAME]

    job_statuses = {}
    for job_name in job_names:
        job_statuses[job_name] = await job_tracker.get_job_status(job_name)

    worst = max(status["consecutive_failures"] for status in job_statuses.values())

    overall_status = "degraded" if worst > 0 else "healthy"
    if worst >= CRITICAL_FAILURE_THRESHOLD:
        overall_status = "critical"

    return JSONResponse(
        content={
            "status": overall_status,
            "jobs": job_statuses,
            "cache": redis_client.get_health_status(),
        },
        status_code=200 if overall_status == "healthy" else 503,
    )
