"""
KinderHub API - Main Application Entry Point

This module initializes and configures the FastAPI application including:
- Logging
- Database and Redis connections
- Billing job scheduler
- CORS middleware and error handlers
- API routing
- Health check endpoints
"""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.asyncio import Redis
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

from kinderhub.api import api_router, webhooks_api_router
from kinderhub.core.auth import get_current_admin
from kinderhub.core.config import settings
from kinderhub.core.database import async_session_maker, close_db, init_db
from kinderhub.core.redis import close_redis, get_redis, init_redis
from kinderhub.core.scheduler import (
    list_registered_jobs,
    pause_job,
    resume_job,
    start_scheduler,
    stop_scheduler,
    trigger_job_manually,
)
from kinderhub.modules.billing.jobs import register_billing_jobs

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events including:
    - Redis connection
    - Database connection
    - Billing job scheduler
    """
    # Startup
    print(f"Starting KinderHub API in {settings.python_env} mode...")

    try:
        await init_redis()
        print("[OK] Redis connected")
    except Exception as e:
        print(f"[FAIL] Redis connection failed: {e}")
        if settings.is_production:
            raise

    try:
        await init_db()
        print("[OK] Database connected")
    except Exception as e:
        print(f"[FAIL] Database connection failed: {e}")
        if settings.is_production:
            raise

    try:
        # Jobs must be registered before the scheduler starts
        register_billing_jobs()
        await start_scheduler()
        print("[OK] Billing scheduler started")
    except Exception as e:
        print(f"[FAIL] Billing scheduler failed to start: {e}")
        if settings.is_production:
            raise

    yield

    # Shutdown
    print("Shutting down KinderHub API...")

    # Stop the scheduler first (wait for running jobs)
    await stop_scheduler()
    print("[OK] Billing scheduler stopped")

    await close_redis()
    await close_db()
    print("[OK] Cleanup complete")


app = FastAPI(
    title=settings.app_name,
    description="Preschool management API: classes, homework, messaging and billing",
    version="0.1.0",
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    lifespan=lifespan,
)

app.include_router(api_router, prefix="/api")
app.include_router(webhooks_api_router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================
# Error handlers
# ============================================


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Return ``{error, message}`` bodies instead of ``{"detail": ...}``."""
    if isinstance(exc.detail, dict) and "error" in exc.detail:
        content = exc.detail
    else:
        content = {"error": "HTTP_ERROR", "message": str(exc.detail)}
    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"error": "INTERNAL_ERROR", "message": "An unexpected error occurred."},
    )


# ============================================
# Health endpoints
# ============================================


@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    return {
        "message": "Welcome to KinderHub API",
        "status": "running",
        "environment": settings.python_env,
    }


@app.get("/health", tags=["Health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint for container orchestration."""
    return {"status": "healthy"}


@app.get("/ready", tags=["Health"])
async def readiness_check() -> JSONResponse:
    """Ready once the database answers."""
    try:
        async with async_session_maker() as session:
            await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning(f"Readiness check failed: {e}")
        return JSONResponse(status_code=503, content={"status": "not ready"})
    return JSONResponse(content={"status": "ready"})


@app.get("/debug/db", tags=["Debug"])
async def debug_db():
    """Test database connection."""
    try:
        async with async_session_maker() as session:
            result = await session.execute(text("SELECT 1"))
            return {"database": "connected", "result": result.scalar()}
    except Exception as e:
        return {"database": "error", "message": str(e)}


@app.get("/debug/redis", tags=["Debug"])
async def debug_redis(client: Redis | None = Depends(get_redis)):
    """Test Redis connection."""
    try:
        if client:
            await client.ping()
            return {"redis": "connected"}
        return {"redis": "not initialized"}
    except Exception as e:
        return {"redis": "error", "message": str(e)}


# ============================================
# Background Job Debug Endpoints
# ============================================
# Jobs run on schedule in production; these allow running them by hand.
# Changing job state requires an admin token.


@app.get("/debug/jobs", tags=["Debug"])
async def list_jobs():
    """List registered background jobs with next run time and pause state."""
    return {"jobs": list_registered_jobs()}


@app.post("/debug/jobs/{job_id}/trigger", tags=["Debug"], dependencies=[Depends(get_current_admin)])
async def trigger_job(job_id: str):
    """
    Run a background job now, bypassing its schedule.

    Args:
        job_id: One of billing_process_renewals, billing_expire_subscriptions,
            billing_expire_pending_transactions, billing_monthly_report.

    Raises:
        HTTPException 400: If job_id is not registered.
    """
    try:
        return await trigger_job_manually(job_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


@app.post("/debug/jobs/{job_id}/pause", tags=["Debug"], dependencies=[Depends(get_current_admin)])
async def pause_job_endpoint(job_id: str):
    """Stop a job from running on schedule; it stays registered."""
    return {"job_id": job_id, "paused": pause_job(job_id)}


@app.post("/debug/jobs/{job_id}/resume", tags=["Debug"], dependencies=[Depends(get_current_admin)])
async def resume_job_endpoint(job_id: str):
    return {"job_id": job_id, "resumed": resume_job(job_id)}
