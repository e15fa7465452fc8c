"""
Health check endpoints.
"""

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text
import redis.asyncio as redis

from config import settings
from database import engine
from services.audit_queue import supervisor

router = APIRouter()


async def _check_database() -> str:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return "up"
    except Exception as e:
        return f"down: {str(e)}"


async def _check_redis() -> str:
    try:
        r = redis.from_url(settings.REDIS_URL)
        try:
            await r.ping()
        finally:
            await r.aclose()
        return "up"
    except Exception as e:
        return f"down: {str(e)}"


@router.get("/health")
async def health_check():
    """
    Health check endpoint.
    Returns overall system health status.
    """
    health_status = {
        "status": "healthy",
        "api": "up",
        "database": await _check_database(),
        "dispatch_mode": settings.AUDIT_DISPATCH_MODE,
        "active_audits": supervisor.active_count,
        "pagespeed_api_key": "configured" if settings.PAGESPEED_API_KEY else "missing",
    }
    if health_status["database"] != "up":
        health_status["status"] = "degraded"

    # Redis only backs the queue and rate limits; inline mode runs without it.
    health_status["redis"] = await _check_redis()
    if settings.AUDIT_DISPATCH_MODE == "queue" and health_status["redis"] != "up":
        health_status["status"] = "degraded"

    return health_status


@router.get("/health/ready")
async def readiness_check():
    """Kubernetes-style readiness probe."""
    missing = []
    if await _check_database() != "up":
        missing.append("database")
    if settings.AUDIT_DISPATCH_MODE == "queue" and await _check_redis() != "up":
        missing.append("redis")

    if missing:
        return JSONResponse(
            status_code=503,
            content={"ready": False, "missing": missing},
        )
    return {"ready": True}


@router.get("/health/live")
async def liveness_check():
    """Kubernetes-style liveness probe."""
    return {"alive": True}
