"""Health check and monitoring endpoints."""

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from datetime import datetime, timezone
import psutil
import os

from reviewlens.services.logging_service import app_metrics
from reviewlens.services.scheduler_service import get_job_status
from reviewlens.config import settings

router = APIRouter()


@router.get("/health")
async def health_check():
    """
    Basic health check endpoint.

    Returns 200 if application is running.
    """
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "environment": settings.ENVIRONMENT,
        "version": settings.APP_VERSION
    }


@router.get("/health/ready")
async def readiness_check(request: Request):
    """
    Readiness probe.

    The service answers without its cache (analyses just run uncached),
    so a closed cache reports ``degraded`` rather than failing the probe.
    """
    cache_facade = getattr(request.app.state, "cache_facade", None)
    if cache_facade is None:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "not_ready",
                "errors": ["Application not initialized"],
                "timestamp": datetime.now(timezone.utc).isoformat()
            }
        )

    cache_status = await cache_facade.refresh_status()

    process = psutil.Process(os.getpid())
    metrics = app_metrics.get_metrics()

    return {
        "status": "ready" if cache_status.is_ready else "degraded",
        "checks": {
            "cache": cache_status.is_ready,
            "scheduler": get_job_status()
        },
        "cache": cache_status.model_dump(),
        "metrics": {
            "analysis": {**metrics["analysis"], "failure_rate_percent": round(app_metrics.get_failure_rate(), 2)},
            "cache": {**metrics["cache"], "hit_rate_percent": round(app_metrics.get_cache_hit_rate(), 2)},
            "scraper": metrics["scraper"],
            "uptime_seconds": metrics["uptime_seconds"]
        },
        "system": {
            "memory_rss_mb": round(process.memory_info().rss / (1024 * 1024), 1),
            "memory_percent": psutil.virtual_memory().percent,
            "pid": process.pid
        },
        "timestamp": datetime.now(timezone.utc).isoformat()
    }
