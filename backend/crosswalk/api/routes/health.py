"""Health check endpoints."""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from crosswalk.core.cache import get_cache
from crosswalk.core.config import get_settings
from crosswalk.core.database import get_db

router = APIRouter()
settings = get_settings()
logger = structlog.get_logger()


@router.get("/health")
async def health_check():
    """Basic health check."""
    return {"status": "healthy", "version": settings.app_version}


@router.get("/health/ready")
async def readiness_check(db: AsyncSession = Depends(get_db)):
    """Readiness check including database connectivity."""
    try:
        await db.execute(text("SELECT 1"))
        db_status = "connected"
    except Exception as e:
        # Log full error server-side but return generic status
        logger.error("database_health_check_failed", error=str(e))
        db_status = "unavailable"

    return {
        "status": "ready" if db_status == "connected" else "not_ready",
        "database": db_status,
        "version": settings.app_version,
    }


@router.get("/health/cache")
async def cache_health():
    """Read-through cache counters since startup."""
    cache = get_cache()
    if cache is None:
        return {"status": "disabled"}
    return {
        "status": "enabled",
        "backend": type(cache.store).__name__,
        "hit_rate": round(cache.metrics.hit_rate(), 4),
        **cache.metrics.snapshot(),
    }
