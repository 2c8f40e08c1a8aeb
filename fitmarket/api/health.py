import logging

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from redis import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from fitmarket.config import get_settings
from fitmarket.database import engine
from fitmarket.utils.cache import redis_client

logger = logging.getLogger(__name__)

settings = get_settings()

router = APIRouter(prefix="/health", tags=["Health"])


@router.get(
    "/",
    summary="Liveness check",
    description="Returns 200 while the process is serving requests."
)
def health_check():
    return {"status": "healthy", "service": settings.APP_NAME}


@router.get(
    "/ready",
    summary="Readiness check",
    description="Checks the database and the Redis cache. Returns 503 if the database is down."
)
def readiness_check():
    """
    Readiness check for all dependencies.

    The cache is optional (reads fall back to the database), so a Redis
    outage is reported as ``degraded`` rather than failing the check.
    """
    checks = {
        "database": False,
        "cache": False
    }

    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
            checks["database"] = True
    except SQLAlchemyError as e:
        logger.error(f"Readiness: database check failed: {e}")
        checks["database_error"] = str(e)

    try:
        redis_client.ping()
        checks["cache"] = True
    except RedisError as e:
        logger.warning(f"Readiness: cache check failed: {e}")
        checks["cache_error"] = str(e)

    if not checks["database"]:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "not_ready", "checks": checks}
        )

    return {
        "status": "ready" if checks["cache"] else "degraded",
        "checks": checks
    }


@router.get(
    "/cache/stats",
    summary="Cache statistics",
    description="Get Redis cache statistics."
)
def cache_stats():
    try:
        info = redis_client.info()
        return {
            "connected_clients": info.get("connected_clients"),
            "used_memory": info.get("used_memory_human"),
            "total_keys": redis_client.dbsize(),
            "hit_rate": _hit_rate(info),
            "uptime_seconds": info.get("uptime_in_seconds")
        }
    except RedisError as e:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"error": str(e)}
        )


def _hit_rate(info: dict):
    hits = info.get("keyspace_hits", 0)
    misses = info.get("keyspace_misses", 0)
    if hits + misses == 0:
        return None
    return round(hits / (hits + misses), 4)
