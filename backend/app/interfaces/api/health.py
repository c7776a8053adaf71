from time import perf_counter

from fastapi import APIRouter, Response, status
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings
from app.infrastructure.cache.redis_client import get_async_redis_client
from app.infrastructure.db.async_session import AsyncSessionLocal
from app.infrastructure.observability.metrics import measure_redis, metrics_response

router = APIRouter()


async def _check_database() -> tuple[str, float | None]:
    try:
        started_at = perf_counter()
        async with AsyncSessionLocal() as db:
            await db.execute(text("SELECT 1"))
        return "up", round((perf_counter() - started_at) * 1000, 2)
    except (SQLAlchemyError, OSError):
        return "down", None


async def _check_redis() -> tuple[str, float | None]:
    if not settings.permission_cache_redis_enabled:
        return "disabled", None
    redis_client = get_async_redis_client()
    try:
        started_at = perf_counter()
        with measure_redis("health_ping"):
            await redis_client.ping()
        return "up", round((perf_counter() - started_at) * 1000, 2)
    except (RedisError, OSError):
        return "down", None
    finally:
        await redis_client.aclose()


@router.get("/health", status_code=status.HTTP_200_OK)
async def health_check() -> dict:
    db_status, db_latency_ms = await _check_database()
    redis_status, redis_latency_ms = await _check_redis()

    # The permission cache degrades to the database, so Redis is not required.
    overall = "ok" if db_status == "up" and redis_status != "down" else "degraded"

    return {
        "status": overall,
        "services": {
            "api": "up",
            "database": db_status,
            "redis": redis_status,
            "db_latency_ms": db_latency_ms,
            "redis_latency_ms": redis_latency_ms,
        },
    }


@router.get("/ready", status_code=status.HTTP_200_OK)
async def readiness_check(response: Response) -> dict:
    payload = await health_check()
    # Revocation checks fail closed without the database.
    if payload["services"]["database"] != "up":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "not_ready", "services": payload["services"]}
    return {"status": "ready", "services": payload["services"]}


@router.get("/metrics", include_in_schema=False)
def metrics():
    return metrics_response()
