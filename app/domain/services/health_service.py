"""
Health checks - dependency probes (DB, Redis, Celery broker).

Two levels:
- liveness: the process is up (no dependency checks)
- readiness: every external dependency answers
"""
from typing import Any, Optional

import redis.asyncio as aioredis
from sqlalchemy import text

from app.core.config import settings
from app.core.logging import get_logger
from app.core.redis_client import get_redis
from app.db.database import AsyncSessionLocal

logger = get_logger(__name__)

_STATUS_HEALTHY = "healthy"
_STATUS_DEGRADED = "degraded"

_CHECK_OK = "ok"

# Filtered error messages, no infrastructure details
_ERROR_DB = "error: db_unavailable"
_ERROR_REDIS = "error: redis_unavailable"
_ERROR_CELERY = "error: celery_unavailable"


async def _check_db() -> str:
    """Lightweight query against the database"""
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
        return _CHECK_OK
    except Exception as e:
        logger.warning("DB health check failed", extra_data={"error": str(e)})
        return _ERROR_DB


async def _check_redis() -> str:
    """PING the lease store"""
    try:
        client = await get_redis()
        await client.ping()
        return _CHECK_OK
    except Exception as e:
        logger.warning("Redis health check failed", extra_data={"error": str(e)})
        return _ERROR_REDIS


async def _check_celery() -> str:
    """PING the Celery broker that runs the recovery sweep"""
    try:
        client = aioredis.from_url(settings.CELERY_BROKER_URL, decode_responses=True)
        try:
            await client.ping()
            return _CHECK_OK
        finally:
            await client.aclose()
    except Exception as e:
        logger.warning("Celery broker health check failed", extra_data={"error": str(e)})
        return _ERROR_CELERY


async def check_readiness(supervisor: Optional[Any] = None) -> dict[str, Any]:
    """
    Readiness check over all external dependencies.

    Returns a dict with the overall status and one entry per dependency:
    - status: "healthy" when every check passed, "degraded" otherwise
    - db / redis / celery: "ok" or "error: ..."
    - reconciliation_in_flight: running workers in this process, when known
    """
    checks = {
        "db": await _check_db(),
        "redis": await _check_redis(),
        "celery": await _check_celery(),
    }

    all_ok = all(v == _CHECK_OK for v in checks.values())
    overall_status = _STATUS_HEALTHY if all_ok else _STATUS_DEGRADED

    if not all_ok:
        logger.warning("Readiness check degraded", extra_data=checks)

    result: dict[str, Any] = {"status": overall_status, **checks}
    if supervisor is not None:
        result["reconciliation_in_flight"] = supervisor.in_flight
    return result
