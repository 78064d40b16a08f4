"""
Health Check Endpoints

- /health       - liveness (app is running)
- /health/ready - readiness (database and Redis reachable)
"""

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from typing import Dict, Any
import time

from appweaver.core.config import settings
from appweaver.core.logging_config import logger
from appweaver.core.redis_client import redis_client


router = APIRouter(prefix="/health", tags=["Health Checks"])


async def check_database() -> Dict[str, Any]:
    """Check database connectivity"""
    start = time.time()
    try:
        from appweaver.core.database import get_session_local
        from sqlalchemy import text

        session_factory = get_session_local()
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))

        return {
            "status": "healthy",
            "latency_ms": round((time.time() - start) * 1000, 2),
        }
    except Exception as e:
        logger.error(f"[HealthCheck] Database check failed: {e}")
        return {
            "status": "unhealthy",
            "latency_ms": round((time.time() - start) * 1000, 2),
            "error": str(e),
        }


async def check_redis() -> Dict[str, Any]:
    """Check the shared state Redis"""
    start = time.time()
    if redis_client.state_redis is None:
        return {"status": "unhealthy", "error": "Redis not connected"}
    try:
        await redis_client.state_redis.ping()
        return {
            "status": "healthy",
            "latency_ms": round((time.time() - start) * 1000, 2),
        }
    except Exception as e:
        logger.warning(f"[HealthCheck] Redis check failed: {e}")
        return {
            "status": "unhealthy",
            "latency_ms": round((time.time() - start) * 1000, 2),
            "error": str(e),
        }


@router.get("")
async def health_check():
    """Liveness probe"""
    return {
        "status": "healthy",
        "service": "appweaver-backend",
        "environment": settings.ENVIRONMENT,
    }


@router.get("/ready")
async def readiness_check():
    """Readiness probe: 503 until every dependency answers"""
    checks = {
        "database": await check_database(),
        "redis": await check_redis(),
    }
    healthy = all(check["status"] == "healthy" for check in checks.values())
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={"status": "ready" if healthy else "not_ready", "checks": checks},
    )
