"""Health check endpoints"""

import logging
from datetime import datetime, timezone
from typing import Any

import redis.asyncio as redis
from fastapi import APIRouter, Request

from trainermatch.config import settings

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/")
async def health_check() -> dict[str, Any]:
    """Basic health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": "TrainerMatch API",
        "version": "0.1.0",
    }


@router.get("/ready")
async def readiness_check(request: Request) -> dict[str, Any]:
    """Readiness check including cache store, LLM and Redis"""
    checks = {
        "api": "healthy",
        "cache_store": "unknown",
        "llm": "configured" if settings.is_llm_configured() else "not_configured",
        "redis": "unknown",
    }

    service = getattr(request.app.state, "matching_service", None)
    if service is None:
        checks["cache_store"] = "unhealthy"
    else:
        store = service.cache.store
        try:
            healthy = await store.ping()
            checks["cache_store"] = "healthy" if healthy else "unhealthy"
        except Exception as e:
            logger.error(f"Cache store health check failed: {e}")
            checks["cache_store"] = "unhealthy"
        checks["cache_backend"] = type(store).__name__

    if settings.redis_url:
        try:
            client = redis.from_url(str(settings.redis_url))
            await client.ping()
            checks["redis"] = "healthy"
            await client.aclose()
        except Exception as e:
            logger.error(f"Redis health check failed: {e}")
            checks["redis"] = "unhealthy"
    else:
        checks["redis"] = "disabled"

    # Determine overall status
    overall_status = "healthy"
    if "unhealthy" in checks.values() or checks["llm"] == "not_configured":
        overall_status = "degraded"
    if checks["cache_store"] == "unhealthy" and service is None:
        overall_status = "unhealthy"

    return {
        "status": overall_status,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": checks,
    }


@router.get("/live")
async def liveness_check() -> dict[str, str]:
    """Kubernetes liveness probe endpoint"""
    return {"status": "alive"}
