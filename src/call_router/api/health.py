"""
Health check and status endpoints
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(request: Request):
    """
    Basic liveness check
    """
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "environment": request.app.state.settings.environment,
    }


@router.get("/ready")
async def readiness_check(request: Request):
    """
    Readiness check - the router cannot answer webhooks without Redis
    """
    checks = {"redis": False}
    try:
        checks["redis"] = bool(await request.app.state.redis.ping())
    except RedisError as e:
        logger.warning(f"Readiness: Redis ping failed: {e}")

    reader = request.app.state.config_reader
    breaker = getattr(getattr(reader, "inner", reader), "breaker", None)
    ready = all(checks.values())
    content = {
        "status": "ready" if ready else "unavailable",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": checks,
    }
    if breaker is not None:
        content["control_plane"] = breaker.get_stats()

    return JSONResponse(status_code=200 if ready else 503, content=content)
