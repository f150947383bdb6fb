from typing import Any

from fastapi import APIRouter, Depends, Request

from gateway.api.dependencies import get_gateway
from gateway.application.services.gateway import Gateway
from gateway.core.logging import get_logger, log_fields

logger = get_logger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health", summary="Readiness probe")
async def health(request: Request, gateway: Gateway = Depends(get_gateway)) -> dict[str, Any]:
    """Report cache store reachability and per-provider availability."""

    health_status: dict[str, Any] = {
        "status": "healthy",
        "dependencies": {"redis": "unknown"},
        "providers": {},
    }

    redis = request.app.state.redis
    try:
        await redis.ping()
        in_memory = request.app.state.settings.redis_url == "memory://"
        health_status["dependencies"]["redis"] = "healthy (in-memory)" if in_memory else "healthy"
    except Exception as e:  # noqa: BLE001
        logger.warning("Redis ping failed", extra=log_fields(error=str(e)))
        health_status["dependencies"]["redis"] = f"unhealthy: {str(e)}"
        health_status["status"] = "degraded"

    for record in await gateway.check_health():
        health_status["providers"][record.provider_id] = {
            "available": gateway.registry.is_available(record.provider_id),
            "failure_count": record.failure_count,
            "quota_remaining": record.quota.remaining if record.quota else None,
        }
        if not health_status["providers"][record.provider_id]["available"]:
            health_status["status"] = "degraded"

    return health_status
