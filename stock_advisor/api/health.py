"""
Health check endpoints for monitoring and connectivity verification.
"""

from typing import Any

import structlog
from fastapi import APIRouter, Depends, Request

from .. import __version__
from ..core.config import Settings, get_settings
from ..core.exceptions import PersistenceUnavailableError
from ..database.redis import RedisStore
from ..services.conversation_store import PersistenceGateway
from .dependencies.advisor_deps import get_conversation_store

logger = structlog.get_logger()

router = APIRouter()


def get_redis(request: Request) -> RedisStore | None:
    """Redis connection from app state; None when identities are kept in memory."""
    return getattr(request.app.state, "redis", None)


async def _conversation_store_status(gateway: PersistenceGateway) -> dict[str, Any]:
    try:
        result = await gateway.probe()
    except PersistenceUnavailableError as e:
        logger.warning("Conversation store probe failed", error=str(e))
        return {"connected": False, "error": e.message}
    return {"connected": True, "message": result.get("message", "")}


@router.get("/health")
async def health_check(
    redis_store: RedisStore | None = Depends(get_redis),
    gateway: PersistenceGateway = Depends(get_conversation_store),
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    """
    Check connectivity to the identity store and the conversation store.

    The advisor keeps working when either is down (memory for this session
    only), so failures report "degraded" rather than an error status.
    """
    logger.info("Health check requested")

    if redis_store is None:
        redis_status: dict[str, Any] = {"connected": True, "mode": "in-memory"}
    else:
        redis_status = await redis_store.health_check()

    store_status = await _conversation_store_status(gateway)

    all_healthy = bool(redis_status.get("connected")) and bool(
        store_status.get("connected")
    )

    health_response = {
        "status": "ok" if all_healthy else "degraded",
        "environment": settings.environment,
        "version": __version__,
        "dependencies": {
            "redis": redis_status,
            "conversation_store": store_status,
        },
        "configuration": {
            "llm_configured": bool(settings.dashscope_api_key),
            "default_llm_model": settings.default_llm_model,
        },
    }

    if all_healthy:
        logger.info("Health check passed", status="healthy")
    else:
        logger.warning(
            "Health check failed",
            status="degraded",
            dependencies=health_response["dependencies"],
        )

    return health_response


@router.get("/health/live")
async def liveness_check() -> dict[str, Any]:
    """Simple check that the application is running."""
    return {"alive": True, "status": "ok"}
