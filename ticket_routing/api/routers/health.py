"""
Health Check Endpoints Router

Provides health check endpoints for monitoring and load balancers.
"""
import time
from datetime import datetime

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from ticket_routing.api.dependencies import get_routing_service
from ticket_routing.middleware.logging_config import get_logger
from ticket_routing.services.routing_service import RoutingService

logger = get_logger(__name__)

# Router
router = APIRouter(
    tags=["health"],
    responses={404: {"description": "Not found"}},
)


@router.get("/health")
async def health_check(request: Request):
    """
    Basic health check endpoint.

    Returns 200 if service is running.
    """
    settings = request.app.state.settings
    started_at = request.app.state.started_at
    return {
        "status": "healthy",
        "service": settings.service_name,
        "environment": settings.environment,
        "uptime_seconds": round(time.monotonic() - started_at, 3),
        "timestamp": datetime.utcnow().isoformat()
    }


@router.get("/ready")
async def readiness_probe(service: RoutingService = Depends(get_routing_service)):
    """
    Readiness probe.

    Checks that the API token, team id and webhook secret are configured.

    Returns 200 if ready to serve traffic, 503 if not ready.
    """
    missing = service.settings.missing_required()
    stats = service.get_stats()

    content = {
        "status": "ready" if not missing else "not_ready",
        "missing": missing,
        "alerting": stats["alerting"],
        "rate_limiting": stats["rate_limiting"],
        "replay_cache": stats["replay_cache"],
        "timestamp": datetime.utcnow().isoformat()
    }

    if missing:
        logger.warning("readiness_check_failed", missing=missing)
        return JSONResponse(status_code=503, content=content)

    return content
