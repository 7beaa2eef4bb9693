"""
API Dependencies

Shared dependencies for FastAPI endpoints: the process-wide RoutingService and
per-source rate limiting.
"""
from fastapi import Depends, Request

from ticket_routing.middleware.logging_config import get_logger
from ticket_routing.services.routing_service import RoutingService

logger = get_logger(__name__)


def get_routing_service(request: Request) -> RoutingService:
    """The RoutingService created by the app factory."""
    return request.app.state.routing_service


def get_source_key(request: Request) -> str:
    """
    Identify the caller for rate limiting and alerting.

    Uses the first X-Forwarded-For hop when present (the service normally sits
    behind a proxy), else the socket peer address.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    return request.client.host if request.client else "unknown"


async def enforce_rate_limit(
    request: Request,
    service: RoutingService = Depends(get_routing_service)
) -> None:
    """
    Dependency that rejects callers over their request allowance.

    Usage:
        @router.post("/webhook/{provider}", dependencies=[Depends(enforce_rate_limit)])

    Raises:
        RateLimitError: 429 with Retry-After
    """
    service.check_rate_limit(get_source_key(request))
