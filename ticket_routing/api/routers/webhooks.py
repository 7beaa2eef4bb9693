"""
Webhook Endpoints Router

Provides:
- POST /webhook/{provider}: ticket events from the task tracker (clickup)

The endpoint is PUBLIC but every delivery must carry a valid HMAC signature
over its raw body. Rate limiting (when enabled) runs before verification.
"""

from fastapi import APIRouter, Depends, Request

from ticket_routing.api.dependencies import enforce_rate_limit, get_routing_service, get_source_key
from ticket_routing.middleware.logging_config import get_logger
from ticket_routing.services.routing_service import RoutingService

logger = get_logger(__name__)

router = APIRouter(
    tags=["webhooks"],
    responses={404: {"description": "Not found"}},
)


@router.post("/webhook/{provider}", dependencies=[Depends(enforce_rate_limit)])
async def handle_webhook(
    provider: str,
    request: Request,
    service: RoutingService = Depends(get_routing_service)
):
    """
    Handle a ticket webhook.

    Flow:
    1. Verify X-Signature (HMAC-SHA256 hex of the raw body)
    2. Validate the event (event, task_id)
    3. Ignore event types other than taskCreated / taskUpdated
    4. Reject replays of an already processed event (409)
    5. Skip updates to tickets that already have assignees
    6. Route the ticket and write owners + tags back

    Responses: 200, 400, 401, 404 (unknown provider), 409, 429, 500
    """
    # Signature verification needs the exact bytes received
    body = await request.body()

    response = await service.handle_webhook(
        provider,
        body,
        request.headers,
        get_source_key(request),
    )

    logger.info("webhook_response", response=response)
    return response
