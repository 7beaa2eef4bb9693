"""
Ticket Routing Webhook - FastAPI application

Receives task-tracker webhooks, verifies them, routes each new ticket to a
CX owner and an Ops owner, and writes the result back to the ticket.

Run locally:
    uvicorn ticket_routing.main:app --reload
"""
import asyncio
import contextlib
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from ticket_routing import __version__
from ticket_routing.api.routers import health_router, webhooks_router
from ticket_routing.core.config import Settings, get_settings
from ticket_routing.middleware.error_handling import register_exception_handlers
from ticket_routing.middleware.logging_config import (
    configure_logging,
    correlation_id_middleware,
    get_logger,
)
from ticket_routing.services.routing_service import RoutingService

logger = get_logger(__name__)


# ==================== Application Lifespan ====================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    settings: Settings = app.state.settings
    service: RoutingService = app.state.routing_service

    logger.info(
        "application_starting",
        version=__version__,
        service=settings.service_name,
        environment=settings.environment,
        rate_limiting=service.rate_limiting_enabled,
    )

    missing = settings.missing_required()
    if missing:
        # Boot anyway; /ready reports 503 until configured
        logger.error("configuration_incomplete", missing=missing)

    sweep_task = asyncio.create_task(service.run_sweeps())

    # ==================== Application Running ====================

    yield

    # ==================== Shutdown ====================
    logger.info("application_stopping")

    sweep_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await sweep_task

    await service.aclose()
    logger.info("application_stopped")


# ==================== FastAPI Application ====================

def create_app(
    settings: Optional[Settings] = None,
    service: Optional[RoutingService] = None
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Settings to use, defaults to get_settings()
        service: Prebuilt RoutingService (tests inject one with a fake reference client)
    """
    settings = settings or get_settings()
    configure_logging(log_level=settings.log_level, json_logs=settings.json_logs)

    app = FastAPI(
        title="Ticket Routing Webhook",
        description="Routes new tickets to CX and Ops owners from customer, unit and market reference data.",
        version=__version__,
        redirect_slashes=False,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.routing_service = service or RoutingService.from_settings(settings)
    app.state.started_at = time.monotonic()

    app.middleware("http")(correlation_id_middleware)
    register_exception_handlers(app)

    app.include_router(health_router)
    app.include_router(webhooks_router)

    return app


app = create_app()
