"""
Routing Service

Owns the process-wide webhook state (replay cache, rate limiter, 401 alerting,
reference-data client) and runs each delivery through the pipeline:

    Received -> Authenticated -> Deduplicated -> Idempotency-Checked
             -> Routed -> Applied -> Responded

with early exits to Rejected (401), RateLimited (429) and Replayed (409).
Each request runs the pipeline sequentially; the shared caches are safe for
concurrent requests. State is per process and is not shared across replicas.
"""

import asyncio
from typing import Any, Dict, List, Mapping, Optional

import httpx
import structlog
from pydantic import ValidationError as PydanticValidationError

from ticket_routing.core.config import Settings
from ticket_routing.core.exceptions import ReferenceDataError, SignatureVerificationError
from ticket_routing.integrations.ticketing import (
    SUPPORTED_PROVIDERS,
    ClickUpClient,
    matcher_from_settings,
    verify_webhook,
)
from ticket_routing.integrations.ticketing.webhook_verification import REASON_SECRET_NOT_CONFIGURED
from ticket_routing.middleware.error_handling import (
    AuthenticationError,
    NotFoundError,
    RateLimitError,
    ReplayError,
    ValidationError,
    WebhookProcessingError,
)
from ticket_routing.middleware.logging_config import log_security_event, log_with_context
from ticket_routing.middleware.sanitize import sanitize_message
from ticket_routing.middleware.slack_alerts import slack_notifier
from ticket_routing.models.events import InboundEvent, WebhookPayload, parse_body
from ticket_routing.models.fields import FieldMatcher
from ticket_routing.models.records import RoutingDecision
from ticket_routing.routing.engine import RoutingEngine
from ticket_routing.security import RateLimiter, ReplayCache, SecurityAlerting

logger = structlog.get_logger(__name__)


class RoutingService:
    """Webhook pipeline plus the in-memory state it shares across requests."""

    def __init__(
        self,
        settings: Settings,
        reference_client,
        replay_cache: Optional[ReplayCache] = None,
        rate_limiter: Optional[RateLimiter] = None,
        alerting: Optional[SecurityAlerting] = None,
        matcher: Optional[FieldMatcher] = None
    ):
        """
        Args:
            settings: Application settings
            reference_client: Ticket + reference data client (ClickUpClient or a test double)
            replay_cache: Replay guard, defaults to one with the configured TTL
            rate_limiter: Per-source limiter, None when rate limiting is disabled
            alerting: 401 alerting, defaults to one with the configured thresholds
            matcher: Custom-field matcher, defaults to the configured key field ids
        """
        self.settings = settings
        self.reference_client = reference_client
        self.replay_cache = replay_cache or ReplayCache(ttl_seconds=settings.replay_ttl_seconds)
        self.rate_limiter = rate_limiter
        self.alerting = alerting or SecurityAlerting(
            threshold=settings.alert_failure_threshold,
            window_seconds=settings.alert_window_seconds,
            cooldown_seconds=settings.alert_cooldown_seconds,
            service_name=settings.service_name,
            transport_configured=lambda: bool(settings.slack_webhook_url),
            notifier=slack_notifier(settings),
        )
        self.matcher = matcher or matcher_from_settings(settings)
        self.engine = RoutingEngine(
            reference_client,
            matcher=self.matcher,
            fallback_cx_owner=settings.fallback_cx_owner,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        reference_client=None,
        http_client: Optional[httpx.AsyncClient] = None
    ) -> "RoutingService":
        if reference_client is None:
            reference_client = ClickUpClient.from_settings(settings, http_client=http_client)

        rate_limiter = None
        if settings.enable_rate_limiting:
            rate_limiter = RateLimiter(
                burst_limit=settings.rate_limit_burst,
                sustain_limit=settings.rate_limit_sustain,
                window_seconds=settings.rate_limit_window_seconds,
                idle_seconds=settings.rate_limit_idle_seconds,
            )

        return cls(settings, reference_client, rate_limiter=rate_limiter)

    @property
    def rate_limiting_enabled(self) -> bool:
        return self.rate_limiter is not None

    async def aclose(self) -> None:
        close = getattr(self.reference_client, "aclose", None)
        if close is not None:
            await close()

    # ==================== Rate limiting ====================

    def check_rate_limit(self, source_key: str) -> None:
        """
        Raises:
            RateLimitError: source exceeded its allowance (429 with Retry-After)
        """
        if self.rate_limiter is None:
            return

        result = self.rate_limiter.check_limit(source_key)
        if not result.allowed:
            log_security_event(
                "rate_limited",
                severity="warning",
                source_key=source_key,
                retry_after_seconds=result.retry_after_seconds,
            )
            raise RateLimitError(result.retry_after_seconds)

    # ==================== Authentication ====================

    def authenticate(
        self,
        provider: str,
        body: bytes,
        headers: Mapping[str, str],
        source_key: str
    ) -> None:
        """
        Verify the delivery's signature.

        Raises:
            NotFoundError: unsupported provider
            AuthenticationError: missing/invalid signature or no secret configured
        """
        if provider.lower() not in SUPPORTED_PROVIDERS:
            raise NotFoundError("Webhook provider", provider)

        try:
            verify_webhook(provider, body, headers, self.settings.webhook_hmac_secret)
        except SignatureVerificationError as e:
            if e.reason == REASON_SECRET_NOT_CONFIGURED:
                logger.error("webhook_secret_not_configured", provider=provider)

            log_security_event(
                "signature_invalid",
                severity="warning",
                provider=provider,
                source_key=source_key,
                reason=e.reason,
            )
            self.alerting.record_401(source_key, e.reason)
            raise AuthenticationError(e.message, reason=e.reason) from e

        log_security_event("signature_valid", severity="info", provider=provider, source_key=source_key)

    # ==================== Pipeline ====================

    async def handle_webhook(
        self,
        provider: str,
        body: bytes,
        headers: Mapping[str, str],
        source_key: str
    ) -> Dict[str, Any]:
        """
        Run one delivery through the full pipeline.

        Returns:
            The 200 response body

        Raises:
            APIError subclasses for every non-200 outcome
        """
        self.authenticate(provider, body, headers, source_key)
        event = self.parse_event(body)
        return await self.process_event(event)

    def parse_event(self, body: bytes) -> InboundEvent:
        """
        Raises:
            ValidationError: body is not a JSON object or lacks event / task_id
        """
        try:
            data = parse_body(body)
        except ValueError as e:
            raise ValidationError(str(e)) from e

        logger.info("webhook_received", body=data)

        try:
            payload = WebhookPayload.model_validate(data)
        except PydanticValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(loc) for loc in first["loc"]) or None
            raise ValidationError(f"Invalid webhook event: {first['msg']}", field=field) from e

        return InboundEvent.from_payload(payload, body)

    async def process_event(self, event: InboundEvent) -> Dict[str, Any]:
        """Process an authenticated, well-formed event."""
        log_with_context(task_id=event.task_id, event_type=event.event_type)

        if not event.is_processed_type:
            logger.info("webhook_event_ignored", event_type=event.event_type)
            return {"message": "Event ignored", "event": event.event_type}

        is_replay, replay_key = self.replay_cache.check_and_mark(event)
        if is_replay:
            log_security_event("replay_detected", severity="warning", replay_key=replay_key)
            raise ReplayError(replay_key)

        try:
            return await self._route_event(event)
        except Exception as e:
            # Let the provider's retry of a failed delivery through
            self.replay_cache.forget(replay_key)
            logger.error(
                "webhook_processing_failed",
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            raise WebhookProcessingError(e) from e

    async def _route_event(self, event: InboundEvent) -> Dict[str, Any]:
        ticket = await self.reference_client.get_task(event.task_id)

        # Never override a manual assignment
        if event.is_update and ticket.assignees:
            logger.info("ticket_already_routed", assignees=ticket.assignee_ids)
            return {
                "message": "Task already routed",
                "task_id": event.task_id,
                "assignees": ticket.assignee_ids,
            }

        decision = await self.engine.route_ticket(ticket)
        result = await self.apply_routing(event.task_id, decision)

        return {
            "message": "Routing applied",
            "task_id": event.task_id,
            "routing": decision.to_summary(),
            "result": result,
        }

    async def apply_routing(self, task_id: str, decision: RoutingDecision) -> Dict[str, Any]:
        """
        Write the decision back to the ticket.

        One assignee update listing every owner, then one call per tag. A
        failed write is recorded and the remaining writes still run.
        """
        updates: List[Dict[str, Any]] = []
        errors: List[Dict[str, Any]] = []

        owners = decision.owners
        if owners:
            try:
                await self.reference_client.add_assignees(task_id, owners)
                updates.append({"operation": "add_assignees", "assignees": owners})
            except (ReferenceDataError, httpx.HTTPError) as e:
                errors.append(_apply_error("add_assignees", e, assignees=owners))

        for tag in decision.tags:
            try:
                await self.reference_client.add_tag(task_id, tag)
                updates.append({"operation": "add_tag", "tag": tag})
            except (ReferenceDataError, httpx.HTTPError) as e:
                errors.append(_apply_error("add_tag", e, tag=tag))

        if errors:
            logger.warning("routing_apply_partial", updates=len(updates), errors=errors)
        else:
            logger.info("routing_applied", updates=len(updates))

        return {"success": not errors, "updates": updates, "errors": errors}

    # ==================== Maintenance ====================

    def sweep(self) -> Dict[str, int]:
        """Evict expired replay entries and idle rate-limit sources."""
        swept = {"replay_cache": self.replay_cache.sweep()}
        if self.rate_limiter is not None:
            swept["rate_limiter"] = self.rate_limiter.sweep()
        return swept

    async def run_sweeps(self, interval_seconds: Optional[float] = None) -> None:
        """Periodic sweep loop, cancelled on shutdown."""
        interval = interval_seconds or self.settings.sweep_interval_seconds
        logger.info("sweep_loop_started", interval_seconds=interval)
        while True:
            await asyncio.sleep(interval)
            self.sweep()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "replay_cache": self.replay_cache.get_stats(),
            "rate_limiting": {
                "enabled": self.rate_limiting_enabled,
                **(self.rate_limiter.get_stats() if self.rate_limiter else {}),
            },
            "alerting": {
                "slack_configured": bool(self.settings.slack_webhook_url),
                **self.alerting.get_stats(),
            },
        }


def _apply_error(operation: str, error: Exception, **context) -> Dict[str, Any]:
    return {
        "operation": operation,
        "error": sanitize_message(str(error)),
        "error_type": type(error).__name__,
        **context,
    }
