"""
Structured Logging Configuration

Uses structlog for JSON-formatted logs with correlation IDs.

Features:
- Request correlation IDs (track a webhook delivery across log lines)
- JSON output (easily parseable by log aggregators)
- Sanitization of secrets/tokens on every event, tracebacks included
- Request/response logging with duration
- Security and routing event helpers
"""

import logging
import time
import uuid
from typing import Optional

import structlog
from fastapi import Request

from ticket_routing.middleware.sanitize import sanitize_object, sanitize_processor

# ==================== Configuration ====================

def configure_logging(log_level: str = "INFO", json_logs: bool = True):
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_logs: If True, output JSON format. If False, use console format.
    """
    shared = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.format_exc_info,
    ]

    if json_logs:
        # JSON format for production
        processors = shared + [
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            sanitize_processor,
            structlog.processors.JSONRenderer()
        ]
    else:
        # Console format for local development
        processors = shared + [
            structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S", utc=False),
            sanitize_processor,
            structlog.dev.ConsoleRenderer()
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Also configure standard library logging (for third-party libs)
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper()),
        force=True,
    )


# ==================== Correlation ID Middleware ====================

async def correlation_id_middleware(request: Request, call_next):
    """
    Middleware to add correlation IDs to all requests.

    Also tracks request duration and logs request/response. Headers are
    sanitized before logging (X-Signature and Authorization are redacted).
    """
    correlation_id = (
        request.headers.get("X-Correlation-ID")
        or request.headers.get("X-Request-ID")
        or str(uuid.uuid4())
    )
    request.state.correlation_id = correlation_id

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        correlation_id=correlation_id,
        method=request.method,
        path=request.url.path,
        client_ip=request.client.host if request.client else "unknown"
    )

    logger = structlog.get_logger()

    start_time = time.time()
    logger.info(
        "request_started",
        headers=sanitize_object(dict(request.headers)),
        query_params=dict(request.query_params) if request.query_params else None,
    )

    try:
        response = await call_next(request)

        duration = time.time() - start_time
        response.headers["X-Correlation-ID"] = correlation_id

        logger.info(
            "request_completed",
            status_code=response.status_code,
            duration_seconds=round(duration, 3)
        )

        return response

    except Exception as e:
        duration = time.time() - start_time

        logger.error(
            "request_failed",
            error=str(e),
            error_type=type(e).__name__,
            duration_seconds=round(duration, 3),
            exc_info=True
        )

        raise

    finally:
        structlog.contextvars.clear_contextvars()


# ==================== Helper Functions ====================

def get_logger(name: Optional[str] = None):
    """
    Get a structured logger instance.

    Usage:
        logger = get_logger(__name__)
        logger.info("ticket_fetched", task_id="abc123")
    """
    return structlog.get_logger(name)


def log_with_context(**context):
    """Add context that persists for the rest of the request."""
    structlog.contextvars.bind_contextvars(**context)


def log_integration_call(integration: str, operation: str, duration: float, success: bool = True, error: str = None):
    """
    Log an external integration call.

    Usage:
        log_integration_call("clickup", "get_task", duration=0.234, success=True)
    """
    logger = structlog.get_logger()

    if success:
        logger.info(
            "integration_call_completed",
            integration=integration,
            operation=operation,
            duration_seconds=round(duration, 3)
        )
    else:
        logger.error(
            "integration_call_failed",
            integration=integration,
            operation=operation,
            duration_seconds=round(duration, 3),
            error=error
        )


def log_security_event(event_type: str, severity: str = "info", **details):
    """
    Log a security-relevant event.

    Usage:
        log_security_event("signature_invalid", severity="warning", ip="1.2.3.4")
    """
    logger = structlog.get_logger()

    log_func = getattr(logger, severity.lower(), logger.info)
    log_func("security_event", event_type=event_type, **details)


def log_routing_decision(decision) -> None:
    """
    Log a routing decision, successful or not.

    Usage:
        log_routing_decision(decision)
    """
    logger = structlog.get_logger()
    log_func = logger.warning if decision.errors else logger.info
    log_func(
        "routing_decision",
        task_id=decision.task_id,
        cx_owner=decision.cx_owner,
        ops_owner=decision.ops_owner,
        routing_source=decision.routing_source.to_dict(),
        customer_key=decision.customer_key,
        market=decision.market,
        tags=decision.tags,
        errors=[e.to_dict() for e in decision.errors],
    )
