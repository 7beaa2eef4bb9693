"""
Standardized Error Handling

Provides:
- Exception classes mapped to the webhook's HTTP status codes
- Consistent error response format
- Correlation ID tracking in errors
- Best-effort Slack alert for 5xx errors, never awaited on the request path
"""

from datetime import datetime
from typing import Any, Dict, Optional

import structlog
from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ticket_routing.middleware.sanitize import sanitize_message, sanitize_object

logger = structlog.get_logger(__name__)

# ==================== Custom Exceptions ====================

class APIError(Exception):
    """Base class for API errors."""
    def __init__(
        self,
        message: str,
        error_code: str = None,
        status_code: int = 500,
        details: Dict[str, Any] = None,
        headers: Optional[Dict[str, str]] = None
    ):
        self.message = message
        self.error_code = error_code or "INTERNAL_ERROR"
        self.status_code = status_code
        self.details = details or {}
        self.headers = headers
        super().__init__(self.message)


class ValidationError(APIError):
    """Malformed webhook event (400)."""
    def __init__(self, message: str, field: str = None, **kwargs):
        details = {"field": field} if field else {}
        details.update(kwargs)
        super().__init__(
            message=message,
            error_code="VALIDATION_ERROR",
            status_code=400,
            details=details
        )


class AuthenticationError(APIError):
    """Missing/invalid signature or secret not configured (401)."""
    def __init__(self, message: str = "Invalid webhook signature", **kwargs):
        super().__init__(
            message=message,
            error_code="AUTHENTICATION_ERROR",
            status_code=401,
            details=kwargs
        )


class NotFoundError(APIError):
    """Resource not found (404)."""
    def __init__(self, resource: str, identifier: str = None, **kwargs):
        message = f"{resource} not found"
        if identifier:
            message += f": {identifier}"

        details = {"resource": resource}
        if identifier:
            details["identifier"] = identifier
        details.update(kwargs)

        super().__init__(
            message=message,
            error_code="NOT_FOUND",
            status_code=404,
            details=details
        )


class ReplayError(APIError):
    """Event already processed within the replay window (409)."""
    def __init__(self, replay_key: str, **kwargs):
        super().__init__(
            message="Replay detected: event already processed",
            error_code="REPLAY_DETECTED",
            status_code=409,
            details={"replay_key": replay_key, **kwargs}
        )


class RateLimitError(APIError):
    """Rate limit exceeded (429)."""
    def __init__(self, retry_after: int, **kwargs):
        details = {"retry_after_seconds": retry_after}
        details.update(kwargs)

        super().__init__(
            message="Too many requests",
            error_code="RATE_LIMIT_EXCEEDED",
            status_code=429,
            details=details,
            headers={"Retry-After": str(retry_after)}
        )


class WebhookProcessingError(APIError):
    """Unexpected failure while processing a webhook (500)."""
    def __init__(self, error: Exception, **kwargs):
        details = {
            "error_type": type(error).__name__,
            "message": sanitize_message(str(error)),
        }
        details.update(kwargs)
        super().__init__(
            message="Internal server error",
            error_code="WEBHOOK_PROCESSING_ERROR",
            status_code=500,
            details=details
        )


# ==================== Error Response Format ====================

def create_error_response(
    error: Exception,
    correlation_id: str = None
) -> tuple:
    """
    Create standardized error response.

    Format:
    {
        "error": {
            "code": "ERROR_CODE",
            "message": "Human-readable message",
            "details": {...},
            "correlation_id": "uuid"
        },
        "timestamp": "2025-10-28T10:30:45Z"
    }
    """
    if isinstance(error, APIError):
        error_code = error.error_code
        message = error.message
        details = error.details
        status_code = error.status_code
    elif isinstance(error, StarletteHTTPException):
        error_code = "NOT_FOUND" if error.status_code == 404 else "HTTP_ERROR"
        message = error.detail
        details = {}
        status_code = error.status_code
    else:
        error_code = "INTERNAL_ERROR"
        message = "An unexpected error occurred"
        details = {"error_type": type(error).__name__}
        status_code = 500

    response = {
        "error": {
            "code": error_code,
            "message": message,
            "details": sanitize_object(details)
        },
        "timestamp": datetime.utcnow().isoformat() + "Z"
    }

    if correlation_id:
        response["error"]["correlation_id"] = correlation_id

    return response, status_code


def _correlation_id(request: Request) -> Optional[str]:
    correlation_id = getattr(request.state, "correlation_id", None)
    if not correlation_id:
        correlation_id = structlog.contextvars.get_contextvars().get("correlation_id")
    return correlation_id


def _schedule_error_alert(request: Request, error_type: str, error_message: str, correlation_id: Optional[str]) -> None:
    """Fire-and-forget Slack alert for server errors, sent where the app's settings point."""
    from ticket_routing.core.config import get_settings
    from ticket_routing.middleware.slack_alerts import send_error_alert, spawn_alert

    settings = getattr(request.app.state, "settings", None) or get_settings()
    spawn_alert(
        send_error_alert(
            settings,
            error_type=error_type,
            error_message=sanitize_message(error_message),
            correlation_id=correlation_id,
            endpoint=str(request.url.path)
        )
    )


# ==================== Exception Handlers ====================

async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    """Handle custom API errors."""
    correlation_id = _correlation_id(request)

    log_func = logger.error if exc.status_code >= 500 else logger.warning
    log_func(
        "api_error",
        error_code=exc.error_code,
        error_message=exc.message,
        status_code=exc.status_code,
        details=exc.details
    )

    if exc.status_code >= 500:
        _schedule_error_alert(request, exc.error_code, exc.details.get("message", exc.message), correlation_id)

    response_data, status_code = create_error_response(exc, correlation_id=correlation_id)

    return JSONResponse(
        status_code=status_code,
        content=response_data,
        headers=exc.headers
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle standard HTTP exceptions (unknown routes, wrong methods)."""
    correlation_id = _correlation_id(request)

    logger.warning(
        "http_exception",
        status_code=exc.status_code,
        detail=exc.detail,
        path=request.url.path
    )

    response_data, status_code = create_error_response(exc, correlation_id=correlation_id)

    return JSONResponse(
        status_code=status_code,
        content=response_data,
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle request validation errors as 400."""
    correlation_id = _correlation_id(request)

    validation_errors = []
    for error in exc.errors():
        validation_errors.append({
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"]
        })

    logger.warning(
        "validation_error",
        path=request.url.path,
        errors=validation_errors
    )

    response_data, status_code = create_error_response(
        ValidationError("Request validation failed", validation_errors=validation_errors),
        correlation_id=correlation_id
    )

    return JSONResponse(status_code=status_code, content=response_data)


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions (500)."""
    correlation_id = _correlation_id(request)

    logger.error(
        "unexpected_error",
        error_type=type(exc).__name__,
        error_message=str(exc),
        path=request.url.path,
        exc_info=True
    )

    _schedule_error_alert(request, type(exc).__name__, str(exc), correlation_id)

    response_data, status_code = create_error_response(exc, correlation_id=correlation_id)
    if correlation_id:
        response_data["error"]["message"] += f". Reference: {correlation_id}"

    return JSONResponse(status_code=status_code, content=response_data)


def register_exception_handlers(app) -> None:
    """Attach all handlers to a FastAPI app."""
    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
