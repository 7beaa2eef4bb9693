"""
Exception hierarchy for the ticket routing webhook.

Structured error handling with specific error types. HTTP-facing errors live
in ticket_routing.middleware.error_handling; these are domain errors raised
by integrations and verification code.
"""

from typing import Dict, Any, Optional


class TicketRoutingError(Exception):
    """Base exception for all ticket routing errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ReferenceDataError(TicketRoutingError):
    """Raised when the task-tracking API returns an error or unparsable reply."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.status_code = status_code
        super().__init__(message, details)


class SignatureVerificationError(TicketRoutingError):
    """Raised when an inbound webhook fails signature verification."""

    def __init__(self, reason: str, message: Optional[str] = None):
        self.reason = reason
        super().__init__(message or f"Webhook signature rejected: {reason}", {"reason": reason})
