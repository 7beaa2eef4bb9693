"""Task tracker integration: webhook verification and reference data client."""

from .clickup_client import ClickUpClient, matcher_from_settings
from .webhook_verification import (
    SUPPORTED_PROVIDERS,
    WebhookVerifier,
    compute_signature,
    get_header,
    verify_webhook,
)

__all__ = [
    "ClickUpClient",
    "matcher_from_settings",
    "SUPPORTED_PROVIDERS",
    "WebhookVerifier",
    "compute_signature",
    "get_header",
    "verify_webhook",
]
