"""
Webhook Signature Verification

Verifies webhook authenticity using the HMAC signature the task tracker
sends with every delivery. Prevents spoofed events from reassigning tickets.

Supported Providers:
- ClickUp: HMAC-SHA256 over the raw body, hex-encoded, X-Signature header

Security Notes:
- The HMAC is always computed over the exact bytes received, never over a
  re-serialized JSON body (key order and whitespace would not survive)
- Lengths are compared first, then hmac.compare_digest() on equal-length input
- Failed verifications are logged as security events and counted for alerting
"""
import hashlib
import hmac
from typing import Mapping, Optional

import structlog

from ticket_routing.core.exceptions import SignatureVerificationError

logger = structlog.get_logger(__name__)

SIGNATURE_HEADER = "X-Signature"

# Rejection reasons (also used as alerting breakdown keys)
REASON_SECRET_NOT_CONFIGURED = "secret_not_configured"
REASON_MISSING_SIGNATURE = "missing_signature"
REASON_LENGTH_MISMATCH = "signature_length_mismatch"
REASON_SIGNATURE_MISMATCH = "signature_mismatch"


def get_header(headers: Mapping[str, str], name: str) -> Optional[str]:
    """Case-insensitive header lookup over any mapping."""
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return None


def compute_signature(body: bytes, secret: str) -> str:
    """HMAC-SHA256 of body as lowercase hex."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


class WebhookVerifier:
    """Verifies webhook signatures for the supported providers."""

    @staticmethod
    def verify_clickup(body: bytes, signature: Optional[str], secret: Optional[str]) -> None:
        """
        Verify a ClickUp webhook signature.

        ClickUp uses HMAC-SHA256 with hex-encoded output.
        Header: X-Signature

        Args:
            body: Raw webhook body (bytes)
            signature: Value of the X-Signature header
            secret: Shared webhook secret

        Raises:
            SignatureVerificationError: with the rejection reason
        """
        if not secret:
            raise SignatureVerificationError(
                REASON_SECRET_NOT_CONFIGURED, "Webhook secret not configured"
            )

        if not signature:
            raise SignatureVerificationError(REASON_MISSING_SIGNATURE, "Missing webhook signature")

        expected = compute_signature(body, secret)
        presented = signature.strip().lower()

        # Length check first: never compare unequal-length values byte-by-byte
        if len(presented) != len(expected):
            raise SignatureVerificationError(REASON_LENGTH_MISMATCH, "Invalid webhook signature")

        if not hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8")):
            logger.warning(
                "clickup_signature_mismatch",
                provided=presented[:8],
                expected=expected[:8]
            )
            raise SignatureVerificationError(REASON_SIGNATURE_MISMATCH, "Invalid webhook signature")


SUPPORTED_PROVIDERS = {
    "clickup": WebhookVerifier.verify_clickup,
}


def verify_webhook(
    provider: str,
    body: bytes,
    headers: Mapping[str, str],
    secret: Optional[str]
) -> None:
    """
    Verify a webhook for any supported provider.

    Args:
        provider: Provider name from the URL (clickup)
        body: Raw webhook body (bytes)
        headers: Request headers (any capitalization)
        secret: Shared webhook secret

    Raises:
        ValueError: If provider is not supported
        SignatureVerificationError: If verification fails
    """
    verifier = SUPPORTED_PROVIDERS.get(provider.lower())
    if verifier is None:
        raise ValueError(f"Unsupported webhook provider: {provider}")

    verifier(body, get_header(headers, SIGNATURE_HEADER), secret)
