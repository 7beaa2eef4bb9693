"""
Log Sanitization

Removes secrets and tokens before anything is written to the logs:
- sanitize_object(): redacts values under sensitive keys, recursively
- sanitize_message(): scrubs token-shaped substrings from free text
- sanitize_processor(): structlog processor applying both to every event
"""

import re
from typing import Any

REDACTED = "[REDACTED]"

SENSITIVE_KEYS = (
    "clickup_api_token",
    "slack_bot_token",
    "webhook_hmac_secret",
    "slack_signing_secret",
    "slack_webhook_url",
    "token",
    "authorization",
    "x-signature",
    "password",
    "secret",
    "cookie",
)

TOKEN_PATTERNS = (
    (re.compile(r"pk_\d+_[A-Z0-9]+", re.IGNORECASE), "pk_[REDACTED]"),
    (re.compile(r"xox[abpr]-[0-9]+-[0-9]+-[a-zA-Z0-9-]+", re.IGNORECASE), "xoxb-[REDACTED]"),
    (re.compile(r"ghu_[a-zA-Z0-9]+", re.IGNORECASE), "ghu_[REDACTED]"),
    (re.compile(r"https://hooks\.slack\.com/services/[A-Za-z0-9/_-]+"), "https://hooks.slack.com/services/[REDACTED]"),
)


def is_sensitive_key(key: Any) -> bool:
    lower_key = str(key).lower()
    return any(fragment in lower_key for fragment in SENSITIVE_KEYS)


def sanitize_message(message: Any) -> Any:
    """Redact token-shaped substrings. Non-strings are returned unchanged."""
    if not isinstance(message, str):
        return message

    sanitized = message
    for pattern, replacement in TOKEN_PATTERNS:
        sanitized = pattern.sub(replacement, sanitized)
    return sanitized


def sanitize_object(obj: Any) -> Any:
    """Return a copy of obj with sensitive keys redacted and strings scrubbed."""
    if isinstance(obj, dict):
        return {
            key: REDACTED if is_sensitive_key(key) else sanitize_object(value)
            for key, value in obj.items()
        }
    if isinstance(obj, (list, tuple)):
        return [sanitize_object(item) for item in obj]
    return sanitize_message(obj)


def sanitize_processor(logger, method_name, event_dict):
    """structlog processor: sanitize the whole event dict before rendering."""
    sanitized = {}
    for key, value in event_dict.items():
        if key == "event":
            sanitized[key] = sanitize_message(value)
        elif is_sensitive_key(key):
            sanitized[key] = REDACTED
        else:
            sanitized[key] = sanitize_object(value)
    return sanitized
