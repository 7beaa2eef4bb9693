"""
Slack Alert Integration

Sends security anomalies and server errors to a Slack incoming webhook.
All sends are best-effort with a bounded timeout: failures are logged and
never raised to the caller.

The destination (webhook URL, channel, timeout) is always passed in by the
owner of the settings, so an app built with injected Settings alerts where
those Settings point.
"""

import asyncio
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

import aiohttp
import structlog

from ticket_routing.core.config import Settings

logger = structlog.get_logger(__name__)

# Strong references to in-flight fire-and-forget sends
_background_tasks: Set[asyncio.Task] = set()


async def post_slack_payload(
    payload: Dict[str, Any],
    webhook_url: Optional[str],
    channel: Optional[str] = None,
    timeout: float = 5.0
) -> bool:
    """
    POST a payload to a Slack incoming webhook.

    Args:
        payload: Slack message body
        webhook_url: Incoming webhook URL, None when Slack is not configured
        channel: Channel override, added when the payload has none
        timeout: Total request timeout in seconds

    Returns:
        True if sent successfully, False otherwise
    """
    if not webhook_url:
        logger.warning("slack_webhook_not_configured")
        return False

    if channel and "channel" not in payload:
        payload = {**payload, "channel": channel}

    try:
        async with aiohttp.ClientSession() as session:
            async with session.post(
                webhook_url,
                json=payload,
                timeout=aiohttp.ClientTimeout(total=timeout)
            ) as response:
                if response.status == 200:
                    logger.info("slack_alert_sent")
                    return True
                logger.error(
                    "slack_alert_failed",
                    status=response.status,
                    response=await response.text()
                )
                return False
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        logger.error("slack_alert_exception", error=str(e), error_type=type(e).__name__)
        return False


def slack_notifier(settings: Settings) -> Callable[[Dict[str, Any]], Awaitable[bool]]:
    """post_slack_payload bound to the webhook destination in `settings`."""
    async def notify(payload: Dict[str, Any]) -> bool:
        return await post_slack_payload(
            payload,
            webhook_url=settings.slack_webhook_url,
            channel=settings.slack_alert_channel,
            timeout=settings.alert_timeout_seconds,
        )
    return notify


def spawn_alert(coro) -> Optional[asyncio.Task]:
    """Run an alert coroutine in the background, detached from the request."""
    try:
        task = asyncio.get_running_loop().create_task(coro)
    except RuntimeError:
        coro.close()
        logger.warning("slack_alert_not_scheduled", reason="no_running_event_loop")
        return None
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


async def send_slack_alert(
    settings: Settings,
    title: str,
    message: str,
    level: str = "error",
    details: Optional[Dict[str, Any]] = None
) -> bool:
    """
    Send a simple attachment-style alert.

    Args:
        settings: Settings carrying the Slack destination and service name
        title: Alert title
        message: Alert message
        level: Severity level (error, warning, info)
        details: Additional context rendered as fields
    """
    colors = {
        "error": "#FF0000",
        "warning": "#FFA500",
        "info": "#0000FF",
    }

    slack_payload = {
        "attachments": [
            {
                "color": colors.get(level, "#808080"),
                "title": title,
                "text": message,
                "footer": settings.service_name,
                "ts": int(datetime.utcnow().timestamp()),
                "fields": [
                    {"title": key.replace("_", " ").title(), "value": str(value), "short": True}
                    for key, value in (details or {}).items()
                ]
            }
        ]
    }

    return await slack_notifier(settings)(slack_payload)


async def send_error_alert(
    settings: Settings,
    error_type: str,
    error_message: str,
    correlation_id: Optional[str] = None,
    endpoint: Optional[str] = None
) -> None:
    """Send a server-error alert to Slack."""
    if not settings.slack_webhook_url:
        return

    details = {}
    if correlation_id:
        details["Correlation ID"] = correlation_id
    if endpoint:
        details["Endpoint"] = endpoint

    await send_slack_alert(
        settings,
        title=f"Webhook Error: {error_type}",
        message=error_message,
        level="error",
        details=details
    )


def build_security_alert_blocks(
    service: str,
    failure_count: int,
    unique_sources: int,
    top_reasons: List[tuple],
    threshold: int,
    window_minutes: float
) -> Dict[str, Any]:
    """Block Kit message for a 401 anomaly."""
    reasons_text = "\n".join(f"• {reason}: {count}" for reason, count in top_reasons) or "• unknown"
    window_label = f"{window_minutes:g} minutes"

    return {
        "text": f"Security anomaly detected: {failure_count} auth failures in {window_label}",
        "blocks": [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": "Security Anomaly Detected"}
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Service:*\n{service}"},
                    {"type": "mrkdwn", "text": "*Event:*\nHigh 401 rate"},
                    {"type": "mrkdwn", "text": f"*Failures:*\n{failure_count} in {window_label}"},
                    {"type": "mrkdwn", "text": f"*Unique sources:*\n{unique_sources}"}
                ]
            },
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": f"*Top failure reasons:*\n{reasons_text}"}
            },
            {
                "type": "section",
                "text": {
                    "type": "mrkdwn",
                    "text": "*Possible causes:*\n• HMAC secret mismatch\n• Replay attacks\n• Webhook misconfiguration\n• Malicious requests"
                }
            },
            {
                "type": "context",
                "elements": [
                    {"type": "mrkdwn", "text": f"Threshold: {threshold} failures in {window_label}"}
                ]
            }
        ]
    }
