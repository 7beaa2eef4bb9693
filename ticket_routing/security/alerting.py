"""
Security Alerting

Watches authentication failures (401s) over a trailing window and raises a
throttled alert when they cross a threshold:
- 20 failures within 5 minutes triggers an alert attempt
- At most one attempt per 15-minute cooldown
- Without a Slack transport the alert is logged at warning level instead

The alert send is fire-and-forget; it never delays the webhook response.
"""

import threading
import time
from collections import Counter
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog

from ticket_routing.middleware.slack_alerts import build_security_alert_blocks, spawn_alert

logger = structlog.get_logger(__name__)

TOP_REASONS = 3


@dataclass
class FailureRecord:
    timestamp: float
    source_key: str
    reason: str


class SecurityAlerting:
    """Trailing-window 401 counter with alert cooldown."""

    def __init__(
        self,
        threshold: int = 20,
        window_seconds: float = 300.0,
        cooldown_seconds: float = 900.0,
        service_name: str = "ticket-routing-webhook",
        transport_configured: Optional[Callable[[], bool]] = None,
        notifier: Optional[Callable[[Dict[str, Any]], Awaitable[bool]]] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.threshold = threshold
        self.window_seconds = window_seconds
        self.cooldown_seconds = cooldown_seconds
        self.service_name = service_name
        self._notifier = notifier
        self._transport_configured = transport_configured or (lambda: notifier is not None)
        self._clock = clock
        self._failures: List[FailureRecord] = []
        self._last_alert_at: Optional[float] = None
        self._lock = threading.Lock()
        self.alerts_attempted = 0

    def record_401(self, source_key: str, reason: str) -> bool:
        """
        Record one authentication failure.

        Returns:
            True if this failure triggered an alert attempt
        """
        with self._lock:
            now = self._clock()
            self._failures.append(FailureRecord(timestamp=now, source_key=source_key, reason=reason))
            self._prune(now)

            if len(self._failures) < self.threshold:
                return False

            # Cooldown is checked before composing anything
            if self._last_alert_at is not None and now - self._last_alert_at < self.cooldown_seconds:
                return False

            self._last_alert_at = now
            self.alerts_attempted += 1
            summary = self._summarize()

        self._dispatch(summary)
        return True

    def _prune(self, now: float) -> None:
        # Caller holds the lock
        self._failures = [f for f in self._failures if now - f.timestamp < self.window_seconds]

    def _summarize(self) -> Dict[str, Any]:
        reasons = Counter(f.reason for f in self._failures)
        return {
            "failure_count": len(self._failures),
            "unique_sources": len({f.source_key for f in self._failures}),
            "top_reasons": reasons.most_common(TOP_REASONS),
        }

    def _dispatch(self, summary: Dict[str, Any]) -> None:
        logger.warning(
            "security_event",
            event_type="anomaly_detected",
            failure_count=summary["failure_count"],
            unique_sources=summary["unique_sources"],
            top_reasons=dict(summary["top_reasons"]),
            threshold=self.threshold,
        )

        if self._notifier is None or not self._transport_configured():
            logger.warning(
                "security_alert_not_sent",
                reason="alert_transport_not_configured",
                failure_count=summary["failure_count"],
                unique_sources=summary["unique_sources"],
                top_reasons=dict(summary["top_reasons"]),
            )
            return

        payload = build_security_alert_blocks(
            service=self.service_name,
            failure_count=summary["failure_count"],
            unique_sources=summary["unique_sources"],
            top_reasons=summary["top_reasons"],
            threshold=self.threshold,
            window_minutes=self.window_seconds / 60,
        )
        spawn_alert(self._notifier(payload))

    def get_stats(self) -> dict:
        with self._lock:
            now = self._clock()
            recent = sum(1 for f in self._failures if now - f.timestamp < self.window_seconds)
            last_alert = self._last_alert_at
        return {
            "recent_failures": recent,
            "threshold": self.threshold,
            "window_minutes": self.window_seconds / 60,
            "last_alert_minutes_ago": int((now - last_alert) // 60) if last_alert is not None else None,
        }
