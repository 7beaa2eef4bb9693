"""
Unit Tests for 401 Security Alerting

- Threshold within the trailing window
- Cooldown between alerts
- Payload contents (failures, unique sources, top reasons)
- Warning log when no transport is configured
- Slack transport bound to the injected settings
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from conftest import FakeClock, FakeReferenceClient
from ticket_routing.middleware import slack_alerts
from ticket_routing.middleware.slack_alerts import send_error_alert
from ticket_routing.security import SecurityAlerting
from ticket_routing.services.routing_service import RoutingService

INJECTED_SLACK_URL = "https://hooks.slack.com/services/T0/B0/INJECTED"


@pytest.fixture
def clock():
    return FakeClock()


def make_alerting(clock, configured=True, notifier=None):
    return SecurityAlerting(
        threshold=20,
        window_seconds=300,
        cooldown_seconds=900,
        service_name="ticket-routing-test",
        transport_configured=lambda: configured,
        notifier=notifier or AsyncMock(return_value=True),
        clock=clock,
    )


class TestThreshold:
    """Failure window"""

    def test_below_threshold_no_alert(self, clock):
        alerting = make_alerting(clock, configured=False)
        triggered = [alerting.record_401(f"ip-{i}", "signature_mismatch") for i in range(19)]
        assert not any(triggered)
        assert alerting.alerts_attempted == 0

    def test_twentieth_failure_triggers(self, clock):
        alerting = make_alerting(clock, configured=False)
        for i in range(19):
            alerting.record_401(f"ip-{i}", "signature_mismatch")
        assert alerting.record_401("ip-19", "missing_signature") is True
        assert alerting.alerts_attempted == 1

    def test_old_failures_pruned(self, clock):
        alerting = make_alerting(clock, configured=False)
        for _ in range(19):
            alerting.record_401("ip", "signature_mismatch")
        clock.advance(301)

        assert alerting.record_401("ip", "signature_mismatch") is False
        assert alerting.get_stats()["recent_failures"] == 1


class TestCooldown:
    """At most one attempt per cooldown"""

    def test_second_burst_within_cooldown_suppressed(self, clock):
        alerting = make_alerting(clock, configured=False)
        for _ in range(20):
            alerting.record_401("ip", "signature_mismatch")
        clock.advance(60)
        for _ in range(20):
            alerting.record_401("ip", "signature_mismatch")

        assert alerting.alerts_attempted == 1

    def test_alert_again_after_cooldown(self, clock):
        alerting = make_alerting(clock, configured=False)
        for _ in range(20):
            alerting.record_401("ip", "signature_mismatch")
        clock.advance(901)
        for _ in range(20):
            alerting.record_401("ip", "signature_mismatch")

        assert alerting.alerts_attempted == 2
        assert alerting.get_stats()["last_alert_minutes_ago"] == 0


class TestDispatch:
    """Transport selection and payload"""

    @pytest.mark.asyncio
    async def test_notifier_receives_summary_blocks(self, clock):
        notifier = AsyncMock(return_value=True)
        alerting = make_alerting(clock, configured=True, notifier=notifier)

        for i in range(12):
            alerting.record_401(f"ip-{i % 3}", "signature_mismatch")
        for i in range(8):
            alerting.record_401("ip-9", "missing_signature")

        # Let the fire-and-forget task run
        await asyncio.sleep(0)

        notifier.assert_awaited_once()
        payload = notifier.await_args.args[0]
        rendered = str(payload)
        assert "20" in rendered
        assert "signature_mismatch" in rendered
        assert "missing_signature" in rendered

    def test_unconfigured_transport_logs_warning(self, clock):
        notifier = AsyncMock(return_value=True)
        alerting = make_alerting(clock, configured=False, notifier=notifier)

        with patch("ticket_routing.security.alerting.logger") as mock_logger:
            for _ in range(20):
                alerting.record_401("ip", "signature_mismatch")

        events = [call.args[0] for call in mock_logger.warning.call_args_list]
        assert "security_alert_not_sent" in events
        notifier.assert_not_called()


class FakeSlackResponse:
    status = 200

    async def text(self):
        return "ok"

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False


@pytest.fixture
def slack_posts(monkeypatch):
    """Capture aiohttp POSTs made by the Slack transport."""
    posts = []

    class FakeSlackSession:
        def __init__(self, *args, **kwargs):
            pass

        async def __aenter__(self):
            return self

        async def __aexit__(self, *exc_info):
            return False

        def post(self, url, json=None, timeout=None):
            posts.append({"url": url, "json": json, "timeout": timeout})
            return FakeSlackResponse()

    monkeypatch.delenv("SLACK_WEBHOOK_URL", raising=False)
    monkeypatch.setattr(slack_alerts.aiohttp, "ClientSession", FakeSlackSession)
    return posts


class TestSlackTransport:
    """Alerts go where the injected settings point"""

    @pytest.mark.asyncio
    async def test_anomaly_alert_posted_to_injected_webhook(self, settings, slack_posts):
        settings.slack_webhook_url = INJECTED_SLACK_URL
        settings.slack_alert_channel = "#security-alerts"
        service = RoutingService(settings, FakeReferenceClient())

        for i in range(settings.alert_failure_threshold):
            service.alerting.record_401(f"ip-{i}", "signature_mismatch")
        loop = asyncio.get_running_loop()
        await asyncio.gather(*[t for t in slack_alerts._background_tasks if t.get_loop() is loop])

        assert len(slack_posts) == 1
        assert slack_posts[0]["url"] == INJECTED_SLACK_URL
        assert slack_posts[0]["json"]["channel"] == "#security-alerts"
        assert slack_posts[0]["timeout"].total == settings.alert_timeout_seconds
        assert "Security Anomaly Detected" in str(slack_posts[0]["json"])

    @pytest.mark.asyncio
    async def test_error_alert_posted_to_injected_webhook(self, settings, slack_posts):
        settings.slack_webhook_url = INJECTED_SLACK_URL

        await send_error_alert(settings, "ReadTimeout", "timed out", correlation_id="corr-1", endpoint="/webhook/clickup")

        assert len(slack_posts) == 1
        assert slack_posts[0]["url"] == INJECTED_SLACK_URL
        attachment = slack_posts[0]["json"]["attachments"][0]
        assert attachment["title"] == "Webhook Error: ReadTimeout"
        assert attachment["footer"] == settings.service_name

    @pytest.mark.asyncio
    async def test_error_alert_skipped_without_webhook(self, settings, slack_posts):
        await send_error_alert(settings, "ReadTimeout", "timed out")

        assert slack_posts == []

    def test_service_without_webhook_logs_instead(self, settings):
        service = RoutingService(settings, FakeReferenceClient())

        with patch("ticket_routing.security.alerting.logger") as mock_logger:
            for _ in range(settings.alert_failure_threshold):
                service.alerting.record_401("ip", "signature_mismatch")

        events = [call.args[0] for call in mock_logger.warning.call_args_list]
        assert "security_alert_not_sent" in events
