"""
Tests for health and readiness endpoints
"""

from fastapi.testclient import TestClient

from conftest import FakeReferenceClient
from ticket_routing.core.config import Settings
from ticket_routing.main import create_app
from ticket_routing.services.routing_service import RoutingService


class TestHealth:
    """GET /health"""

    def test_health_always_ok(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["service"] == "ticket-routing-webhook"
        assert body["uptime_seconds"] >= 0


class TestReady:
    """GET /ready"""

    def test_ready_when_configured(self, client):
        response = client.get("/ready")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ready"
        assert body["missing"] == []
        assert body["alerting"]["slack_configured"] is False
        assert body["alerting"]["threshold"] == 20
        assert body["rate_limiting"]["enabled"] is False
        assert body["replay_cache"]["ttl_minutes"] == 10.0

    def test_not_ready_lists_missing_configuration(self):
        settings = Settings(_env_file=None, clickup_api_token=None, clickup_team_id=None, webhook_hmac_secret=None)
        app = create_app(settings=settings, service=RoutingService(settings, FakeReferenceClient()))

        response = TestClient(app).get("/ready")

        assert response.status_code == 503
        assert set(response.json()["missing"]) == {"CLICKUP_API_TOKEN", "CLICKUP_TEAM_ID", "WEBHOOK_HMAC_SECRET"}

    def test_unknown_route_uses_error_envelope(self, client):
        response = client.get("/nope")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"


class TestLifespan:
    """Startup / shutdown"""

    def test_shutdown_closes_reference_client(self, settings):
        reference_client = FakeReferenceClient()
        app = create_app(settings=settings, service=RoutingService(settings, reference_client))

        with TestClient(app) as client:
            assert client.get("/health").status_code == 200

        assert reference_client.closed is True
