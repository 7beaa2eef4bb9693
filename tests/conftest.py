"""
Pytest Configuration and Fixtures

Shared fixtures for all tests:
- Settings with test credentials
- In-memory reference data (tickets, customers, units, markets)
- RoutingService / app / TestClient wired to the fake reference data
- Webhook signing helper
"""

import json
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from ticket_routing.core.config import Settings
from ticket_routing.core.exceptions import ReferenceDataError
from ticket_routing.integrations.ticketing import compute_signature
from ticket_routing.main import create_app
from ticket_routing.models.records import (
    CustomerRecord,
    MarketOwnershipRecord,
    TicketRecord,
    UnitRecord,
)
from ticket_routing.services.routing_service import RoutingService

TEST_SECRET = "test-webhook-secret"
FALLBACK_CX_USER = "900"


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeReferenceClient:
    """In-memory stand-in for ClickUpClient."""

    def __init__(self):
        self.tasks: Dict[str, TicketRecord] = {}
        self.customers: Dict[str, CustomerRecord] = {}
        self.units: Dict[str, UnitRecord] = {}
        self.markets: Dict[str, MarketOwnershipRecord] = {}
        self.assignee_calls: List[Dict[str, Any]] = []
        self.tag_calls: List[Dict[str, Any]] = []
        self.failing_tags: set = set()
        self.get_task_error: Optional[Exception] = None
        self.closed = False

    async def get_task(self, task_id: str) -> TicketRecord:
        if self.get_task_error is not None:
            raise self.get_task_error
        if task_id not in self.tasks:
            raise ReferenceDataError("ClickUp API error: 404 - Task not found", status_code=404)
        return self.tasks[task_id]

    async def get_customer(self, customer_key: str) -> Optional[CustomerRecord]:
        return self.customers.get(customer_key)

    async def get_unit(self, unit_key: str) -> Optional[UnitRecord]:
        return self.units.get(unit_key)

    async def get_market_ownership(self, market: str) -> Optional[MarketOwnershipRecord]:
        return self.markets.get(market)

    async def add_assignees(self, task_id: str, user_ids: List[str]) -> Dict[str, Any]:
        self.assignee_calls.append({"task_id": task_id, "user_ids": list(user_ids)})
        return {}

    async def add_tag(self, task_id: str, tag: str) -> Dict[str, Any]:
        if tag in self.failing_tags:
            raise ReferenceDataError("ClickUp API error: 500 - cannot tag", status_code=500)
        self.tag_calls.append({"task_id": task_id, "tag": tag})
        return {}

    async def aclose(self) -> None:
        self.closed = True


def make_ticket(
    task_id: str = "task-1",
    customer_key: Optional[str] = None,
    unit_key: Optional[str] = None,
    market: Optional[str] = None,
    assignees: Optional[List[str]] = None
) -> TicketRecord:
    """Build a ticket the way the API returns it."""
    custom_fields = []
    if customer_key is not None:
        custom_fields.append({"id": "cf-customer", "name": "customer_key", "type": "short_text", "value": customer_key})
    if unit_key is not None:
        custom_fields.append({"id": "cf-unit", "name": "unit_key", "type": "short_text", "value": unit_key})
    if market is not None:
        custom_fields.append({"id": "cf-market", "name": "Market", "type": "short_text", "value": market})

    return TicketRecord.from_api({
        "id": task_id,
        "name": "Leaking faucet",
        "custom_fields": custom_fields,
        "assignees": [{"id": a, "username": f"user{a}"} for a in assignees or []],
    })


def sign(body: bytes, secret: str = TEST_SECRET) -> str:
    return compute_signature(body, secret)


def event_body(
    event: str = "taskCreated",
    task_id: str = "task-1",
    event_id: Optional[str] = "evt-1",
    **extra
) -> bytes:
    payload: Dict[str, Any] = {"event": event, "task_id": task_id}
    if event_id is not None:
        payload["event_id"] = event_id
    payload.update(extra)
    return json.dumps(payload).encode("utf-8")


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        clickup_api_token="pk_12345_TESTTOKEN",
        clickup_team_id="team-1",
        webhook_hmac_secret=TEST_SECRET,
        default_cx_user_id=FALLBACK_CX_USER,
        customer_key_field_id="cf-customer",
        unit_key_field_id="cf-unit",
        slack_webhook_url=None,
    )


@pytest.fixture
def reference_client() -> FakeReferenceClient:
    """Reference data with one VIP customer, one unit and one covered market."""
    client = FakeReferenceClient()
    client.customers["CUST-VIP"] = CustomerRecord(customer_key="CUST-VIP", vip_flag=True, assigned_owner="101")
    client.customers["CUST-STD"] = CustomerRecord(customer_key="CUST-STD", vip_flag=False, assigned_owner="102")
    client.customers["CUST-NOOWNER"] = CustomerRecord(customer_key="CUST-NOOWNER")
    client.units["UNIT-1"] = UnitRecord(unit_key="UNIT-1", market="Austin")
    client.markets["Austin"] = MarketOwnershipRecord(market="Austin", primary_ops_owner="201", backup_ops_owner="202")
    client.markets["Dallas"] = MarketOwnershipRecord(market="Dallas", primary_ops_owner=None)
    return client


@pytest.fixture
def service(settings, reference_client) -> RoutingService:
    return RoutingService(settings, reference_client)


@pytest.fixture
def app(settings, service):
    return create_app(settings=settings, service=service)


@pytest.fixture
def client(app):
    """Test client (no lifespan, no background sweeps)."""
    return TestClient(app)


@pytest.fixture
def post_webhook(client):
    """POST a signed delivery to /webhook/clickup."""

    def _post(body: bytes, signature: Optional[str] = None, headers: Optional[Dict[str, str]] = None):
        request_headers = {"Content-Type": "application/json"}
        request_headers["X-Signature"] = signature if signature is not None else sign(body)
        request_headers.update(headers or {})
        return client.post("/webhook/clickup", content=body, headers=request_headers)

    return _post
