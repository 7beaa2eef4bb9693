"""
Tests for the ClickUp reference data client (httpx.MockTransport)

- Ticket fetch and custom-field parsing
- Customer / unit lookups with server-side key filters
- Market ownership matched client-side across pages
- Writes: assignee patch, tag add
- Error mapping: API errors vs transport failures
"""

import json

import httpx
import pytest

from ticket_routing.core.exceptions import ReferenceDataError
from ticket_routing.integrations.ticketing import ClickUpClient
from ticket_routing.models.fields import CustomField, FieldMatcher

API_BASE = "https://api.clickup.com/api/v2"

VIP_DROPDOWN = {
    "id": "cf-vip",
    "name": "VIP",
    "type": "drop_down",
    "value": 0,
    "type_config": {"options": [{"name": "VIP", "orderindex": 0}, {"name": "Standard", "orderindex": 1}]},
}


def make_client(handler) -> ClickUpClient:
    http_client = httpx.AsyncClient(base_url=API_BASE, transport=httpx.MockTransport(handler))
    return ClickUpClient(
        api_token="pk_1_TEST",
        customers_list_id="L-CUST",
        units_list_id="L-UNIT",
        market_ownership_list_id="L-MKT",
        matcher=FieldMatcher({CustomField.CUSTOMER_KEY: "cf-customer", CustomField.UNIT_KEY: "cf-unit"}),
        http_client=http_client,
    )


class TestTickets:
    """Ticket reads and writes"""

    @pytest.mark.asyncio
    async def test_get_task(self):
        def handler(request):
            assert request.url.path == "/api/v2/task/t1"
            return httpx.Response(200, json={
                "id": "t1",
                "name": "Broken AC",
                "custom_fields": [{"id": "cf-customer", "name": "customer_key", "value": "C-1"}],
                "assignees": [{"id": 42, "username": "sam"}],
            })

        client = make_client(handler)
        ticket = await client.get_task("t1")

        assert ticket.id == "t1"
        assert ticket.assignee_ids == ["42"]
        assert ticket.custom_fields[0].value == "C-1"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_get_task_error_raises(self):
        client = make_client(lambda request: httpx.Response(404, json={"err": "Task not found", "ECODE": "ITEM_013"}))

        with pytest.raises(ReferenceDataError) as exc_info:
            await client.get_task("missing")

        assert exc_info.value.status_code == 404
        assert "Task not found" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_add_assignees_sends_numeric_ids(self):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"id": "t1"})

        client = make_client(handler)
        await client.add_assignees("t1", ["101", "201"])

        assert seen["method"] == "PUT"
        assert seen["path"] == "/api/v2/task/t1"
        assert seen["body"] == {"assignees": {"add": [101, 201], "rem": []}}

    @pytest.mark.asyncio
    async def test_add_tag_quotes_name(self):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["path"] = request.url.path
            return httpx.Response(200, json={})

        client = make_client(handler)
        await client.add_tag("t1", "Needs CX Routing")

        assert seen["method"] == "POST"
        assert seen["path"] == "/api/v2/task/t1/tag/Needs CX Routing"


class TestReferenceLookups:
    """Customer / unit / market ownership"""

    @pytest.mark.asyncio
    async def test_get_customer_filters_by_key_field(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["filter"] = json.loads(request.url.params["custom_fields"])
            return httpx.Response(200, json={
                "tasks": [{
                    "id": "rec-1",
                    "custom_fields": [{"id": "cf-customer", "name": "customer_key", "value": "C-1"}, VIP_DROPDOWN],
                    "assignees": [{"id": 101}],
                }],
                "last_page": True,
            })

        client = make_client(handler)
        customer = await client.get_customer("C-1")

        assert seen["path"] == "/api/v2/list/L-CUST/task"
        assert seen["filter"] == [{"field_id": "cf-customer", "operator": "=", "value": "C-1"}]
        assert customer.vip_flag is True
        assert customer.assigned_owner == "101"

    @pytest.mark.asyncio
    async def test_get_customer_ignores_non_matching_records(self):
        def handler(request):
            return httpx.Response(200, json={
                "tasks": [{"id": "rec-2", "custom_fields": [{"id": "cf-customer", "name": "customer_key", "value": "C-2"}]}],
                "last_page": True,
            })

        client = make_client(handler)
        assert await client.get_customer("C-1") is None

    @pytest.mark.asyncio
    async def test_lookup_api_error_treated_as_not_found(self):
        client = make_client(lambda request: httpx.Response(500, json={"err": "boom"}))

        assert await client.get_customer("C-1") is None
        assert await client.get_unit("U-1") is None
        assert await client.get_market_ownership("Austin") is None

    @pytest.mark.asyncio
    async def test_lookup_timeout_propagates(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        client = make_client(handler)

        with pytest.raises(httpx.ReadTimeout):
            await client.get_unit("U-1")

    @pytest.mark.asyncio
    async def test_get_unit_market(self):
        def handler(request):
            return httpx.Response(200, json={
                "tasks": [{
                    "id": "unit-1",
                    "custom_fields": [
                        {"id": "cf-unit", "name": "unit_key", "value": "U-1"},
                        {"id": "cf-market", "name": "Market", "value": "Austin"},
                    ],
                }],
                "last_page": True,
            })

        client = make_client(handler)
        unit = await client.get_unit("U-1")

        assert unit.market == "Austin"

    @pytest.mark.asyncio
    async def test_market_ownership_matched_across_pages(self):
        pages = {
            "0": {
                "tasks": [{"id": "m-1", "custom_fields": [{"name": "Market", "value": "Dallas"}]}],
                "last_page": False,
            },
            "1": {
                "tasks": [{
                    "id": "m-2",
                    "custom_fields": [
                        {"name": "Market", "value": "Austin"},
                        {"name": "Primary Ops Owner", "type": "users", "value": [{"id": 201}]},
                        {"name": "Backup Ops Owner", "type": "users", "value": [{"id": 202}]},
                    ],
                }],
                "last_page": True,
            },
        }

        def handler(request):
            assert "custom_fields" not in request.url.params
            return httpx.Response(200, json=pages[request.url.params["page"]])

        client = make_client(handler)
        ownership = await client.get_market_ownership("Austin")

        assert ownership.primary_ops_owner == "201"
        assert ownership.backup_ops_owner == "202"
