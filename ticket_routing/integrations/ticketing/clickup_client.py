"""
ClickUp Reference Data Client

Async access to the task tracker holding both the tickets and the reference
collections the router reads:
- Tickets: GET /task/{id}, PUT /task/{id} (assignees), POST /task/{id}/tag/{tag}
- Customers, Units, Market Ownership: GET /list/{id}/task with custom-field filters

Lookups (customer / unit / market ownership) treat API errors as "not found"
and log them; timeouts and transport failures propagate to the caller.
"""
import json
import time
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx
import structlog

from ticket_routing.core.config import Settings
from ticket_routing.core.exceptions import ReferenceDataError
from ticket_routing.middleware.logging_config import log_integration_call
from ticket_routing.models.fields import CustomField, FieldMatcher
from ticket_routing.models.records import (
    CustomerRecord,
    MarketOwnershipRecord,
    TicketRecord,
    UnitRecord,
)

logger = structlog.get_logger(__name__)

MAX_LIST_PAGES = 10


class ClickUpClient:
    """Read/write client for tickets and reference records."""

    def __init__(
        self,
        api_token: Optional[str],
        customers_list_id: str,
        units_list_id: str,
        market_ownership_list_id: str,
        matcher: FieldMatcher,
        api_base: str = "https://api.clickup.com/api/v2",
        timeout: float = 10.0,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        """
        Initialize the client.

        Args:
            api_token: ClickUp personal or app token
            customers_list_id / units_list_id / market_ownership_list_id: reference collections
            matcher: Canonical field matcher (knows the key field identifiers)
            api_base: API root URL
            timeout: Per-call timeout in seconds
            http_client: Preconfigured client (tests pass one with a mock transport)
        """
        self.customers_list_id = customers_list_id
        self.units_list_id = units_list_id
        self.market_ownership_list_id = market_ownership_list_id
        self.matcher = matcher
        self.http_client = http_client or httpx.AsyncClient(
            base_url=api_base.rstrip("/"),
            headers={
                "Authorization": api_token or "",
                "Content-Type": "application/json",
            },
            timeout=timeout,
        )

    @classmethod
    def from_settings(cls, settings: Settings, http_client: Optional[httpx.AsyncClient] = None) -> "ClickUpClient":
        return cls(
            api_token=settings.clickup_api_token,
            customers_list_id=settings.customers_list_id,
            units_list_id=settings.units_list_id,
            market_ownership_list_id=settings.market_ownership_list_id,
            matcher=matcher_from_settings(settings),
            api_base=settings.clickup_api_base,
            timeout=settings.clickup_timeout_seconds,
            http_client=http_client,
        )

    async def aclose(self) -> None:
        await self.http_client.aclose()

    # ==================== Transport ====================

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        start = time.time()
        operation = f"{method} {path}"

        try:
            response = await self.http_client.request(method, path, params=params, json=body)
        except httpx.HTTPError as e:
            log_integration_call("clickup", operation, time.time() - start, success=False, error=str(e))
            raise

        duration = time.time() - start

        try:
            data = response.json() if response.content else {}
        except ValueError as e:
            log_integration_call("clickup", operation, duration, success=False, error="unparsable response")
            raise ReferenceDataError(
                f"Failed to parse ClickUp response: {e}", status_code=response.status_code
            ) from e

        if not response.is_success:
            error = data.get("err") if isinstance(data, dict) else None
            log_integration_call("clickup", operation, duration, success=False, error=error or response.text)
            raise ReferenceDataError(
                f"ClickUp API error: {response.status_code} - {error or response.text}",
                status_code=response.status_code,
            )

        log_integration_call("clickup", operation, duration)
        return data if isinstance(data, dict) else {"data": data}

    # ==================== Generic records ====================

    async def get_task(self, task_id: str) -> TicketRecord:
        """Fetch a full ticket record with custom fields and assignees."""
        data = await self._request("GET", f"/task/{quote(str(task_id), safe='')}")
        return TicketRecord.from_api(data)

    async def get_records(
        self,
        list_id: str,
        field_filter: Optional[Dict[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        """
        List records in a collection, optionally filtered on one custom field.

        Args:
            list_id: Collection (list) id
            field_filter: {"field_id": ..., "value": ...} equality filter
        """
        params: Dict[str, Any] = {}
        if field_filter:
            params["custom_fields"] = json.dumps([{
                "field_id": field_filter["field_id"],
                "operator": "=",
                "value": field_filter["value"],
            }])

        records: List[Dict[str, Any]] = []
        for page in range(MAX_LIST_PAGES):
            data = await self._request("GET", f"/list/{list_id}/task", params={**params, "page": page})
            tasks = data.get("tasks") or []
            records.extend(tasks)
            if not tasks or data.get("last_page", True):
                break
        return records

    async def add_assignees(self, task_id: str, user_ids: List[str]) -> Dict[str, Any]:
        """Add users to a ticket's assignees (existing assignees are kept)."""
        body = {"assignees": {"add": [_user_id(u) for u in user_ids], "rem": []}}
        return await self._request("PUT", f"/task/{quote(str(task_id), safe='')}", body=body)

    async def add_tag(self, task_id: str, tag: str) -> Dict[str, Any]:
        """Attach a single named tag to a ticket."""
        return await self._request(
            "POST", f"/task/{quote(str(task_id), safe='')}/tag/{quote(tag, safe='')}"
        )

    # ==================== Reference lookups ====================

    async def get_customer(self, customer_key: str) -> Optional[CustomerRecord]:
        record = await self._find_by_key(
            self.customers_list_id, CustomField.CUSTOMER_KEY, customer_key, "customer"
        )
        if record is None:
            return None
        return CustomerRecord.from_api(record, customer_key, self.matcher)

    async def get_unit(self, unit_key: str) -> Optional[UnitRecord]:
        record = await self._find_by_key(self.units_list_id, CustomField.UNIT_KEY, unit_key, "unit")
        if record is None:
            return None
        return UnitRecord.from_api(record, unit_key, self.matcher)

    async def get_market_ownership(self, market: str) -> Optional[MarketOwnershipRecord]:
        try:
            records = await self.get_records(self.market_ownership_list_id)
        except ReferenceDataError as e:
            logger.error("market_ownership_lookup_failed", market=market, error=e.message)
            return None

        for record in records:
            ownership = MarketOwnershipRecord.from_api(record, self.matcher)
            if ownership.market == market:
                return ownership
        return None

    async def _find_by_key(
        self,
        list_id: str,
        key_field: CustomField,
        key: str,
        kind: str
    ) -> Optional[Dict[str, Any]]:
        field_id = self.matcher.field_ids.get(key_field)
        field_filter = {"field_id": field_id, "value": key} if field_id else None

        try:
            records = await self.get_records(list_id, field_filter)
        except ReferenceDataError as e:
            logger.error(f"{kind}_lookup_failed", key=key, error=e.message)
            return None

        for record in records:
            fields = TicketRecord.from_api(record).custom_fields
            value = self.matcher.get(fields, key_field)
            if value is not None and str(value) == str(key):
                return record
        return None


def matcher_from_settings(settings: Settings) -> FieldMatcher:
    return FieldMatcher({
        CustomField.CUSTOMER_KEY: settings.customer_key_field_id,
        CustomField.UNIT_KEY: settings.unit_key_field_id,
    })


def _user_id(user_id: str) -> Any:
    # ClickUp user ids are numeric
    return int(user_id) if str(user_id).isdigit() else user_id
