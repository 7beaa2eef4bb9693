"""
Ticket Routing Engine

Decides who owns a ticket:

1. CX owner from the ticket's customer_key:
   - VIP customer with an assigned owner  -> that owner (customer_assignee)
   - any other customer with an owner     -> that owner (auto_routing)
   - no key / unknown customer / no owner -> fallback owner, "Needs CX Routing"
2. Market from the ticket's unit (Unit record), else the ticket's own Market field
3. Ops owner = the market's primary ops owner, else "Needs Ops Routing"

Lookup problems never raise: they are collected on the decision as
{stage, message} errors and surfaced as tags, so an unresolved ticket is
always assigned what could be determined and flagged for follow-up.

Given the same ticket and reference data the decision is always the same.
"""

from typing import Optional, Protocol

from ticket_routing.middleware.logging_config import log_routing_decision
from ticket_routing.models.fields import CustomField, FieldMatcher
from ticket_routing.models.records import (
    NEEDS_CX_ROUTING,
    NEEDS_OPS_ROUTING,
    SOURCE_AUTO_ROUTING,
    SOURCE_CUSTOMER_ASSIGNEE,
    SOURCE_MARKET_PRIMARY,
    SOURCE_UNRESOLVED_CUSTOMER,
    SOURCE_UNRESOLVED_MARKET,
    CustomerRecord,
    MarketOwnershipRecord,
    RoutingDecision,
    TicketRecord,
    UnitRecord,
)

STAGE_CX = "cx_routing"
STAGE_MARKET = "market_resolution"
STAGE_OPS = "ops_routing"


class ReferenceData(Protocol):
    """Read access to the reference collections."""

    async def get_customer(self, customer_key: str) -> Optional[CustomerRecord]: ...

    async def get_unit(self, unit_key: str) -> Optional[UnitRecord]: ...

    async def get_market_ownership(self, market: str) -> Optional[MarketOwnershipRecord]: ...


class RoutingEngine:
    """Computes a RoutingDecision for a ticket."""

    def __init__(
        self,
        reference_data: ReferenceData,
        matcher: Optional[FieldMatcher] = None,
        fallback_cx_owner: Optional[str] = None
    ):
        """
        Args:
            reference_data: Customer / Unit / Market Ownership lookups
            matcher: Custom-field matcher (knows key field identifiers)
            fallback_cx_owner: CX owner for unresolved customers, None to leave unassigned
        """
        self.reference_data = reference_data
        self.matcher = matcher or FieldMatcher()
        self.fallback_cx_owner = fallback_cx_owner

    async def route_ticket(self, ticket: TicketRecord) -> RoutingDecision:
        decision = RoutingDecision(task_id=ticket.id)

        await self._resolve_cx_owner(ticket, decision)
        await self._resolve_market(ticket, decision)
        await self._resolve_ops_owner(decision)

        log_routing_decision(decision)
        return decision

    # ==================== CX owner ====================

    async def _resolve_cx_owner(self, ticket: TicketRecord, decision: RoutingDecision) -> None:
        customer_key = _as_key(self.matcher.get(ticket.custom_fields, CustomField.CUSTOMER_KEY))
        decision.customer_key = customer_key

        if not customer_key:
            self._cx_fallback(decision, "no customer_key provided")
            return

        customer = await self.reference_data.get_customer(customer_key)
        if customer is None:
            self._cx_fallback(decision, f"customer {customer_key} not found")
            return

        if not customer.assigned_owner:
            self._cx_fallback(decision, f"customer {customer_key} has no owner assigned")
            return

        decision.cx_owner = customer.assigned_owner
        # VIP customers keep their dedicated owner regardless of other rules
        decision.routing_source.cx = SOURCE_CUSTOMER_ASSIGNEE if customer.vip_flag else SOURCE_AUTO_ROUTING

    def _cx_fallback(self, decision: RoutingDecision, reason: str) -> None:
        decision.cx_owner = self.fallback_cx_owner
        decision.routing_source.cx = SOURCE_UNRESOLVED_CUSTOMER
        decision.add_tag(NEEDS_CX_ROUTING)
        decision.add_error(STAGE_CX, reason)

    # ==================== Market ====================

    async def _resolve_market(self, ticket: TicketRecord, decision: RoutingDecision) -> None:
        unit_key = _as_key(self.matcher.get(ticket.custom_fields, CustomField.UNIT_KEY))

        if unit_key:
            unit = await self.reference_data.get_unit(unit_key)
            if unit is None:
                decision.add_error(STAGE_MARKET, f"unit {unit_key} not found")
            elif unit.market:
                decision.market = str(unit.market)

        if not decision.market:
            ticket_market = self.matcher.get(ticket.custom_fields, CustomField.MARKET)
            if ticket_market:
                decision.market = str(ticket_market)

    # ==================== Ops owner ====================

    async def _resolve_ops_owner(self, decision: RoutingDecision) -> None:
        if not decision.market:
            self._ops_unresolved(decision, "no market specified for ops routing")
            return

        ownership = await self.reference_data.get_market_ownership(decision.market)
        if ownership is None:
            self._ops_unresolved(decision, f"market ownership for {decision.market} not found")
            return

        if not ownership.primary_ops_owner:
            self._ops_unresolved(decision, f"market {decision.market} has no primary ops owner")
            return

        decision.ops_owner = ownership.primary_ops_owner
        decision.routing_source.ops = SOURCE_MARKET_PRIMARY

    def _ops_unresolved(self, decision: RoutingDecision, reason: str) -> None:
        decision.routing_source.ops = SOURCE_UNRESOLVED_MARKET
        decision.add_tag(NEEDS_OPS_ROUTING)
        decision.add_error(STAGE_OPS, reason)


async def route_ticket(
    ticket: TicketRecord,
    reference_data: ReferenceData,
    matcher: Optional[FieldMatcher] = None,
    fallback_cx_owner: Optional[str] = None
) -> RoutingDecision:
    """Convenience wrapper around RoutingEngine.route_ticket()."""
    engine = RoutingEngine(reference_data, matcher=matcher, fallback_cx_owner=fallback_cx_owner)
    return await engine.route_ticket(ticket)


def _as_key(value) -> Optional[str]:
    if value is None:
        return None
    key = str(value).strip()
    return key or None
