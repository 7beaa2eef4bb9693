"""Ticket routing - data model"""

from .events import InboundEvent, WebhookPayload, PROCESSED_EVENT_TYPES
from .fields import CustomField, CustomFieldValue, FieldMatcher, get_custom_field
from .records import (
    CustomerRecord,
    MarketOwnershipRecord,
    RoutingDecision,
    RoutingError,
    RoutingSource,
    TicketRecord,
    UnitRecord,
    UserRef,
)

__all__ = [
    "InboundEvent",
    "WebhookPayload",
    "PROCESSED_EVENT_TYPES",
    "CustomField",
    "CustomFieldValue",
    "FieldMatcher",
    "get_custom_field",
    "CustomerRecord",
    "MarketOwnershipRecord",
    "RoutingDecision",
    "RoutingError",
    "RoutingSource",
    "TicketRecord",
    "UnitRecord",
    "UserRef",
]
