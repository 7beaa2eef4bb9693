"""
Ticket and reference-data records

Dataclass views over the task tracker's records:
- TicketRecord: the support ticket being routed
- CustomerRecord / UnitRecord / MarketOwnershipRecord: reference data
- RoutingDecision: the per-event routing outcome
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from ticket_routing.models.fields import (
    CustomField,
    CustomFieldValue,
    FieldMatcher,
    first_user_id,
)


@dataclass
class UserRef:
    """A user assigned to a record."""

    id: str
    username: Optional[str] = None

    @classmethod
    def from_api(cls, data: Mapping[str, Any]) -> "UserRef":
        return cls(id=str(data.get("id")), username=data.get("username"))


@dataclass
class TicketRecord:
    """A ticket as stored by the task tracker."""

    id: str
    custom_fields: List[CustomFieldValue] = field(default_factory=list)
    assignees: List[UserRef] = field(default_factory=list)
    name: Optional[str] = None

    @classmethod
    def from_api(cls, data: Mapping[str, Any]) -> "TicketRecord":
        return cls(
            id=str(data.get("id")),
            name=data.get("name"),
            custom_fields=[CustomFieldValue.from_api(f) for f in data.get("custom_fields") or []],
            assignees=[UserRef.from_api(a) for a in data.get("assignees") or []],
        )

    @property
    def assignee_ids(self) -> List[str]:
        return [a.id for a in self.assignees]


@dataclass
class CustomerRecord:
    """Customer reference record."""

    customer_key: str
    vip_flag: bool = False
    assigned_owner: Optional[str] = None
    record_id: Optional[str] = None

    @classmethod
    def from_api(cls, data: Mapping[str, Any], customer_key: str, matcher: FieldMatcher) -> "CustomerRecord":
        vip_value = matcher.get(_fields(data), CustomField.VIP)
        assignees = data.get("assignees") or []
        return cls(
            customer_key=customer_key,
            vip_flag=vip_value is True or vip_value == "VIP",
            assigned_owner=first_user_id(assignees),
            record_id=data.get("id"),
        )


@dataclass
class UnitRecord:
    """Unit reference record."""

    unit_key: str
    market: Optional[str] = None
    record_id: Optional[str] = None

    @classmethod
    def from_api(cls, data: Mapping[str, Any], unit_key: str, matcher: FieldMatcher) -> "UnitRecord":
        return cls(
            unit_key=unit_key,
            market=matcher.get(_fields(data), CustomField.MARKET),
            record_id=data.get("id"),
        )


@dataclass
class MarketOwnershipRecord:
    """Which ops owners cover a market."""

    market: str
    primary_ops_owner: Optional[str] = None
    backup_ops_owner: Optional[str] = None
    record_id: Optional[str] = None

    @classmethod
    def from_api(cls, data: Mapping[str, Any], matcher: FieldMatcher) -> "MarketOwnershipRecord":
        fields = _fields(data)
        return cls(
            market=matcher.get(fields, CustomField.MARKET),
            primary_ops_owner=first_user_id(matcher.get(fields, CustomField.PRIMARY_OPS_OWNER)),
            backup_ops_owner=first_user_id(matcher.get(fields, CustomField.BACKUP_OPS_OWNER)),
            record_id=data.get("id"),
        )


def _fields(data: Mapping[str, Any]) -> List[CustomFieldValue]:
    return [CustomFieldValue.from_api(f) for f in data.get("custom_fields") or []]


# ==================== Routing Decision ====================

# Advisory tags
NEEDS_CX_ROUTING = "Needs CX Routing"
NEEDS_OPS_ROUTING = "Needs Ops Routing"

# Routing sources (audit trail)
SOURCE_CUSTOMER_ASSIGNEE = "customer_assignee"
SOURCE_AUTO_ROUTING = "auto_routing"
SOURCE_UNRESOLVED_CUSTOMER = "unresolved_customer"
SOURCE_MARKET_PRIMARY = "market_primary"
SOURCE_UNRESOLVED_MARKET = "unresolved_market"


@dataclass
class RoutingError:
    """A non-fatal problem hit while routing, tagged with the stage it came from."""

    stage: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"stage": self.stage, "message": self.message}


@dataclass
class RoutingSource:
    cx: Optional[str] = None
    ops: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {"cx": self.cx, "ops": self.ops}


@dataclass
class RoutingDecision:
    """Owners and tags computed for one ticket."""

    task_id: str
    cx_owner: Optional[str] = None
    ops_owner: Optional[str] = None
    routing_source: RoutingSource = field(default_factory=RoutingSource)
    tags: List[str] = field(default_factory=list)
    errors: List[RoutingError] = field(default_factory=list)
    customer_key: Optional[str] = None
    market: Optional[str] = None

    def add_tag(self, tag: str) -> None:
        if tag not in self.tags:
            self.tags.append(tag)

    def add_error(self, stage: str, message: str) -> None:
        self.errors.append(RoutingError(stage=stage, message=message))

    @property
    def owners(self) -> List[str]:
        """Resolved owners, CX first, without duplicates."""
        owners: List[str] = []
        for owner in (self.cx_owner, self.ops_owner):
            if owner and owner not in owners:
                owners.append(owner)
        return owners

    def to_summary(self) -> Dict[str, Any]:
        return {
            "cx_owner": self.cx_owner,
            "ops_owner": self.ops_owner,
            "routing_source": self.routing_source.to_dict(),
            "market": self.market,
            "tags": list(self.tags),
            "errors": [e.to_dict() for e in self.errors],
        }
