"""
Canonical custom-field access.

Records in the task tracker carry their data as a list of custom fields
matched by display name. All lookups go through get_custom_field() so the
matching rule (exact name, or a known field identifier) lives in one place.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional


class CustomField(str, Enum):
    """Custom fields the router reads, by their exact display name."""

    CUSTOMER_KEY = "customer_key"
    UNIT_KEY = "unit_key"
    MARKET = "Market"
    VIP = "VIP"
    PRIMARY_OPS_OWNER = "Primary Ops Owner"
    BACKUP_OPS_OWNER = "Backup Ops Owner"


@dataclass
class CustomFieldValue:
    """One custom field as it appears on a record."""

    name: str
    value: Any = None
    id: Optional[str] = None
    type: Optional[str] = None
    options: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: Mapping[str, Any]) -> "CustomFieldValue":
        type_config = data.get("type_config") or {}
        return cls(
            name=data.get("name", ""),
            value=data.get("value"),
            id=data.get("id"),
            type=data.get("type"),
            options=list(type_config.get("options") or []),
        )

    def resolved_value(self) -> Any:
        """
        Value with dropdown indexes mapped to their option label.

        Dropdown fields store the selected option's orderindex; everything
        else is returned as-is. Empty strings and empty lists become None.
        """
        value = self.value
        if self.type == "drop_down" and self.options and value is not None:
            for option in self.options:
                if option.get("orderindex") == value or option.get("id") == value:
                    return option.get("name")
        if value == "" or value == []:
            return None
        return value


def get_custom_field(
    fields: List[CustomFieldValue],
    canonical: CustomField,
    field_id: Optional[str] = None
) -> Any:
    """
    Return the value of a canonical field, or None when absent.

    A field matches on its exact display name, or on field_id when one is
    known for this canonical field.
    """
    for candidate in fields or []:
        if candidate.name == canonical.value or (field_id and candidate.id == field_id):
            return candidate.resolved_value()
    return None


def first_user_id(value: Any) -> Optional[str]:
    """First user id from a people-type field value."""
    if not value:
        return None
    if isinstance(value, list):
        value = value[0]
    if isinstance(value, Mapping):
        value = value.get("id")
    return str(value) if value not in (None, "") else None


class FieldMatcher:
    """get_custom_field() bound to the deployment's known field identifiers."""

    def __init__(self, field_ids: Optional[Dict[CustomField, str]] = None):
        self.field_ids = dict(field_ids or {})

    def get(self, fields: List[CustomFieldValue], canonical: CustomField) -> Any:
        return get_custom_field(fields, canonical, self.field_ids.get(canonical))
