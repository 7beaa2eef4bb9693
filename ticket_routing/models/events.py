"""
Inbound webhook events.

WebhookPayload validates the JSON body; InboundEvent pairs the parsed fields
with the exact bytes received, which signature verification runs against.
"""

import json
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, field_validator

PROCESSED_EVENT_TYPES = frozenset({"taskCreated", "taskUpdated"})


class WebhookPayload(BaseModel):
    """Task tracker webhook body."""

    model_config = ConfigDict(extra="allow")

    event: str
    task_id: str
    event_id: Optional[str] = None
    event_time: Optional[Union[int, float, str]] = None
    history_items: Optional[List[Dict[str, Any]]] = None

    @field_validator("event")
    @classmethod
    def event_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Event type is missing")
        return value

    @field_validator("task_id", "event_id", mode="before")
    @classmethod
    def coerce_identifier(cls, value: Any) -> Any:
        # Task ids arrive as strings or numbers depending on the provider
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("task_id")
    @classmethod
    def task_id_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Task ID is missing")
        return value


@dataclass
class InboundEvent:
    """One webhook delivery, alive for the duration of a single request."""

    event_type: str
    task_id: str
    raw_body: bytes = field(repr=False)
    event_id: Optional[str] = None
    event_time: Optional[Union[int, float, str]] = None
    history_items: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: WebhookPayload, raw_body: bytes) -> "InboundEvent":
        return cls(
            event_type=payload.event,
            task_id=payload.task_id,
            raw_body=raw_body,
            event_id=payload.event_id or None,
            event_time=payload.event_time,
            history_items=payload.history_items or [],
        )

    @property
    def is_processed_type(self) -> bool:
        return self.event_type in PROCESSED_EVENT_TYPES

    @property
    def is_update(self) -> bool:
        return self.event_type == "taskUpdated"

    def replay_key(self) -> str:
        """
        Key used by the replay guard.

        event:<event_id> when the provider sent an id, otherwise
        task:<task_id>:<event_time>, falling back to the first history item's
        date and finally the current time in milliseconds.
        """
        if self.event_id:
            return f"event:{self.event_id}"
        timestamp = self.event_time
        if timestamp is None and self.history_items:
            timestamp = self.history_items[0].get("date")
        if timestamp is None:
            timestamp = int(time.time() * 1000)
        return f"task:{self.task_id}:{timestamp}"


def parse_body(raw_body: bytes) -> Dict[str, Any]:
    """Decode a JSON object body; raises ValueError on anything else."""
    try:
        data = json.loads(raw_body)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValueError(f"Body is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ValueError("Event payload must be a JSON object")
    return data
