"""
Webhook envelope models

Every POS notification shares one envelope; the affected object sits under
data.object keyed by its type ("order_created", "payment", ...).
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict


class EventData(BaseModel):
    """Envelope payload section"""

    model_config = ConfigDict(extra="allow")

    type: str
    id: str
    object: Optional[Dict[str, Any]] = None


class WebhookEvent(BaseModel):
    """Parsed webhook envelope"""

    model_config = ConfigDict(extra="allow")

    merchant_id: str
    location_id: Optional[str] = None
    type: str
    event_id: str
    created_at: datetime
    data: EventData

    def payload_object(self, key: str) -> Optional[Dict[str, Any]]:
        """Nested object under data.object[key], if it is a mapping"""
        container = self.data.object or {}
        value = container.get(key)
        return value if isinstance(value, dict) else None

    def full_order(self) -> Optional[Dict[str, Any]]:
        """
        Complete order snapshot embedded in the event, if any.

        Order events normally carry only a summary (id, state, version);
        a payload counts as full when it has line items.
        """
        for key in ("order", "order_created", "order_updated"):
            candidate = self.payload_object(key)
            if candidate and candidate.get("id") and "line_items" in candidate:
                return candidate
        return None

    def order_id(self) -> str:
        """Order id referenced by an order or fulfillment event"""
        for key in ("order_created", "order_updated", "order_fulfillment_updated", "order"):
            candidate = self.payload_object(key)
            if candidate:
                order_id = candidate.get("order_id") or candidate.get("id")
                if order_id:
                    return order_id
        return self.data.id


class WebhookStatus(str, Enum):
    """Terminal dispatcher states"""

    APPLIED = "applied"
    IGNORED = "ignored"
    REJECTED = "rejected"


class WebhookOutcome(BaseModel):
    """Result handed back to the HTTP layer"""

    status: WebhookStatus
    reason: Optional[str] = None
    event_id: Optional[str] = None
    event_type: Optional[str] = None
    order_id: Optional[str] = None
