"""
Raw POS payload builders and webhook signing helpers shared by the tests
"""
import json
from typing import Any, Dict, List, Optional

from src.webhooks.verification import compute_signature

WEBHOOK_SECRET = "test-signature-key"
NOTIFICATION_URL = "https://example.test/api/webhooks/pos"


def make_line_item(
    uid: str,
    name: str,
    amount: int = 500,
    quantity: str = "1",
    catalog_object_id: Optional[str] = None,
    currency: str = "CAD",
) -> Dict[str, Any]:
    line = {
        "uid": uid,
        "name": name,
        "quantity": quantity,
        "base_price_money": {"amount": amount, "currency": currency},
        "total_money": {"amount": amount * int(float(quantity)), "currency": currency},
        "total_tax_money": {"amount": 0, "currency": currency},
        "total_discount_money": {"amount": 0, "currency": currency},
        "variation_name": "Regular",
    }
    if catalog_object_id:
        line["catalog_object_id"] = catalog_object_id
    return line


def make_order(
    order_id: str = "ORD-1",
    location_id: str = "LOC-1",
    version: int = 1,
    state: str = "COMPLETED",
    created_at: str = "2025-03-01T10:00:00Z",
    line_items: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    if line_items is None:
        line_items = [
            make_line_item(f"{order_id}-L1", "Oat Latte", amount=575),
            make_line_item(f"{order_id}-L2", "Butter Croissant", amount=425),
        ]
    total = sum(line["total_money"]["amount"] for line in line_items)
    return {
        "id": order_id,
        "location_id": location_id,
        "state": state,
        "version": version,
        "created_at": created_at,
        "total_money": {"amount": total, "currency": "CAD"},
        "source": {"name": "Register"},
        "line_items": line_items,
    }


def make_event(
    event_type: str,
    data_type: str,
    data_id: str,
    obj: Optional[Dict[str, Any]] = None,
    event_id: str = "evt-1",
) -> bytes:
    envelope = {
        "merchant_id": "MERCHANT-1",
        "location_id": "LOC-1",
        "type": event_type,
        "event_id": event_id,
        "created_at": "2025-03-01T10:05:00Z",
        "data": {"type": data_type, "id": data_id, "object": obj or {}},
    }
    return json.dumps(envelope).encode("utf-8")


def signed_headers(body: bytes, environment: str = "Production", **extra: str) -> Dict[str, str]:
    headers = {
        "content-type": "application/json",
        "environment": environment,
        "x-signature": compute_signature(body, WEBHOOK_SECRET, NOTIFICATION_URL),
    }
    headers.update(extra)
    return headers


class RecordingSleep:
    """Stand-in for asyncio.sleep that records requested delays"""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
