"""
Normalized POS Records

Typed records handed to the upsert engine, and the functions that build
them from raw POS API / webhook JSON. Both sync paths normalize through
here so a replayed order always produces the same record.
"""

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class LocationRecord(BaseModel):
    """Location as listed by the POS"""
    external_location_id: str
    name: Optional[str] = None
    address: Optional[str] = None
    timezone: Optional[str] = None
    currency: Optional[str] = None
    status: Optional[str] = None
    business_hours: Optional[Dict[str, Any]] = None


class LineItemRecord(BaseModel):
    """Order line as persisted"""
    external_line_item_id: str
    name: str
    quantity: int = Field(default=1, ge=1)
    unit_price_amount: int = 0
    total_price_amount: int = 0
    tax_amount: int = 0
    discount_amount: int = 0
    currency: str
    variation_name: Optional[str] = None
    catalog_object_id: Optional[str] = None


class OrderRecord(BaseModel):
    """Full order snapshot as persisted"""
    external_order_id: str
    location_id: str
    ordered_at: datetime
    state: str
    total_amount: int = 0
    currency: str
    version: int = 1
    source: Optional[str] = None
    line_items: List[LineItemRecord] = Field(default_factory=list)

    @field_validator("ordered_at")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        """Store every timestamp in UTC"""
        return _as_utc(v)


# Raised by the normalize_* functions on payloads of the wrong shape
NORMALIZATION_ERRORS = (KeyError, TypeError, ValueError, AttributeError)


def _object(value: Any, field_name: str) -> Dict[str, Any]:
    """Optional nested JSON object; anything but an object or null is malformed"""
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"{field_name} must be an object, got {type(value).__name__}")
    return value


def _money_amount(money: Any, field_name: str) -> Any:
    # Coerced (and rejected if not integral) by the record's int field
    return _object(money, field_name).get("amount") or 0


def _money_currency(money: Any, field_name: str, default: str) -> str:
    return _object(money, field_name).get("currency") or default


def parse_quantity(value: Any) -> int:
    """
    POS quantities are decimal strings ("2", "1.5").

    Fractions are truncated and anything below one, or unparseable, counts
    as a single unit.
    """
    try:
        quantity = int(Decimal(str(value)))
    except (InvalidOperation, ValueError, TypeError):
        return 1
    return quantity if quantity >= 1 else 1


def _format_address(address: Optional[Dict[str, Any]]) -> Optional[str]:
    if not address:
        return None
    parts = [
        address.get("address_line_1"),
        address.get("locality"),
        address.get("administrative_district_level_1"),
    ]
    formatted = " ".join(part for part in parts if part).strip()
    return formatted or None


def normalize_location(raw: Dict[str, Any]) -> LocationRecord:
    """Build a LocationRecord from a /v2/locations entry"""
    return LocationRecord(
        external_location_id=raw["id"],
        name=raw.get("name"),
        address=_format_address(raw.get("address")),
        timezone=raw.get("timezone"),
        currency=raw.get("currency"),
        status=raw.get("status"),
        business_hours=raw.get("business_hours"),
    )


def normalize_line_items(
    order_id: str,
    raw_line_items: Optional[List[Dict[str, Any]]],
    default_currency: str,
) -> List[LineItemRecord]:
    """Lines without a usable name are dropped; a missing uid gets a positional key"""
    if raw_line_items is None:
        return []
    if not isinstance(raw_line_items, list):
        raise ValueError("line_items must be a list")

    records = []
    for index, raw in enumerate(raw_line_items):
        raw = _object(raw, f"line_items[{index}]")
        name = raw.get("name")
        if not isinstance(name, str) or not name.strip():
            continue
        total_money = raw.get("total_money")
        records.append(
            LineItemRecord(
                external_line_item_id=raw.get("uid") or f"{order_id}:{index}",
                name=name.strip(),
                quantity=parse_quantity(raw.get("quantity")),
                unit_price_amount=_money_amount(raw.get("base_price_money"), "base_price_money"),
                total_price_amount=_money_amount(total_money, "total_money"),
                tax_amount=_money_amount(raw.get("total_tax_money"), "total_tax_money"),
                discount_amount=_money_amount(raw.get("total_discount_money"), "total_discount_money"),
                currency=_money_currency(total_money, "total_money", default_currency),
                variation_name=raw.get("variation_name"),
                catalog_object_id=raw.get("catalog_object_id"),
            )
        )
    return records


def normalize_order(
    raw: Dict[str, Any],
    default_currency: str = "CAD",
    location_id: Optional[str] = None,
) -> OrderRecord:
    """
    Build an OrderRecord from a raw POS order object.

    Args:
        raw: Order JSON as returned by search / retrieve or embedded in a webhook
        default_currency: Currency used when the payload omits one
        location_id: Fallback location when the order omits it

    Raises:
        KeyError: when the order id is missing
        ValueError: when a nested object has the wrong shape
        pydantic.ValidationError: when required fields are malformed
    """
    raw = _object(raw, "order")
    order_id = raw["id"]
    total_money = raw.get("total_money")
    source = _object(raw.get("source"), "source")

    return OrderRecord(
        external_order_id=order_id,
        location_id=raw.get("location_id") or location_id,
        ordered_at=raw.get("created_at"),
        state=raw.get("state") or "OPEN",
        total_amount=_money_amount(total_money, "total_money"),
        currency=_money_currency(total_money, "total_money", default_currency),
        version=raw.get("version") or 1,
        source=source.get("name"),
        line_items=normalize_line_items(order_id, raw.get("line_items"), default_currency),
    )
