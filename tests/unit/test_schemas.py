"""
Unit Tests - Payload Normalization
"""
from datetime import timezone

import pytest
from pydantic import ValidationError

from src.ingestion.schemas import (
    normalize_line_items,
    normalize_location,
    normalize_order,
    parse_quantity,
)
from tests.helpers import make_line_item, make_order


class TestParseQuantity:

    @pytest.mark.parametrize(
        "raw,expected",
        [("2", 2), ("1.5", 1), ("0.5", 1), ("0", 1), ("-3", 1), (None, 1), ("abc", 1), (4, 4)],
    )
    def test_quantities(self, raw, expected):
        assert parse_quantity(raw) == expected


class TestNormalizeOrder:

    def test_full_order(self):
        record = normalize_order(make_order(version=3))

        assert record.external_order_id == "ORD-1"
        assert record.location_id == "LOC-1"
        assert record.version == 3
        assert record.state == "COMPLETED"
        assert record.total_amount == 1000
        assert record.currency == "CAD"
        assert record.source == "Register"
        assert record.ordered_at.tzinfo == timezone.utc
        assert [line.name for line in record.line_items] == ["Oat Latte", "Butter Croissant"]

    def test_defaults_for_sparse_order(self):
        raw = {"id": "ORD-2", "created_at": "2025-03-01T10:00:00-05:00"}
        record = normalize_order(raw, default_currency="USD", location_id="LOC-9")

        assert record.location_id == "LOC-9"
        assert record.state == "OPEN"
        assert record.version == 1
        assert record.total_amount == 0
        assert record.currency == "USD"
        assert record.line_items == []
        assert record.ordered_at.hour == 15

    def test_missing_id_raises(self):
        with pytest.raises(KeyError):
            normalize_order({"created_at": "2025-03-01T10:00:00Z", "location_id": "L"})

    def test_missing_location_raises(self):
        with pytest.raises(ValidationError):
            normalize_order({"id": "ORD-3", "created_at": "2025-03-01T10:00:00Z"})


class TestNormalizeLineItems:

    def test_lines_without_name_are_dropped(self):
        raw = [
            make_line_item("L1", "Oat Latte"),
            {"uid": "L2", "name": "   "},
            {"uid": "L3"},
        ]
        records = normalize_line_items("ORD-1", raw, "CAD")
        assert [r.external_line_item_id for r in records] == ["L1"]

    def test_missing_uid_gets_positional_key(self):
        raw = [{"name": "Chai", "quantity": "2"}]
        records = normalize_line_items("ORD-1", raw, "CAD")

        assert records[0].external_line_item_id == "ORD-1:0"
        assert records[0].quantity == 2
        assert records[0].currency == "CAD"

    def test_money_fields(self):
        raw = [make_line_item("L1", "Muffin", amount=350, quantity="2", catalog_object_id="VAR-1")]
        line = normalize_line_items("ORD-1", raw, "CAD")[0]

        assert line.unit_price_amount == 350
        assert line.total_price_amount == 700
        assert line.catalog_object_id == "VAR-1"
        assert line.variation_name == "Regular"


class TestNormalizeLocation:

    def test_address_formatting(self):
        record = normalize_location({
            "id": "LOC-1",
            "name": "Queen West",
            "address": {
                "address_line_1": "100 Queen St W",
                "locality": "Toronto",
                "administrative_district_level_1": "ON",
            },
            "timezone": "America/Toronto",
            "currency": "CAD",
            "status": "ACTIVE",
        })

        assert record.external_location_id == "LOC-1"
        assert record.address == "100 Queen St W Toronto ON"
        assert record.timezone == "America/Toronto"

    def test_missing_address(self):
        assert normalize_location({"id": "LOC-2"}).address is None


class TestMalformedShapes:

    def test_non_numeric_amount_raises(self):
        raw = make_order()
        raw["total_money"] = {"amount": "n/a", "currency": "CAD"}
        with pytest.raises(ValidationError):
            normalize_order(raw)

    def test_numeric_string_amount_is_coerced(self):
        raw = make_order()
        raw["total_money"] = {"amount": "1250", "currency": "CAD"}
        assert normalize_order(raw).total_amount == 1250

    def test_string_source_raises(self):
        raw = make_order()
        raw["source"] = "Register"
        with pytest.raises(ValueError, match="source"):
            normalize_order(raw)

    def test_non_object_line_item_raises(self):
        raw = make_order()
        raw["line_items"] = ["Oat Latte"]
        with pytest.raises(ValueError, match="line_items"):
            normalize_order(raw)

    def test_non_object_money_raises(self):
        line = make_line_item("L1", "Oat Latte")
        line["base_price_money"] = 575
        with pytest.raises(ValueError, match="base_price_money"):
            normalize_line_items("ORD-1", [line], "CAD")
