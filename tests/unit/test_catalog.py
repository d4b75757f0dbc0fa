"""
Unit Tests - Catalog Mapper
"""
import httpx
import pytest

from src.ingestion.catalog import CatalogMapping, build_catalog_mapping
from src.pos.client import PosApiClient
from tests.helpers import RecordingSleep

CATALOG_PAGE_1 = {
    "objects": [
        {"type": "CATEGORY", "id": "CAT-BEV", "category_data": {"name": "Hot Beverages"}},
        {
            "type": "ITEM",
            "id": "ITEM-LATTE",
            "item_data": {
                "name": "Latte",
                "categories": [{"id": "CAT-BEV"}, {"id": "CAT-OTHER"}],
                "variations": [
                    {"id": "VAR-LATTE-12", "item_variation_data": {"name": "12 oz"}},
                    {"id": "VAR-LATTE-16", "item_variation_data": {}},
                ],
            },
        },
    ],
    "cursor": "page-2",
}

CATALOG_PAGE_2 = {
    "objects": [
        {
            "type": "ITEM",
            "id": "ITEM-MUG",
            "item_data": {"name": "Mug", "category_id": "CAT-RETAIL"},
        },
        {"type": "CATEGORY", "id": "CAT-RETAIL", "category_data": {"name": "Retail"}},
        {"type": "TAX", "id": "TAX-1"},
    ],
}


def _client(test_settings, handler) -> PosApiClient:
    return PosApiClient(
        test_settings.pos_api,
        transport=httpx.MockTransport(handler),
        sleep=RecordingSleep(),
    )


class TestCatalogMapping:

    def test_from_objects_indexes_everything(self):
        mapping = CatalogMapping.from_objects(CATALOG_PAGE_1["objects"] + CATALOG_PAGE_2["objects"])

        assert set(mapping.items) == {"ITEM-LATTE", "ITEM-MUG"}
        assert set(mapping.variations) == {"VAR-LATTE-12", "VAR-LATTE-16"}
        assert set(mapping.categories) == {"CAT-BEV", "CAT-RETAIL"}
        assert mapping.variations["VAR-LATTE-16"].name == "Regular"

    def test_first_category_is_primary(self):
        mapping = CatalogMapping.from_objects(CATALOG_PAGE_1["objects"])
        assert mapping.items["ITEM-LATTE"].category_ids == ("CAT-BEV", "CAT-OTHER")
        assert mapping.items["ITEM-LATTE"].primary_category_id == "CAT-BEV"

    def test_resolve_variation(self):
        mapping = CatalogMapping.from_objects(CATALOG_PAGE_1["objects"])
        resolved = mapping.resolve("VAR-LATTE-12")

        assert resolved.item_id == "ITEM-LATTE"
        assert resolved.item_name == "Latte"
        assert resolved.category_id == "CAT-BEV"
        assert resolved.category_name == "Hot Beverages"
        assert resolved.variation_name == "12 oz"

    def test_resolve_item_id_and_legacy_category(self):
        mapping = CatalogMapping.from_objects(CATALOG_PAGE_2["objects"])
        resolved = mapping.resolve("ITEM-MUG")

        assert resolved.item_id == "ITEM-MUG"
        assert resolved.category_name == "Retail"

    @pytest.mark.parametrize("object_id", [None, "", "VAR-UNKNOWN"])
    def test_resolve_unknown(self, object_id):
        mapping = CatalogMapping.from_objects(CATALOG_PAGE_1["objects"])
        assert mapping.resolve(object_id) is None

    def test_mapping_is_read_only(self):
        mapping = CatalogMapping.from_objects(CATALOG_PAGE_1["objects"])
        with pytest.raises(TypeError):
            mapping.items["NEW"] = None

    def test_empty(self):
        assert CatalogMapping.empty().is_empty
        assert CatalogMapping.empty().resolve("VAR-LATTE-12") is None


class TestBuildCatalogMapping:

    async def test_follows_cursor(self, test_settings):
        cursors = []

        def handler(request):
            cursor = request.url.params.get("cursor")
            cursors.append(cursor)
            return httpx.Response(200, json=CATALOG_PAGE_2 if cursor == "page-2" else CATALOG_PAGE_1)

        async with _client(test_settings, handler) as client:
            mapping = await build_catalog_mapping(client)

        assert cursors == [None, "page-2"]
        assert len(mapping.items) == 2
        assert mapping.resolve("VAR-LATTE-16").category_name == "Hot Beverages"

    async def test_failed_pull_returns_empty_mapping(self, test_settings):
        async with _client(test_settings, lambda r: httpx.Response(401, json={"errors": []})) as client:
            mapping = await build_catalog_mapping(client)

        assert mapping.is_empty
        assert len(mapping.items) == 0
        assert len(mapping.variations) == 0
        assert len(mapping.categories) == 0

    async def test_failure_mid_pagination_keeps_received_pages(self, test_settings):
        def handler(request):
            if request.url.params.get("cursor") == "page-2":
                return httpx.Response(500, text="unavailable")
            return httpx.Response(200, json=CATALOG_PAGE_1)

        async with _client(test_settings, handler) as client:
            mapping = await build_catalog_mapping(client)

        assert set(mapping.items) == {"ITEM-LATTE"}
        assert "ITEM-MUG" not in mapping.items
