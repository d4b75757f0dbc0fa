"""
Catalog Mapper

Builds a read-only snapshot of catalog item / variation / category metadata
from a full pagination of the catalog listing endpoint. The snapshot is built
once per sync run or webhook delivery and passed by reference into the
upsert engine; it is never mutated after construction.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

import structlog

from src.pos.client import PosApiClient

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CatalogItem:
    """Catalog ITEM object"""
    name: str
    category_ids: Tuple[str, ...] = ()

    @property
    def primary_category_id(self) -> Optional[str]:
        # Multi-category items keep only index 0
        return self.category_ids[0] if self.category_ids else None


@dataclass(frozen=True)
class CatalogVariation:
    """Catalog ITEM_VARIATION object"""
    name: str
    item_id: str


@dataclass(frozen=True)
class CatalogCategory:
    """Catalog CATEGORY object"""
    name: str


@dataclass(frozen=True)
class ResolvedCatalogItem:
    """Result of resolving a line item's catalog object id"""
    item_id: str
    item_name: str
    category_id: Optional[str]
    category_name: Optional[str]
    variation_name: Optional[str] = None


def _freeze(mapping: Dict[str, Any]) -> Mapping[str, Any]:
    return MappingProxyType(dict(mapping))


@dataclass(frozen=True)
class CatalogMapping:
    """
    Immutable catalog snapshot.

    items: item id -> CatalogItem
    variations: variation id -> CatalogVariation
    categories: category id -> CatalogCategory
    """
    items: Mapping[str, CatalogItem] = field(default_factory=lambda: MappingProxyType({}))
    variations: Mapping[str, CatalogVariation] = field(default_factory=lambda: MappingProxyType({}))
    categories: Mapping[str, CatalogCategory] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def empty(cls) -> "CatalogMapping":
        return cls()

    @classmethod
    def from_objects(cls, objects: Iterable[Dict[str, Any]]) -> "CatalogMapping":
        """Build a snapshot from raw catalog objects in one pass"""
        items: Dict[str, CatalogItem] = {}
        variations: Dict[str, CatalogVariation] = {}
        categories: Dict[str, CatalogCategory] = {}
        _collect(objects, items, variations, categories)
        return cls(_freeze(items), _freeze(variations), _freeze(categories))

    @property
    def is_empty(self) -> bool:
        return not (self.items or self.variations or self.categories)

    def resolve(self, catalog_object_id: Optional[str]) -> Optional[ResolvedCatalogItem]:
        """
        Resolve a line item's catalog object id.

        Accepts a variation id (the usual case) or a parent item id.
        Returns None when the id is unknown to the snapshot.
        """
        if not catalog_object_id:
            return None

        variation = self.variations.get(catalog_object_id)
        if variation is not None:
            item_id = variation.item_id
            variation_name = variation.name
        elif catalog_object_id in self.items:
            item_id = catalog_object_id
            variation_name = None
        else:
            return None

        item = self.items.get(item_id)
        if item is None:
            return None

        category_id = item.primary_category_id
        category = self.categories.get(category_id) if category_id else None

        return ResolvedCatalogItem(
            item_id=item_id,
            item_name=item.name,
            category_id=category_id,
            category_name=category.name if category else None,
            variation_name=variation_name,
        )


def _category_ids(item_data: Dict[str, Any]) -> Tuple[str, ...]:
    """Both the categories[] array and the legacy single category_id are accepted"""
    categories = item_data.get("categories")
    if categories:
        ids = []
        for category in categories:
            category_id = category if isinstance(category, str) else (category or {}).get("id")
            if category_id:
                ids.append(category_id)
        return tuple(ids)
    if item_data.get("category_id"):
        return (item_data["category_id"],)
    return ()


def _collect(
    objects: Iterable[Dict[str, Any]],
    items: Dict[str, CatalogItem],
    variations: Dict[str, CatalogVariation],
    categories: Dict[str, CatalogCategory],
) -> None:
    for obj in objects:
        object_type = obj.get("type")
        object_id = obj.get("id")
        if not object_id:
            continue

        if object_type == "ITEM":
            item_data = obj.get("item_data") or {}
            items[object_id] = CatalogItem(
                name=item_data.get("name") or "Unknown Item",
                category_ids=_category_ids(item_data),
            )
            for variation in item_data.get("variations") or []:
                if not variation.get("id"):
                    continue
                variation_data = variation.get("item_variation_data") or {}
                variations[variation["id"]] = CatalogVariation(
                    name=variation_data.get("name") or "Regular",
                    item_id=object_id,
                )
        elif object_type == "CATEGORY":
            category_data = obj.get("category_data") or {}
            categories[object_id] = CatalogCategory(
                name=category_data.get("name") or "Unknown Category",
            )


async def build_catalog_mapping(client: PosApiClient) -> CatalogMapping:
    """
    Pull the full catalog and build a snapshot.

    Follows the cursor until exhausted. On any fetch failure the snapshot
    built from the pages received so far is returned (possibly empty) and
    item resolution degrades to name-based inference.
    """
    items: Dict[str, CatalogItem] = {}
    variations: Dict[str, CatalogVariation] = {}
    categories: Dict[str, CatalogCategory] = {}
    pages = 0

    logger.info("Fetching catalog for item categorization")

    try:
        cursor: Optional[str] = None
        while True:
            page = await client.list_catalog_page(cursor)
            pages += 1
            _collect(page.get("objects") or [], items, variations, categories)
            cursor = page.get("cursor")
            if not cursor:
                break
    except Exception as e:
        logger.warning(
            "Catalog fetch failed, falling back to name-based categorization",
            error=str(e),
            pages_fetched=pages,
            items=len(items),
        )

    mapping = CatalogMapping(_freeze(items), _freeze(variations), _freeze(categories))
    logger.info(
        "Catalog mapping built",
        items=len(mapping.items),
        variations=len(mapping.variations),
        categories=len(mapping.categories),
        pages=pages,
    )
    return mapping
