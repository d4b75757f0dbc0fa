"""
Category Inference

Rule-based fallback classifier used when an item has no catalog match, or
to collapse a catalog category name onto the dashboard's canonical tags.
Both functions are pure: replays of the same input must produce the same
category so idempotent upserts converge.
"""

import re
from typing import Any, Optional, Sequence, Tuple

OTHER_CATEGORY = "other"

# Catalog category name -> canonical tag, first match wins
CATALOG_CATEGORY_BUCKETS: Sequence[Tuple[Tuple[str, ...], str]] = (
    (("coffee",), "coffee"),
    (("tea",), "tea"),
    (("food",), "food"),
    (("beverage",), "beverages"),
    (("signature",), "signature-drinks"),
    (("retail",), "retail"),
    (("wholesale",), "wholesale"),
    (("apparel", "merchandize"), "merchandise"),
    (("syrup", "powder", "modification"), "add-ons"),
    (("education", "event"), "services"),
)

# Item display name -> canonical tag, first match wins
ITEM_NAME_BUCKETS: Sequence[Tuple[Tuple[str, ...], str]] = (
    (("coffee", "brew", "americano", "espresso"), "coffee"),
    (("latte", "cappuccino", "macchiato"), "coffee-drinks"),
    (("tea", "chai", "matcha"), "tea"),
    (("croissant", "danish", "muffin", "bagel"), "pastry"),
    (("sandwich", "wrap", "salad"), "food"),
    (("juice", "smoothie"), "beverages"),
)

_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_WHITESPACE = re.compile(r"\s+")


def _first_match(
    text: str, buckets: Sequence[Tuple[Tuple[str, ...], str]]
) -> Optional[str]:
    for keywords, category in buckets:
        if any(keyword in text for keyword in keywords):
            return category
    return None


def slugify_category(category_name: str) -> str:
    """Lower-case and collapse every run of non [a-z0-9] characters into '-'"""
    return _NON_ALNUM.sub("-", category_name.lower())


def infer_category(item_name: Any, catalog_category: Optional[str] = None) -> str:
    """
    Produce a canonical category tag.

    Args:
        item_name: Item display name (non-text values fall through to 'other')
        catalog_category: Category name resolved from the catalog, if any

    Returns:
        Canonical category tag

    Example:
        >>> infer_category("Oat Latte")
        'coffee-drinks'
        >>> infer_category("Anything", "Hot Beverages")
        'beverages'
    """
    if catalog_category:
        lowered = catalog_category.lower()
        return _first_match(lowered, CATALOG_CATEGORY_BUCKETS) or slugify_category(catalog_category)

    if not item_name or not isinstance(item_name, str):
        return OTHER_CATEGORY

    return _first_match(item_name.lower(), ITEM_NAME_BUCKETS) or OTHER_CATEGORY


def generated_item_key(item_name: str) -> str:
    """
    Deterministic synthetic item key for names with no catalog identifier.

    Whitespace runs become underscores and the result is upper-cased,
    e.g. "Oat  Latte" -> "GENERATED_OAT_LATTE".
    """
    normalized = _WHITESPACE.sub("_", item_name.strip()).upper()
    return f"GENERATED_{normalized}"
