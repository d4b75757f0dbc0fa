"""
Replica maintenance

Repairs applied after the fact to rows written in degraded mode:
line items that lost their item link because the item upsert failed, and
line items that never got a category snapshot.
"""

from dataclasses import dataclass
from typing import List, Tuple
import uuid

import structlog
from sqlalchemy import exists, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from src.database.models import Item, LineItem
from src.ingestion.categorization import generated_item_key, infer_category
from src.ingestion.upsert import dialect_insert

logger = structlog.get_logger(__name__)


@dataclass
class OrphanLinkResult:
    names_processed: int = 0
    items_created: int = 0
    line_items_linked: int = 0


@dataclass
class CategoryBackfillResult:
    from_items: int = 0
    from_siblings: int = 0

    @property
    def total(self) -> int:
        return self.from_items + self.from_siblings


async def _item_for_name(session: AsyncSession, name: str) -> Tuple[uuid.UUID, bool]:
    """Existing item with this name, else the generated-key item (created if needed)"""
    item_id = await session.scalar(
        select(Item.id).where(Item.name == name).order_by(Item.created_at).limit(1)
    )
    if item_id is not None:
        return item_id, False

    key = generated_item_key(name)
    stmt = dialect_insert(session, Item).values(
        id=uuid.uuid4(),
        external_item_id=key,
        name=name,
        category=infer_category(name),
        is_active=True,
    )
    await session.execute(stmt.on_conflict_do_nothing(index_elements=[Item.__table__.c.external_item_id]))
    item_id = await session.scalar(select(Item.id).where(Item.external_item_id == key))
    return item_id, True


async def link_orphan_line_items(session: AsyncSession) -> OrphanLinkResult:
    """
    Link line items whose item_id is NULL.

    Orphans are grouped by name; every orphan with a given name is pointed at
    the same item.
    """
    result = OrphanLinkResult()

    names: List[str] = list(
        (
            await session.execute(
                select(LineItem.name).where(LineItem.item_id.is_(None)).distinct()
            )
        ).scalars()
    )
    logger.info("Linking orphan line items", distinct_names=len(names))

    for name in names:
        item_id, created = await _item_for_name(session, name)
        linked = await session.execute(
            update(LineItem)
            .where(LineItem.name == name, LineItem.item_id.is_(None))
            .values(item_id=item_id, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        result.names_processed += 1
        result.items_created += int(created)
        result.line_items_linked += linked.rowcount
        logger.debug("Linked orphans", item_name=name, line_items=linked.rowcount, item_created=created)

    logger.info(
        "Orphan linking complete",
        names_processed=result.names_processed,
        items_created=result.items_created,
        line_items_linked=result.line_items_linked,
    )
    return result


async def backfill_line_item_categories(session: AsyncSession) -> CategoryBackfillResult:
    """
    Fill missing line item categories.

    First from the linked item, then from any other line item with the
    same name that already has one.
    """
    item_category = (
        select(Item.category)
        .where(Item.id == LineItem.item_id, Item.category.is_not(None))
        .scalar_subquery()
    )
    from_items = await session.execute(
        update(LineItem)
        .where(
            LineItem.category.is_(None),
            exists().where(Item.id == LineItem.item_id, Item.category.is_not(None)),
        )
        .values(category=item_category, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )

    sibling = aliased(LineItem)
    sibling_category = (
        select(sibling.category)
        .where(sibling.name == LineItem.name, sibling.category.is_not(None))
        .limit(1)
        .scalar_subquery()
    )
    from_siblings = await session.execute(
        update(LineItem)
        .where(
            LineItem.category.is_(None),
            exists().where(sibling.name == LineItem.name, sibling.category.is_not(None)),
        )
        .values(category=sibling_category, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )

    result = CategoryBackfillResult(
        from_items=from_items.rowcount,
        from_siblings=from_siblings.rowcount,
    )
    logger.info(
        "Category backfill complete",
        from_items=result.from_items,
        from_siblings=result.from_siblings,
    )
    return result
