"""
Idempotent Upsert Engine

Writes normalized POS records into the replica so that re-applying the same
batch any number of times leaves the same final state:

- Locations and items are matched on their external natural keys
- Orders are matched on the external order id and only overwritten by a
  snapshot of equal or higher version (older snapshots are stale no-ops)
- Line items are matched on the external line item id and point at the
  order's internal id, which is re-read after the order upsert

All writes are INSERT ... ON CONFLICT DO UPDATE statements, so concurrent
webhook deliveries of the same event converge without a dedup table.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Set, Tuple
import uuid

import structlog
from prometheus_client import Counter
from sqlalchemy import func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.database.models import Item, LineItem, Location, Order
from src.ingestion.catalog import CatalogMapping
from src.ingestion.categorization import generated_item_key, infer_category
from src.ingestion.schemas import LineItemRecord, LocationRecord, OrderRecord

logger = structlog.get_logger(__name__)


ORDERS_UPSERTED = Counter(
    "pos_orders_upserted_total",
    "Orders passed through the upsert engine",
    ["result"],
)

ITEM_FAILURES = Counter(
    "pos_item_upsert_failures_total",
    "Item upserts that failed and were skipped",
)


# =============================================================================
# RESULTS AND ERRORS
# =============================================================================

class OrderOutcome(str, Enum):
    """Per-order write result"""
    APPLIED = "applied"
    STALE = "stale"


class OrderWriteError(Exception):
    """Order or line item persistence failed; carries replay context"""

    def __init__(self, external_order_id: str, location_id: str, cause: Exception):
        super().__init__(
            f"Failed to write order {external_order_id} (location {location_id}): {cause}"
        )
        self.external_order_id = external_order_id
        self.location_id = location_id
        self.cause = cause

    @property
    def is_connection_error(self) -> bool:
        """Connection-level failures abort the whole unit of work"""
        return isinstance(self.cause, (OperationalError, InterfaceError)) or bool(
            getattr(self.cause, "connection_invalidated", False)
        )


@dataclass
class OrderFailure:
    """Context needed to replay a failed order by hand"""
    external_order_id: str
    location_id: str
    error: str


@dataclass
class UpsertResult:
    """Counters for one apply_batch call"""
    orders_applied: int = 0
    orders_stale: int = 0
    orders_failed: int = 0
    line_items_written: int = 0
    items_upserted: int = 0
    item_failures: int = 0
    failures: List[OrderFailure] = field(default_factory=list)

    def merge(self, other: "UpsertResult") -> None:
        self.orders_applied += other.orders_applied
        self.orders_stale += other.orders_stale
        self.orders_failed += other.orders_failed
        self.line_items_written += other.line_items_written
        self.items_upserted += other.items_upserted
        self.item_failures += other.item_failures
        self.failures.extend(other.failures)


@dataclass(frozen=True)
class ItemResolution:
    """Item id (None when creation failed) and the category snapshot for its lines"""
    item_id: Optional[uuid.UUID]
    category: str


# =============================================================================
# DIALECT HELPERS
# =============================================================================

def dialect_insert(session: AsyncSession, model):
    """INSERT construct supporting ON CONFLICT for the session's dialect"""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise NotImplementedError(f"Upserts are not supported on dialect {dialect!r}")


# =============================================================================
# ENGINE
# =============================================================================

class UpsertEngine:
    """
    Idempotent writer for one unit of work.

    The catalog snapshot is read-only and shared by every call made through
    this engine; the item cache only lives as long as the engine.

    Example:
        async with get_db() as db:
            engine = UpsertEngine(db, catalog)
            result = await engine.apply_batch(orders, continue_on_error=True)
    """

    def __init__(self, session: AsyncSession, catalog: Optional[CatalogMapping] = None):
        self.session = session
        self.catalog = catalog or CatalogMapping.empty()
        self._known_locations: Set[str] = set()
        self._item_cache: Dict[Tuple[str, Optional[str]], ItemResolution] = {}

    # -------------------------------------------------------------------------
    # Locations
    # -------------------------------------------------------------------------

    async def ensure_location(self, external_location_id: str, name: Optional[str] = None) -> None:
        """Create the location if absent; fill the name only if still unknown"""
        if external_location_id in self._known_locations:
            return

        table = Location.__table__
        stmt = dialect_insert(self.session, Location).values(
            id=uuid.uuid4(),
            external_location_id=external_location_id,
            name=name,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.external_location_id],
            set_={"name": func.coalesce(table.c.name, stmt.excluded.name)},
        )
        await self.session.execute(stmt)
        self._known_locations.add(external_location_id)

    async def upsert_locations(self, records: Iterable[LocationRecord]) -> int:
        """
        Write authoritative location listings.

        Unlike ensure_location, listed attributes overwrite stored ones.
        """
        count = 0
        for record in records:
            stmt = dialect_insert(self.session, Location).values(
                id=uuid.uuid4(), **record.model_dump()
            )
            excluded = stmt.excluded
            table = Location.__table__
            stmt = stmt.on_conflict_do_update(
                index_elements=[table.c.external_location_id],
                set_={
                    "name": func.coalesce(excluded.name, table.c.name),
                    "address": func.coalesce(excluded.address, table.c.address),
                    "timezone": func.coalesce(excluded.timezone, table.c.timezone),
                    "currency": func.coalesce(excluded.currency, table.c.currency),
                    "status": func.coalesce(excluded.status, table.c.status),
                    "business_hours": excluded.business_hours,
                    "updated_at": func.now(),
                },
            )
            await self.session.execute(stmt)
            self._known_locations.add(record.external_location_id)
            count += 1
        return count

    # -------------------------------------------------------------------------
    # Items
    # -------------------------------------------------------------------------

    async def resolve_item(self, line: LineItemRecord, result: UpsertResult) -> ItemResolution:
        """
        Resolve and upsert the item behind a line.

        Catalog hit: keyed by the parent catalog item id, categorized from the
        catalog category. Miss: keyed by GENERATED_<NAME>, categorized from
        the name. A failed upsert is logged and the line keeps item_id None.
        """
        cache_key = (line.name, line.catalog_object_id)
        cached = self._item_cache.get(cache_key)
        if cached is not None:
            return cached

        resolved = self.catalog.resolve(line.catalog_object_id)
        if resolved is not None:
            external_item_id = resolved.item_id
            item_name = resolved.item_name
            category_id = resolved.category_id
            category = infer_category(line.name, resolved.category_name)
        else:
            external_item_id = generated_item_key(line.name)
            item_name = line.name
            category_id = None
            category = infer_category(line.name)

        table = Item.__table__
        stmt = dialect_insert(self.session, Item).values(
            id=uuid.uuid4(),
            external_item_id=external_item_id,
            catalog_object_id=line.catalog_object_id,
            category_id=category_id,
            name=item_name,
            category=category,
            is_active=True,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.external_item_id],
            set_={
                "name": stmt.excluded.name,
                "category": stmt.excluded.category,
                "category_id": stmt.excluded.category_id,
                "catalog_object_id": func.coalesce(
                    stmt.excluded.catalog_object_id, table.c.catalog_object_id
                ),
                "is_active": stmt.excluded.is_active,
                "updated_at": func.now(),
            },
        )

        try:
            async with self.session.begin_nested():
                await self.session.execute(stmt)
                item_id = await self.session.scalar(
                    select(Item.id).where(Item.external_item_id == external_item_id)
                )
        except SQLAlchemyError as e:
            ITEM_FAILURES.inc()
            result.item_failures += 1
            logger.warning(
                "Could not upsert item, line item will be written unlinked",
                item_name=line.name,
                external_item_id=external_item_id,
                error=str(e),
            )
            # Not cached: a later line with the same name retries the upsert
            return ItemResolution(item_id=None, category=category)

        result.items_upserted += 1
        resolution = ItemResolution(item_id=item_id, category=category)
        self._item_cache[cache_key] = resolution
        return resolution

    # -------------------------------------------------------------------------
    # Orders
    # -------------------------------------------------------------------------

    async def _upsert_order_row(self, order: OrderRecord) -> Tuple[uuid.UUID, int]:
        table = Order.__table__
        stmt = dialect_insert(self.session, Order).values(
            id=uuid.uuid4(),
            external_order_id=order.external_order_id,
            location_id=order.location_id,
            ordered_at=order.ordered_at,
            state=order.state,
            total_amount=order.total_amount,
            currency=order.currency,
            version=order.version,
            source=order.source,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.external_order_id],
            set_={
                "state": stmt.excluded.state,
                "total_amount": stmt.excluded.total_amount,
                "currency": stmt.excluded.currency,
                "version": stmt.excluded.version,
                "source": stmt.excluded.source,
                "updated_at": func.now(),
            },
            # version never decreases
            where=table.c.version <= stmt.excluded.version,
        )
        await self.session.execute(stmt)

        # Line items reference the internal id, which differs from the external one
        row = (
            await self.session.execute(
                select(Order.id, Order.version).where(
                    Order.external_order_id == order.external_order_id
                )
            )
        ).one()
        return row.id, row.version

    async def _upsert_line_items(
        self,
        order_id: uuid.UUID,
        lines: List[LineItemRecord],
        resolutions: Dict[str, ItemResolution],
    ) -> int:
        # A repeated uid inside one snapshot keeps its last occurrence
        unique_lines = {line.external_line_item_id: line for line in lines}
        if not unique_lines:
            return 0

        rows = []
        for line in unique_lines.values():
            resolution = resolutions[line.external_line_item_id]
            rows.append({
                "id": uuid.uuid4(),
                "external_line_item_id": line.external_line_item_id,
                "order_id": order_id,
                "item_id": resolution.item_id,
                "name": line.name,
                "quantity": line.quantity,
                "unit_price_amount": line.unit_price_amount,
                "total_price_amount": line.total_price_amount,
                "tax_amount": line.tax_amount,
                "discount_amount": line.discount_amount,
                "currency": line.currency,
                "variation_name": line.variation_name,
                "category": resolution.category,
            })

        table = LineItem.__table__
        stmt = dialect_insert(self.session, LineItem).values(rows)
        excluded = stmt.excluded
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.external_line_item_id],
            set_={
                "order_id": excluded.order_id,
                "item_id": func.coalesce(excluded.item_id, table.c.item_id),
                "name": excluded.name,
                "quantity": excluded.quantity,
                "unit_price_amount": excluded.unit_price_amount,
                "total_price_amount": excluded.total_price_amount,
                "tax_amount": excluded.tax_amount,
                "discount_amount": excluded.discount_amount,
                "currency": excluded.currency,
                "variation_name": excluded.variation_name,
                "category": excluded.category,
                "updated_at": func.now(),
            },
        )
        await self.session.execute(stmt)
        return len(rows)

    @staticmethod
    def _stale(stored_version: int, result: UpsertResult, log) -> OrderOutcome:
        log.info("Skipping stale order snapshot", stored_version=stored_version)
        result.orders_stale += 1
        ORDERS_UPSERTED.labels(result=OrderOutcome.STALE.value).inc()
        return OrderOutcome.STALE

    async def apply_order(self, order: OrderRecord, result: Optional[UpsertResult] = None) -> OrderOutcome:
        """
        Apply one order snapshot.

        Raises:
            OrderWriteError: location, order or line item write failed
        """
        result = result if result is not None else UpsertResult()
        log = logger.bind(
            external_order_id=order.external_order_id,
            location_id=order.location_id,
            version=order.version,
        )

        try:
            # Stale snapshots must not touch items either
            stored_version = await self.session.scalar(
                select(Order.version).where(Order.external_order_id == order.external_order_id)
            )
            if stored_version is not None and stored_version > order.version:
                return self._stale(stored_version, result, log)

            await self.ensure_location(order.location_id)

            resolutions: Dict[str, ItemResolution] = {}
            for line in order.line_items:
                resolutions[line.external_line_item_id] = await self.resolve_item(line, result)

            # Re-checked: a newer version may have landed since the read above
            order_id, stored_version = await self._upsert_order_row(order)
            if stored_version > order.version:
                return self._stale(stored_version, result, log)

            written = await self._upsert_line_items(order_id, order.line_items, resolutions)
        except SQLAlchemyError as e:
            raise OrderWriteError(order.external_order_id, order.location_id, e) from e

        result.orders_applied += 1
        result.line_items_written += written
        ORDERS_UPSERTED.labels(result=OrderOutcome.APPLIED.value).inc()
        log.debug("Order applied", line_items=written)
        return OrderOutcome.APPLIED

    async def apply_batch(
        self,
        orders: Iterable[OrderRecord],
        continue_on_error: bool = False,
    ) -> UpsertResult:
        """
        Apply a batch of order snapshots.

        Args:
            orders: Normalized order snapshots
            continue_on_error: Isolate each order in a savepoint and keep going
                past data / constraint errors. Connection-level failures
                always propagate.

        Returns:
            UpsertResult with per-batch counters and failure context
        """
        result = UpsertResult()

        for order in orders:
            if not continue_on_error:
                await self.apply_order(order, result)
                continue

            try:
                async with self.session.begin_nested():
                    await self.apply_order(order, result)
            except OrderWriteError as e:
                if e.is_connection_error:
                    raise
                result.orders_failed += 1
                result.failures.append(
                    OrderFailure(
                        external_order_id=e.external_order_id,
                        location_id=e.location_id,
                        error=str(e.cause),
                    )
                )
                ORDERS_UPSERTED.labels(result="failed").inc()
                logger.error(
                    "Order write failed, continuing with batch",
                    external_order_id=e.external_order_id,
                    location_id=e.location_id,
                    error=str(e.cause),
                )
                # Rolled-back savepoint may have discarded cached item rows
                self._item_cache.clear()
                self._known_locations.clear()

        return result

    # -------------------------------------------------------------------------
    # Fulfillment
    # -------------------------------------------------------------------------

    async def touch_order(self, external_order_id: str) -> bool:
        """
        Bump an order's updated_at.

        Returns False when the order is unknown to the replica.
        """
        outcome = await self.session.execute(
            update(Order)
            .where(Order.external_order_id == external_order_id)
            .values(updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        return outcome.rowcount > 0
