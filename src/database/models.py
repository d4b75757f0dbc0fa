"""
Database Models - POS Replica Schema

This module defines the relational replica of the external point-of-sale
system. Every table carries the external (natural) identifier it was synced
from, which is what idempotent upserts match on:

- Location: store / register location (natural key: external_location_id)
- Item: catalog entry, resolved from the catalog or synthesized from a name
- Order: one POS order snapshot, guarded by a monotonic version counter
- LineItem: order line, linked to its order by internal id

Operational tables:
- SyncRun: one row per historical / incremental pull

Currency amounts are integer minor units. Timestamps are UTC.
"""

from datetime import datetime
from enum import Enum
from typing import Optional, List
import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


# =============================================================================
# ENUMERATIONS
# =============================================================================

class OrderState(str, Enum):
    """Order lifecycle states reported by the POS"""
    OPEN = "OPEN"
    COMPLETED = "COMPLETED"
    CANCELED = "CANCELED"
    DRAFT = "DRAFT"


class SyncMode(str, Enum):
    """Historical sync modes"""
    FULL = "full"
    INCREMENTAL = "incremental"


class SyncStatus(str, Enum):
    """Sync run status"""
    RUNNING = "running"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


# =============================================================================
# REPLICA TABLES
# =============================================================================

class Location(Base):
    """
    Location Table

    Created the first time either sync path observes a location id.
    Updated in place, never deleted.
    """
    __tablename__ = "locations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    external_location_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)

    name: Mapped[Optional[str]] = mapped_column(String(255))
    address: Mapped[Optional[str]] = mapped_column(String(500))
    timezone: Mapped[Optional[str]] = mapped_column(String(64))
    currency: Mapped[Optional[str]] = mapped_column(String(3))
    status: Mapped[Optional[str]] = mapped_column(String(32))
    business_hours: Mapped[Optional[dict]] = mapped_column(JSONType)

    # Audit
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    orders: Mapped[List["Order"]] = relationship(back_populates="location")


class Item(Base):
    """
    Item (catalog entry) Table

    external_item_id is the catalog parent item id when the catalog resolves
    the line item, otherwise a GENERATED_<NAME> key derived from the name.
    """
    __tablename__ = "items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    external_item_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)

    catalog_object_id: Mapped[Optional[str]] = mapped_column(String(64))
    category_id: Mapped[Optional[str]] = mapped_column(String(64))

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(100))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Audit
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    line_items: Mapped[List["LineItem"]] = relationship(back_populates="item")

    __table_args__ = (
        Index("ix_items_category", "category"),
        Index("ix_items_catalog_object_id", "catalog_object_id"),
    )


class Order(Base):
    """
    Order Table

    One row per external order. version never decreases: the upsert only
    overwrites a stored row with a snapshot of equal or higher version.
    """
    __tablename__ = "orders"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    external_order_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)

    location_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("locations.external_location_id"), nullable=False
    )
    ordered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    state: Mapped[str] = mapped_column(String(32), nullable=False)
    total_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    source: Mapped[Optional[str]] = mapped_column(String(100))

    # Audit
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    location: Mapped["Location"] = relationship(back_populates="orders")
    line_items: Mapped[List["LineItem"]] = relationship(
        back_populates="order", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_orders_location_ordered_at", "location_id", "ordered_at"),
        Index("ix_orders_state", "state"),
    )


class LineItem(Base):
    """
    Line Item Table

    category is a point-in-time snapshot and may lag the item's current
    category.
    """
    __tablename__ = "line_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    external_line_item_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False
    )
    item_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("items.id", ondelete="SET NULL")
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    unit_price_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_price_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tax_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    discount_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    variation_name: Mapped[Optional[str]] = mapped_column(String(255))
    category: Mapped[Optional[str]] = mapped_column(String(100))

    # Audit
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    order: Mapped["Order"] = relationship(back_populates="line_items")
    item: Mapped[Optional["Item"]] = relationship(back_populates="line_items")

    __table_args__ = (
        Index("ix_line_items_order", "order_id"),
        Index("ix_line_items_item", "item_id"),
        Index("ix_line_items_name", "name"),
    )


# =============================================================================
# OPERATIONAL TABLES
# =============================================================================

class SyncRun(Base):
    """
    Sync Run Table

    Audit trail of historical pulls. The end of the last successful window
    seeds the next incremental window.
    """
    __tablename__ = "sync_runs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    mode: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=SyncStatus.RUNNING.value)

    window_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    window_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    locations_synced: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    locations_failed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    pages_fetched: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    orders_synced: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    orders_failed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    error_message: Mapped[Optional[str]] = mapped_column(Text)

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_sync_runs_status_window_end", "status", "window_end"),
    )
