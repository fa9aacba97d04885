"""Database models for the POS store.

These models describe the single SQLite schema used by the application. They
are kept free of application wiring so that tests, the integrity checker and
the backup service can use them independently."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow() -> datetime:
    """Return the current UTC time as a naive ``datetime``."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Product(Base):
    """Catalog entry; ``is_trackable`` enables stock keeping."""

    __tablename__ = "products"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    price = Column(Float, nullable=False)
    tax_rate = Column(Float, nullable=False, default=0.0)
    is_trackable = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    inventory = relationship("Inventory", back_populates="product", uselist=False)


class Inventory(Base):
    """Current stock balance for a trackable product."""

    __tablename__ = "inventory"
    __table_args__ = (CheckConstraint("current_stock >= 0", name="ck_stock_positive"),)

    id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, unique=True)
    current_stock = Column(Integer, nullable=False, default=0)
    reorder_level = Column(Integer, nullable=False, default=0)
    max_stock = Column(Integer, nullable=True)
    cost_price = Column(Float, nullable=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    product = relationship("Product", back_populates="inventory")


class StockMovement(Base):
    """Append-only ledger entry for one inventory change."""

    __tablename__ = "stock_movements"
    __table_args__ = (CheckConstraint("quantity > 0", name="ck_movement_quantity"),)

    id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    movement_type = Column(String, nullable=False)
    quantity = Column(Integer, nullable=False)
    reference_type = Column(String, nullable=False)
    reference_id = Column(Integer, nullable=True)
    reason = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    created_by = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class DiningTable(Base):
    """Physical table on the floor."""

    __tablename__ = "tables"

    id = Column(Integer, primary_key=True)
    table_number = Column(String, nullable=False, unique=True)
    capacity = Column(Integer, nullable=False, default=4)
    status = Column(String, nullable=False, default="available")
    section = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class Order(Base):
    """Customer order; cancellation is a status, never a delete."""

    __tablename__ = "orders"

    id = Column(Integer, primary_key=True)
    order_number = Column(String, nullable=False, unique=True)
    table_id = Column(Integer, ForeignKey("tables.id"), nullable=True, index=True)
    order_type = Column(String, nullable=False, default="dine_in")
    status = Column(String, nullable=False, default="pending", index=True)
    customer_name = Column(String, nullable=True)
    payment_method = Column(String, nullable=True)
    subtotal = Column(Float, nullable=False, default=0.0)
    discount_amount = Column(Float, nullable=False, default=0.0)
    tax_amount = Column(Float, nullable=False, default=0.0)
    service_charge = Column(Float, nullable=False, default=0.0)
    total = Column(Float, nullable=False, default=0.0)
    notes = Column(Text, nullable=True)
    served_by = Column(String, nullable=True)
    cancel_reason = Column(Text, nullable=True)
    created_by = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    completed_at = Column(DateTime, nullable=True)

    items = relationship(
        "OrderItem", back_populates="order", order_by="OrderItem.id", lazy="selectin"
    )


class OrderItem(Base):
    """Order line with the price and tax rate captured at order time."""

    __tablename__ = "order_items"
    __table_args__ = (CheckConstraint("quantity > 0", name="ck_item_quantity"),)

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    product_name = Column(String, nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Float, nullable=False)
    tax_rate = Column(Float, nullable=False, default=0.0)
    total_price = Column(Float, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    order = relationship("Order", back_populates="items")


class Reservation(Base):
    """Table booking; ``seated`` occupies the table."""

    __tablename__ = "reservations"

    id = Column(Integer, primary_key=True)
    table_id = Column(Integer, ForeignKey("tables.id"), nullable=False, index=True)
    customer_name = Column(String, nullable=False)
    customer_phone = Column(String, nullable=True)
    reservation_date = Column(String, nullable=False)
    reservation_time = Column(String, nullable=False)
    party_size = Column(Integer, nullable=False)
    duration = Column(Integer, nullable=False, default=120)
    status = Column(String, nullable=False, default="confirmed")
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class AuditLogEntry(Base):
    """Append-only record of a mutation."""

    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True)
    table_name = Column(String, nullable=False, index=True)
    record_id = Column(String, nullable=True)
    action = Column(String, nullable=False)
    old_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)
    user_id = Column(String, nullable=True)
    ip_address = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)


class OrderCounter(Base):
    """Per-day sequence backing order numbers."""

    __tablename__ = "order_counters"

    day = Column(String, primary_key=True)
    current = Column(Integer, nullable=False, default=0)


# Tables in the order the integrity checker and incremental backups walk them.
TRACKED_TABLES = (
    "products",
    "inventory",
    "stock_movements",
    "tables",
    "orders",
    "order_items",
    "reservations",
)
