"""SQLAlchemy-backed repository helpers for orders.

Order items snapshot the product's name, price and tax rate at creation time
so historical orders keep their totals when the catalog changes later.
"""

from __future__ import annotations

from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain import ACTIVE_STATUSES
from ..models import Order, OrderItem, Product, utcnow


async def insert_order(session: AsyncSession, **fields) -> Order:
    order = Order(**fields)
    session.add(order)
    await session.flush()  # obtain order.id
    return order


async def add_item(
    session: AsyncSession, order_id: int, product: Product, quantity: int
) -> OrderItem:
    """Insert one line, snapshotting price and tax rate from ``product``."""

    unit_price = float(product.price)
    item = OrderItem(
        order_id=order_id,
        product_id=product.id,
        product_name=product.name,
        quantity=quantity,
        unit_price=unit_price,
        tax_rate=float(product.tax_rate or 0),
        total_price=round(unit_price * quantity, 2),
    )
    session.add(item)
    return item


async def get(session: AsyncSession, order_id: int) -> Optional[Order]:
    """Return ``order_id`` with its items, refreshed from the database."""

    result = await session.execute(
        select(Order)
        .where(Order.id == order_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def list_orders(
    session: AsyncSession,
    status: Optional[str] = None,
    table_id: Optional[int] = None,
    active_only: bool = False,
) -> List[Order]:
    stmt = select(Order).order_by(Order.created_at.desc(), Order.id.desc())
    if status:
        stmt = stmt.where(Order.status == status)
    if table_id is not None:
        stmt = stmt.where(Order.table_id == table_id)
    if active_only:
        stmt = stmt.where(Order.status.in_(ACTIVE_STATUSES))
    return list((await session.execute(stmt)).scalars())


async def set_status(
    session: AsyncSession, order_id: int, expected: str, new_status: str, **extra
) -> bool:
    """Move ``order_id`` from ``expected`` to ``new_status``.

    Returns ``False`` when another writer changed the status first.
    """

    values = {"status": new_status, "updated_at": utcnow(), **extra}
    result = await session.execute(
        update(Order.__table__)
        .where(Order.__table__.c.id == order_id, Order.__table__.c.status == expected)
        .values(**values)
    )
    return result.rowcount == 1

