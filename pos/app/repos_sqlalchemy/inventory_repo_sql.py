"""SQLAlchemy-backed helpers for the inventory ledger.

Stock changes are conditional single statements: a decrement only matches
when enough stock remains, so two interleaved writers can never both pass a
check that only one of them should.
"""

from __future__ import annotations

from typing import Iterable, List, Optional

from sqlalchemy import and_, case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Inventory, Product, StockMovement, utcnow

inventory_t = Inventory.__table__

IN = "in"
OUT = "out"


async def stock_snapshot(
    session: AsyncSession, product_ids: Iterable[int]
) -> dict[int, int]:
    """Return ``{product_id: current_stock}`` for the given products."""

    ids = list(product_ids)
    if not ids:
        return {}
    result = await session.execute(
        select(Inventory.product_id, Inventory.current_stock).where(
            Inventory.product_id.in_(ids)
        )
    )
    return {row.product_id: row.current_stock for row in result}


async def get_row(session: AsyncSession, product_id: int) -> Optional[dict]:
    result = await session.execute(
        select(
            Inventory.product_id,
            Inventory.current_stock,
            Inventory.reorder_level,
            Inventory.max_stock,
            Inventory.cost_price,
            Inventory.updated_at,
            Product.name.label("product_name"),
            Product.is_trackable,
        )
        .join(Product, Product.id == Inventory.product_id)
        .where(Inventory.product_id == product_id)
    )
    row = result.one_or_none()
    return dict(row._mapping) if row is not None else None


async def decrement(session: AsyncSession, product_id: int, quantity: int) -> Optional[int]:
    """Take ``quantity`` off the balance; ``None`` when stock is short."""

    result = await session.execute(
        update(inventory_t)
        .where(
            and_(
                inventory_t.c.product_id == product_id,
                inventory_t.c.current_stock >= quantity,
            )
        )
        .values(current_stock=inventory_t.c.current_stock - quantity, updated_at=utcnow())
        .returning(inventory_t.c.current_stock)
    )
    return result.scalar_one_or_none()


async def increment(
    session: AsyncSession,
    product_id: int,
    quantity: int,
    cost_price: Optional[float] = None,
) -> Optional[int]:
    values = {
        "current_stock": inventory_t.c.current_stock + quantity,
        "updated_at": utcnow(),
    }
    if cost_price is not None:
        values["cost_price"] = cost_price
    result = await session.execute(
        update(inventory_t)
        .where(inventory_t.c.product_id == product_id)
        .values(**values)
        .returning(inventory_t.c.current_stock)
    )
    return result.scalar_one_or_none()


async def add_movement(
    session: AsyncSession,
    product_id: int,
    movement_type: str,
    quantity: int,
    reference_type: str,
    reference_id: Optional[int] = None,
    reason: Optional[str] = None,
    notes: Optional[str] = None,
    created_by: Optional[str] = None,
) -> StockMovement:
    """Append one ledger row."""

    movement = StockMovement(
        product_id=product_id,
        movement_type=movement_type,
        quantity=quantity,
        reference_type=reference_type,
        reference_id=reference_id,
        reason=reason,
        notes=notes,
        created_by=created_by,
    )
    session.add(movement)
    await session.flush()
    return movement


async def list_movements(
    session: AsyncSession,
    product_id: Optional[int] = None,
    reference_type: Optional[str] = None,
    reference_id: Optional[int] = None,
    limit: Optional[int] = None,
) -> List[StockMovement]:
    stmt = select(StockMovement).order_by(StockMovement.id.desc())
    if product_id is not None:
        stmt = stmt.where(StockMovement.product_id == product_id)
    if reference_type:
        stmt = stmt.where(StockMovement.reference_type == reference_type)
    if reference_id is not None:
        stmt = stmt.where(StockMovement.reference_id == reference_id)
    if limit:
        stmt = stmt.limit(limit)
    return list((await session.execute(stmt)).scalars())


def signed_quantity():
    """SQL expression for a movement's signed quantity."""
    return case(
        (StockMovement.movement_type == IN, StockMovement.quantity),
        else_=-StockMovement.quantity,
    )


async def ledger_balance(session: AsyncSession, product_id: int) -> int:
    result = await session.execute(
        select(func.coalesce(func.sum(signed_quantity()), 0)).where(
            StockMovement.product_id == product_id
        )
    )
    return int(result.scalar_one())


async def low_stock(session: AsyncSession) -> list[dict]:
    """Return trackable rows at or below their reorder level."""

    result = await session.execute(
        select(
            Inventory.product_id,
            Product.name.label("product_name"),
            Inventory.current_stock,
            Inventory.reorder_level,
        )
        .join(Product, Product.id == Inventory.product_id)
        .where(
            Product.is_trackable.is_(True),
            Product.is_active.is_(True),
            Inventory.current_stock <= Inventory.reorder_level,
        )
        .order_by(Inventory.current_stock)
    )
    return [dict(row._mapping) for row in result]


async def list_trackable(session: AsyncSession) -> list[dict]:
    result = await session.execute(
        select(
            Inventory.product_id,
            Product.name.label("product_name"),
            Product.price,
            Inventory.current_stock,
            Inventory.reorder_level,
            Inventory.max_stock,
            Inventory.cost_price,
            Inventory.updated_at,
        )
        .join(Product, Product.id == Inventory.product_id)
        .where(Product.is_trackable.is_(True))
        .order_by(Product.name)
    )
    rows = []
    for row in result:
        data = dict(row._mapping)
        data["is_low_stock"] = data["current_stock"] <= data["reorder_level"]
        rows.append(data)
    return rows
