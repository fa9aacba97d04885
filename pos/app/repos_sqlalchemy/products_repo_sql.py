"""SQLAlchemy-backed helpers for the product catalog."""

from __future__ import annotations

from typing import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Inventory, Product


async def get_many(session: AsyncSession, product_ids: Iterable[int]) -> dict[int, Product]:
    """Return ``{id: Product}`` for the ids that exist."""

    ids = list(set(product_ids))
    if not ids:
        return {}
    result = await session.execute(select(Product).where(Product.id.in_(ids)))
    return {product.id: product for product in result.scalars()}


async def get(session: AsyncSession, product_id: int) -> Product | None:
    return await session.get(Product, product_id)


async def create(
    session: AsyncSession,
    *,
    name: str,
    price: float,
    tax_rate: float,
    is_trackable: bool,
    reorder_level: int = 0,
    max_stock: int | None = None,
    cost_price: float | None = None,
) -> Product:
    """Insert a product and, when trackable, its empty inventory row."""

    product = Product(
        name=name, price=price, tax_rate=tax_rate, is_trackable=is_trackable
    )
    session.add(product)
    await session.flush()
    if is_trackable:
        session.add(
            Inventory(
                product_id=product.id,
                current_stock=0,
                reorder_level=reorder_level,
                max_stock=max_stock,
                cost_price=cost_price,
            )
        )
        await session.flush()
    return product
